"""Static vocabulary of the mini-notation and its host functions.

Everything here is fixed at import time. The parts that change while the
server runs (samples, banks and synth sounds reported by the engine) live in
:mod:`strudel_lsp.vocabulary`.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from functools import lru_cache
from importlib import resources

from strudel_lsp.schema import FunctionDTO

DEFAULT_SAMPLE_NAMES: tuple[str, ...] = (
    # drums
    "bd", "sd", "hh", "oh", "cp", "mt", "ht", "lt", "rim", "cb", "cr", "rd",
    "sh", "tb", "perc", "misc", "fx",
    "piano",
    # synths
    "sine", "saw", "square", "triangle", "sawtooth", "tri", "white", "pink", "brown",
    "casio", "jazz", "metal", "east", "space", "wind", "insect", "crow",
    "numbers", "mridangam",
    # VCSL instruments
    "violin", "viola", "cello", "bass", "flute", "oboe", "clarinet", "bassoon",
    "trumpet", "horn", "trombone", "tuba", "glockenspiel", "xylophone", "vibraphone",
)

DEFAULT_BANK_NAMES: tuple[str, ...] = ("RolandTR808", "RolandTR909", "RolandTR707")

NOTE_NAMES: tuple[str, ...] = (
    "c", "d", "e", "f", "g", "a", "b",
    "cs", "ds", "fs", "gs", "as",
    "db", "eb", "gb", "ab", "bb",
)

OCTAVES: tuple[str, ...] = ("0", "1", "2", "3", "4", "5", "6", "7", "8")

SCALE_NAMES: tuple[str, ...] = (
    "major", "minor", "dorian", "phrygian", "lydian", "mixolydian", "locrian",
    "aeolian", "ionian", "harmonicMinor", "melodicMinor", "pentatonic", "blues",
    "chromatic", "wholetone", "diminished", "augmented", "bebop", "hungarian",
    "spanish",
)

# Used with .mode(), e.g. "above:c3".
VOICING_MODES: tuple[str, ...] = ("above", "below", "between", "duck", "root", "rootless")

# Atoms the grammar gives structural meaning to.
STRUCTURAL_ATOMS: frozenset[str] = frozenset({"x", "t", "f", "r", "-", "_"})

# Calls whose string argument holds bank/scale/voicing names, not samples.
NON_SAMPLE_ARG_FUNCTIONS: tuple[str, ...] = (
    "bank", "scale", "mode", "voicing", "chord", "struct", "mask",
)

# Host-language methods that are never reported as unknown functions.
HOST_METHOD_NAMES: frozenset[str] = frozenset(
    {"then", "catch", "map", "filter", "forEach", "reduce", "log", "error", "warn"}
)

TYPO_CORRECTIONS: dict[str, str] = {
    # samples
    "db": "bd",
    "ds": "sd",
    "kick": "bd",
    "snare": "sd",
    "hihat": "hh",
    "openhat": "oh",
    "clap": "cp",
    "cowbell": "cb",
    "crash": "cr",
    "ride": "rd",
    # notes
    "cf": "c",
    "ef": "e",
    "bf": "b",
    # functions
    "sounds": "sound",
    "notes": "note",
    "filters": "lpf",
    "lowpass": "lpf",
    "highpass": "hpf",
    "bandpass": "bpf",
    "reverb": "room",
    "echo": "delay",
    "volume": "gain",
    "reverse": "rev",
}


@dataclass(frozen=True)
class MiniOperator:
    label: str
    detail: str
    documentation: str


MINI_OPERATORS: tuple[MiniOperator, ...] = (
    MiniOperator("*", "Speed up (fast)", "Multiply speed: bd*2 plays twice as fast"),
    MiniOperator("/", "Slow down", "Divide speed: bd/2 plays twice as slow"),
    MiniOperator("!", "Replicate", "Repeat element: bd!3 plays bd three times"),
    MiniOperator("?", "Degrade/maybe", "Random chance: bd? sometimes plays"),
    MiniOperator("@", "Weight", "Set duration weight: bd@2 takes twice as long"),
    MiniOperator("~", "Rest/silence", "Silent step"),
    MiniOperator("<>", "Alternate", "Alternate between patterns each cycle"),
    MiniOperator("[]", "Subsequence", "Group elements into subsequence"),
    MiniOperator("{}", "Polyrhythm", "Play patterns in parallel with different lengths"),
    MiniOperator("(,)", "Euclidean rhythm", "Euclidean distribution: bd(3,8) = 3 hits over 8 steps"),
    MiniOperator(":", "Sample index", "Select sample variant: bd:2"),
    MiniOperator(",", "Parallel", "Play patterns in parallel: bd, hh"),
    MiniOperator("|", "Random choice", "Random choice: bd | sd"),
)


@lru_cache(maxsize=1)
def load_functions() -> tuple[FunctionDTO, ...]:
    """Return the host function table shipped in ``data/functions.json``."""
    raw = resources.files("strudel_lsp").joinpath("data/functions.json").read_text(
        encoding="utf-8"
    )
    return tuple(FunctionDTO.model_validate(entry) for entry in json.loads(raw))

