from __future__ import annotations

import logging
from typing import Iterable, Sequence

from strudel_lsp import catalog
from strudel_lsp.schema import FunctionDTO

logger = logging.getLogger(__name__)


def _dedupe(names: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for name in names:
        key = name.lower()
        if not name or key in seen:
            continue
        seen.add(key)
        ordered.append(name)
    return ordered


class VocabularyRegistry:
    """Names the diagnostic engine and request handlers recognise.

    The fixed tables come from :mod:`strudel_lsp.catalog`. Samples, banks and
    synth sounds reported by the engine are replaced wholesale on every update;
    the default samples are always kept underneath them. All membership checks
    are case-insensitive.
    """

    def __init__(
        self,
        *,
        default_samples: Sequence[str] = catalog.DEFAULT_SAMPLE_NAMES,
        default_banks: Sequence[str] = catalog.DEFAULT_BANK_NAMES,
        functions: Sequence[FunctionDTO] | None = None,
        non_sample_functions: Sequence[str] = (),
    ) -> None:
        self._default_samples = _dedupe(default_samples)
        self._default_banks = _dedupe(default_banks)
        self._dynamic_samples: list[str] = []
        self._dynamic_banks: list[str] = []
        self._dynamic_sounds: list[str] = []
        self._functions = tuple(functions) if functions is not None else catalog.load_functions()
        self._function_index = {function.name: function for function in self._functions}
        self.non_sample_functions = frozenset(
            [*catalog.NON_SAMPLE_ARG_FUNCTIONS, *non_sample_functions]
        )
        self._rebuild()

    def _rebuild(self) -> None:
        self._samples = _dedupe(
            [*self._default_samples, *self._dynamic_samples, *self._dynamic_sounds]
        )
        self._sample_keys = {name.lower() for name in self._samples}
        self._bank_keys = {name.lower() for name in self.banks}

    def replace_dynamic_samples(self, names: Iterable[str]) -> None:
        self._dynamic_samples = _dedupe(names)
        self._rebuild()
        logger.debug("sample vocabulary now %d names", len(self._samples))

    def replace_dynamic_banks(self, names: Iterable[str]) -> None:
        self._dynamic_banks = _dedupe(names)
        self._rebuild()

    def replace_dynamic_sounds(self, names: Iterable[str]) -> None:
        self._dynamic_sounds = _dedupe(names)
        self._rebuild()

    @property
    def samples(self) -> list[str]:
        return list(self._samples)

    @property
    def dynamic_samples(self) -> list[str]:
        return list(self._dynamic_samples)

    @property
    def dynamic_banks(self) -> list[str]:
        return list(self._dynamic_banks)

    @property
    def sounds(self) -> list[str]:
        return list(self._dynamic_sounds)

    @property
    def banks(self) -> list[str]:
        if self._dynamic_banks:
            return list(self._dynamic_banks)
        return list(self._default_banks)

    @property
    def functions(self) -> tuple[FunctionDTO, ...]:
        return self._functions

    @property
    def function_names(self) -> list[str]:
        return [function.name for function in self._functions]

    def function(self, name: str) -> FunctionDTO | None:
        return self._function_index.get(name)

    def is_sample(self, word: str) -> bool:
        return word.lower() in self._sample_keys

    def is_bank(self, word: str) -> bool:
        return word.lower() in self._bank_keys

    def is_scale(self, word: str) -> bool:
        lowered = word.lower()
        return any(scale.lower() == lowered for scale in catalog.SCALE_NAMES)

    def is_voicing_mode(self, word: str) -> bool:
        return word.lower() in catalog.VOICING_MODES

    def is_function(self, name: str) -> bool:
        return name in self._function_index
