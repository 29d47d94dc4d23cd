"""Exception hierarchy for strudel-lsp."""

from __future__ import annotations

from typing import Mapping, Sequence

_UNSET = object()


class StrudelLspError(RuntimeError):
    """Base exception for all strudel-lsp errors."""


class MiniSyntaxError(StrudelLspError):
    """Structured syntax error raised by a mini-notation parser.

    ``location`` mirrors the PEG parser shape
    (``{"start": {"offset", "line", "column"}, "end": {...}}``) and is measured
    against the quoted parser input. ``found`` is ``None`` when the parser hit
    the end of input; it is left unset when the parser did not report it at all.
    """

    def __init__(
        self,
        message: str,
        *,
        location: Mapping[str, object] | None = None,
        expected: Sequence[object] | None = None,
        found: object = _UNSET,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.location = location
        self.expected = list(expected) if expected is not None else None
        self.has_found = found is not _UNSET
        self.found = None if found is _UNSET else found


class ParserUnavailable(StrudelLspError):
    """The external mini-notation parser could not be started or did not answer."""


class ConfigError(StrudelLspError, ValueError):
    """Invalid configuration or command-line value."""
