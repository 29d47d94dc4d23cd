"""Diagnostics for mini-notation literals and host function calls.

:class:`DiagnosticEngine` re-scans a whole document on every call. It parses
each notation literal through the :class:`~strudel_lsp.notation.NotationDelegate`,
maps parser offsets back into the document, and checks every atom against the
:class:`~strudel_lsp.vocabulary.VocabularyRegistry`. Each diagnostic that can
be fixed gets a :class:`SuggestionRecord` keyed by ``"line:column"`` of its
start, which the code action handler reads later.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterator, Mapping

from lsprotocol.types import Diagnostic, DiagnosticSeverity, Position, Range
from pygls.workspace import PositionCodec

from strudel_lsp import catalog
from strudel_lsp.notation import NotationDelegate, ParseFailure, ParserSpan
from strudel_lsp.scanner import (
    LineIndex,
    NotationLiteral,
    call_opening_before,
    find_all_literals,
    find_call_sites,
    find_enclosing_call,
    is_excluded_literal,
)
from strudel_lsp.similarity import suggest
from strudel_lsp.vocabulary import VocabularyRegistry

logger = logging.getLogger(__name__)

SOURCE = "strudel"
CODE_PARSE_ERROR = "parse-error"
CODE_UNKNOWN_SAMPLE = "unknown-sample"
CODE_UNKNOWN_FUNCTION = "unknown-function"

KIND_UNBALANCED_BRACKET = "unbalanced_bracket"
KIND_UNKNOWN_SAMPLE = "unknown_sample"
KIND_UNKNOWN_FUNCTION = "unknown_function"

_NOTE_RE = re.compile(r"^[a-g][sb]?[0-9]?$", re.IGNORECASE)
_NUMBER_RE = re.compile(r"^[0-9.-]+$")
# capitalised words are variable references
_VARIABLE_RE = re.compile(r"^[A-Z]")
_FALLBACK_SPLIT_RE = re.compile(r"[\s\[\]{}()<>:*/!?@~,|]+")
_MAX_EXPECTED_SHOWN = 5


@dataclass(frozen=True)
class SuggestionRecord:
    kind: str
    word: str | None = None
    suggestions: tuple[str, ...] = ()


@dataclass(frozen=True)
class ValidationResult:
    diagnostics: tuple[Diagnostic, ...] = ()
    suggestions: Mapping[str, SuggestionRecord] = field(default_factory=dict)


def position_key(position: Position) -> str:
    return f"{position.line}:{position.character}"


def remap_offset(literal: NotationLiteral, parser_offset: int) -> int:
    """Map a 1-based offset into the quoted parser input onto the document.

    The result never lies past the literal's closing quote.
    """
    return min(literal.body_start + max(0, parser_offset - 1), literal.body_end)


def remap_span(literal: NotationLiteral, span: ParserSpan) -> tuple[int, int]:
    start = remap_offset(literal, span.start)
    end = max(start, remap_offset(literal, span.end))
    return start, end


def render_parse_error(failure: ParseFailure) -> str:
    if failure.expected is None or not failure.has_found:
        return failure.message
    expected = ", ".join(failure.expected[:_MAX_EXPECTED_SHOWN])
    hidden = len(failure.expected) - _MAX_EXPECTED_SHOWN
    more = f", ... ({hidden} more)" if hidden > 0 else ""
    found = "end of input" if failure.found is None else f"'{failure.found}'"
    return f"Syntax error: expected {expected}{more} but found {found}"


def is_known_atom(word: str, registry: VocabularyRegistry) -> bool:
    if _NOTE_RE.match(word):
        return True
    if _NUMBER_RE.match(word) or word == "~":
        return True
    if registry.is_sample(word) or registry.is_bank(word):
        return True
    if word.lower() in catalog.STRUCTURAL_ATOMS:
        return True
    if _VARIABLE_RE.match(word):
        return True
    return registry.is_voicing_mode(word) or registry.is_scale(word)


def fallback_tokens(body: str) -> Iterator[tuple[int, str]]:
    """Degraded tokenizer used when the parser could not locate its error.

    Yields ``(index, word)`` for every non-numeric token, where ``index`` is
    the first occurrence of ``word`` in ``body``.
    """
    for word in _FALLBACK_SPLIT_RE.split(body):
        if not word or _NUMBER_RE.match(word):
            continue
        index = body.find(word)
        if index != -1:
            yield index, word


class _Report:
    def __init__(self, index: LineIndex) -> None:
        self.index = index
        self.diagnostics: list[Diagnostic] = []
        self.suggestions: dict[str, SuggestionRecord] = {}

    def range_for(self, start: int, end: int) -> Range:
        return Range(start=self.index.position_at(start), end=self.index.position_at(end))

    def add(
        self,
        range_: Range,
        severity: DiagnosticSeverity,
        code: str,
        message: str,
        record: SuggestionRecord,
    ) -> None:
        self.diagnostics.append(
            Diagnostic(
                range=range_,
                message=message,
                severity=severity,
                code=code,
                source=SOURCE,
            )
        )
        self.suggestions[position_key(range_.start)] = record

    def result(self) -> ValidationResult:
        return ValidationResult(
            diagnostics=tuple(self.diagnostics), suggestions=dict(self.suggestions)
        )


class DiagnosticEngine:
    def __init__(self, registry: VocabularyRegistry, delegate: NotationDelegate) -> None:
        self.registry = registry
        self.delegate = delegate

    def validate(self, text: str, codec: PositionCodec | None = None) -> ValidationResult:
        report = _Report(LineIndex(text, codec))
        for literal in find_all_literals(text):
            if self._skip_literal(text, literal):
                continue
            self._check_literal(literal, report)
        self._check_calls(text, report)
        logger.debug("validated document: %d diagnostics", len(report.diagnostics))
        return report.result()

    def _skip_literal(self, text: str, literal: NotationLiteral) -> bool:
        if is_excluded_literal(literal.raw_body):
            return True
        quote = literal.body_start - 1
        if call_opening_before(text, quote) in self.registry.non_sample_functions:
            return True
        call = find_enclosing_call(text, quote)
        return call is not None and call.name in self.registry.non_sample_functions

    def _check_literal(self, literal: NotationLiteral, report: _Report) -> None:
        outcome = self.delegate.parse_literal(literal.raw_body)
        if isinstance(outcome, ParseFailure):
            if outcome.span is not None:
                start, end = remap_span(literal, outcome.span)
                self._parse_error(start, end, outcome, report)
                return
            if outcome.syntax:
                start = literal.body_start
                end = min(start + 1, literal.body_end)
                self._parse_error(start, end, outcome, report)
            self._check_fallback(literal, report)
            return
        for leaf in outcome.leaves:
            if leaf.kind != "atom" or is_known_atom(leaf.text, self.registry):
                continue
            start, end = remap_span(literal, leaf.span)
            self._unknown_sample(leaf.text, report.range_for(start, end), report)

    def _parse_error(
        self, start: int, end: int, failure: ParseFailure, report: _Report
    ) -> None:
        report.add(
            report.range_for(start, end),
            DiagnosticSeverity.Error,
            CODE_PARSE_ERROR,
            render_parse_error(failure),
            SuggestionRecord(kind=KIND_UNBALANCED_BRACKET),
        )

    def _check_fallback(self, literal: NotationLiteral, report: _Report) -> None:
        for index, word in fallback_tokens(literal.raw_body):
            if is_known_atom(word, self.registry):
                continue
            start = literal.body_start + index
            range_ = report.range_for(start, start + len(word))
            if position_key(range_.start) in report.suggestions:
                continue
            self._unknown_sample(word, range_, report)

    def _unknown_sample(self, word: str, range_: Range, report: _Report) -> None:
        suggestions = suggest(word, self.registry.samples)
        if suggestions:
            severity = DiagnosticSeverity.Warning
            message = f"Unknown sample '{word}'. Did you mean: {', '.join(suggestions)}?"
        else:
            severity = DiagnosticSeverity.Hint
            message = f"Unknown sample '{word}' (may work if loaded dynamically)"
        report.add(
            range_,
            severity,
            CODE_UNKNOWN_SAMPLE,
            message,
            SuggestionRecord(
                kind=KIND_UNKNOWN_SAMPLE, word=word, suggestions=tuple(suggestions)
            ),
        )

    def _check_calls(self, text: str, report: _Report) -> None:
        function_names = self.registry.function_names
        for site in find_call_sites(text):
            if self.registry.is_function(site.name) or site.name in catalog.HOST_METHOD_NAMES:
                continue
            suggestions = suggest(site.name, function_names)
            if not suggestions:
                continue
            report.add(
                report.range_for(site.name_start, site.name_start + len(site.name)),
                DiagnosticSeverity.Warning,
                CODE_UNKNOWN_FUNCTION,
                f"Unknown function '{site.name}'. Did you mean: {', '.join(suggestions)}?",
                SuggestionRecord(
                    kind=KIND_UNKNOWN_FUNCTION,
                    word=site.name,
                    suggestions=tuple(suggestions),
                ),
            )


class PublishedState:
    """Latest :class:`ValidationResult` per document URI."""

    def __init__(self) -> None:
        self._results: dict[str, ValidationResult] = {}

    def publish(self, uri: str, result: ValidationResult) -> None:
        self._results[uri] = result

    def get(self, uri: str) -> ValidationResult | None:
        return self._results.get(uri)

    def drop(self, uri: str) -> None:
        self._results.pop(uri, None)

    def suggestion(self, uri: str, key: str) -> SuggestionRecord | None:
        result = self._results.get(uri)
        if result is None:
            return None
        return result.suggestions.get(key)

    def uris(self) -> list[str]:
        return list(self._results)
