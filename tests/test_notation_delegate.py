from __future__ import annotations

from strudel_lsp.exceptions import MiniSyntaxError, ParserUnavailable
from strudel_lsp.notation import (
    Leaf,
    NotationDelegate,
    ParseFailure,
    ParserSpan,
    ParseSuccess,
    describe_expected,
    quote_literal,
    span_from_location,
)
from tests.mini_fakes import FakeMiniParser, RaisingParser, point


def test_quote_literal_escapes_backslash_and_quote() -> None:
    assert quote_literal("bd sd") == '"bd sd"'
    assert quote_literal('a"b\\c') == '"a\\"b\\\\c"'


def test_success_returns_leaves_for_quoted_input() -> None:
    parser = FakeMiniParser()
    outcome = NotationDelegate(parser).parse_literal("bd sd")
    assert isinstance(outcome, ParseSuccess)
    assert outcome.leaves == (
        Leaf(kind="atom", text="bd", span=ParserSpan(1, 3)),
        Leaf(kind="atom", text="sd", span=ParserSpan(4, 6)),
    )
    assert parser.calls == [("parse", '"bd sd"'), ("leaves", '"bd sd"')]


def test_structured_error_keeps_location_and_tokens() -> None:
    outcome = NotationDelegate(FakeMiniParser()).parse_literal("bd [sd")
    assert isinstance(outcome, ParseFailure)
    assert outcome.syntax
    assert outcome.span == ParserSpan(7, 8)
    assert outcome.expected == ("']'",)
    assert outcome.has_found
    assert outcome.found is None


def test_expected_tokens_are_described() -> None:
    assert describe_expected({"type": "literal", "text": "]"}) == "']'"
    assert describe_expected({"type": "other", "description": "whitespace"}) == "whitespace"
    assert describe_expected({"type": "end"}) == "{'type': 'end'}"
    assert describe_expected("x") == "x"


def test_location_without_offsets_uses_line_and_column() -> None:
    quoted = '"a\nbc"'
    location = {"start": {"line": 2, "column": 2}, "end": {"line": 2, "column": 3}}
    assert span_from_location(location, quoted) == ParserSpan(4, 5)
    assert span_from_location({"start": point(quoted, 3)}, quoted) == ParserSpan(3, 4)
    assert span_from_location({}, quoted) is None
    assert span_from_location(None, quoted) is None


def test_error_without_found_is_marked() -> None:
    error = MiniSyntaxError(
        "bad", location={"start": {"offset": 2}, "end": {"offset": 3}}, expected=["x"]
    )
    outcome = NotationDelegate(RaisingParser(error)).parse_literal("a b")
    assert isinstance(outcome, ParseFailure)
    assert not outcome.has_found
    assert outcome.message == "bad"


def test_message_position_fallback() -> None:
    error = RuntimeError("[mini] parse error at line 1 column 5: unexpected ']'")
    outcome = NotationDelegate(RaisingParser(error)).parse_literal("bd ] sd")
    assert isinstance(outcome, ParseFailure)
    assert outcome.span == ParserSpan(4, 5)
    assert outcome.message == "unexpected ']'"
    assert outcome.syntax


def test_message_line_without_column() -> None:
    error = RuntimeError("problem on line 2")
    outcome = NotationDelegate(RaisingParser(error)).parse_literal("bd\nsd")
    assert isinstance(outcome, ParseFailure)
    assert outcome.span == ParserSpan(4, 5)


def test_unlocated_error_has_no_span() -> None:
    outcome = NotationDelegate(RaisingParser(ValueError("boom"))).parse_literal("bd")
    assert outcome == ParseFailure(message="boom")


def test_unavailable_parser_is_not_a_syntax_error() -> None:
    error = ParserUnavailable("node not found")
    outcome = NotationDelegate(RaisingParser(error)).parse_literal("bd")
    assert isinstance(outcome, ParseFailure)
    assert not outcome.syntax
    assert outcome.span is None
