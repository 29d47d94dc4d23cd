from __future__ import annotations

from lsprotocol.types import Position, PositionEncodingKind
from pygls.workspace import PositionCodec

from strudel_lsp.scanner import (
    CallContext,
    LineIndex,
    NotationLiteral,
    call_opening_before,
    current_word,
    find_all_literals,
    find_call_sites,
    find_enclosing_call,
    find_enclosing_literal,
    is_excluded_literal,
)


def test_find_all_literals_handles_both_quote_styles() -> None:
    text = "s(\"bd sd\").bank('RolandTR808')"
    literals = find_all_literals(text)
    assert [literal.raw_body for literal in literals] == ["bd sd", "RolandTR808"]
    assert literals[0].body_start == text.index("bd")
    assert literals[1].body_start == text.index("Roland")
    assert literals[1].quote == "'"


def test_find_all_literals_keeps_escaped_quotes_in_body() -> None:
    text = 'x("a\\"b", "c")'
    literals = find_all_literals(text)
    assert [literal.raw_body for literal in literals] == ['a\\"b', "c"]


def test_literal_body_end_is_closing_quote() -> None:
    text = 'note("c e g")'
    (literal,) = find_all_literals(text)
    assert text[literal.body_end] == '"'
    assert literal.body_end == literal.body_start + len("c e g")


def test_find_enclosing_literal_inside_string() -> None:
    text = 's("bd sd hh")'
    literal = find_enclosing_literal(text, text.index("sd"))
    assert literal == NotationLiteral(raw_body="bd sd hh", body_start=3, quote='"')


def test_find_enclosing_literal_stops_at_newline_and_semicolon() -> None:
    assert find_enclosing_literal('s("bd\nsd")', 7) is None
    text = 'a = "x"; b = 1'
    assert find_enclosing_literal(text, len(text)) is None


def test_find_enclosing_literal_requires_closing_quote() -> None:
    assert find_enclosing_literal('s("bd sd', 5) is None


def test_find_enclosing_literal_skips_escaped_quote() -> None:
    text = 's("a \\" b")'
    literal = find_enclosing_literal(text, text.index("b"))
    assert literal is not None
    assert literal.raw_body == 'a \\" b'


def test_find_enclosing_call_counts_top_level_commas() -> None:
    text = 'note("c e").lpf(200, '
    assert find_enclosing_call(text, len(text)) == CallContext(name="lpf", arg_index=1)


def test_find_enclosing_call_skips_nested_calls() -> None:
    text = 'stack(s("bd").fast(2), '
    assert find_enclosing_call(text, len(text)) == CallContext(name="stack", arg_index=1)


def test_find_enclosing_call_inside_string_argument() -> None:
    text = 's("bd sd")'
    assert find_enclosing_call(text, text.index("sd")) == CallContext(name="s", arg_index=0)


def test_find_enclosing_call_without_name_or_paren() -> None:
    assert find_enclosing_call("(1, 2", 5) is None
    assert find_enclosing_call("foo", 3) is None
    assert find_enclosing_call("lpf(\n200", 8) is None


def test_call_opening_before_crosses_newlines() -> None:
    text = 'note("c e").scale(\n  "C:major"'
    assert call_opening_before(text, text.index('"C')) == "scale"
    assert call_opening_before("mode(", 5) == "mode"
    assert call_opening_before("lpf(200, ", 9) is None
    assert call_opening_before("plain ", 6) is None


def test_find_call_sites_reports_dot_calls_only() -> None:
    text = 's("bd").bnak("808").fast (2)'
    sites = list(find_call_sites(text))
    assert [site.name for site in sites] == ["bnak", "fast"]
    assert sites[0].name_start == text.index("bnak")


def test_current_word() -> None:
    text = "note('c4 e4')"
    assert current_word(text, text.index("c4") + 1) == "c4"
    assert current_word(text, text.index("note")) == "note"
    assert current_word("  ", 1) == ""


def test_is_excluded_literal() -> None:
    assert is_excluded_literal("")
    assert is_excluded_literal("   ")
    assert is_excluded_literal("./samples/kick.wav")
    assert is_excluded_literal("https://example.com/strudel.json")
    assert is_excluded_literal("github:tidalcycles/dirt-samples")
    assert is_excluded_literal("x => x + 1")
    assert is_excluded_literal("return 1")
    assert not is_excluded_literal("bd sd")
    assert not is_excluded_literal(".5 .25")
    assert not is_excluded_literal("bd/2")


def test_line_index_round_trip() -> None:
    text = "a\nbc\n"
    index = LineIndex(text)
    assert index.position_at(0) == Position(line=0, character=0)
    assert index.position_at(3) == Position(line=1, character=1)
    assert index.position_at(5) == Position(line=2, character=0)
    assert index.offset_at(Position(line=1, character=1)) == 3


def test_line_index_clamps() -> None:
    text = "ab\ncd"
    index = LineIndex(text)
    assert index.position_at(99) == Position(line=1, character=2)
    assert index.offset_at(Position(line=0, character=10)) == 2
    assert index.offset_at(Position(line=7, character=0)) == len(text)


def test_line_index_counts_utf16_units() -> None:
    text = "x🎵y\n🎵"
    index = LineIndex(text)
    assert index.position_at(2) == Position(line=0, character=3)
    assert index.offset_at(Position(line=0, character=3)) == 2
    assert index.position_at(len(text)) == Position(line=1, character=2)
    assert index.offset_at(Position(line=1, character=9)) == len(text)
    utf32 = LineIndex(text, PositionCodec(encoding=PositionEncodingKind.Utf32))
    assert utf32.position_at(2) == Position(line=0, character=2)
