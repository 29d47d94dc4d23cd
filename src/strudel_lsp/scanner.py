"""Lexical scanning of host documents.

Finds quoted string literals, the call a cursor sits in, and ``.name(``
call sites, and converts between string offsets and LSP positions.
"""

from __future__ import annotations

import bisect
import re
from dataclasses import dataclass
from typing import Iterator

from lsprotocol.types import Position
from pygls.workspace import PositionCodec

_STRING_RE = re.compile(r"""(['"])((?:\\.|(?!\1)[^\\])*)\1""", re.DOTALL)
_CALL_SITE_RE = re.compile(r"\.([a-zA-Z_][a-zA-Z0-9_]*)\s*\(")
_WORD_CHAR_RE = re.compile(r"[a-zA-Z0-9_]")
_OPENING_CALL_RE = re.compile(r"\.?(\w+)\s*\(\s*$")
_CALL_LOOKBEHIND = 50
_CODE_MARKERS = ("function", "=>", "return")
_PATH_PREFIXES = ("http", ".", "github:")


@dataclass(frozen=True)
class NotationLiteral:
    raw_body: str
    body_start: int
    quote: str = '"'

    @property
    def body_end(self) -> int:
        """Offset of the closing quote."""
        return self.body_start + len(self.raw_body)


@dataclass(frozen=True)
class CallContext:
    name: str
    arg_index: int


@dataclass(frozen=True)
class CallSite:
    name: str
    name_start: int


class LineIndex:
    """Offset <-> (line, character) conversion for one snapshot of text.

    Characters in a :class:`Position` are counted in the units of ``codec``,
    UTF-16 unless the client negotiated another encoding.
    """

    def __init__(self, text: str, codec: PositionCodec | None = None) -> None:
        self.text = text
        self.codec = codec if codec is not None else PositionCodec()
        parts = text.split("\n")
        self._lines = [part + "\n" for part in parts[:-1]] + [parts[-1]]
        self._line_starts = [0]
        for match in re.finditer("\n", text):
            self._line_starts.append(match.end())

    def position_at(self, offset: int) -> Position:
        offset = max(0, min(offset, len(self.text)))
        line = bisect.bisect_right(self._line_starts, offset) - 1
        native = Position(line=line, character=offset - self._line_starts[line])
        return self.codec.position_to_client_units(self._lines, native)

    def offset_at(self, position: Position) -> int:
        if position.line < 0:
            return 0
        if position.line >= len(self._line_starts):
            return len(self.text)
        start = self._line_starts[position.line]
        if position.line + 1 < len(self._line_starts):
            line_end = self._line_starts[position.line + 1] - 1
        else:
            line_end = len(self.text)
        width = self.codec.client_num_units(self.text[start:line_end])
        client = Position(
            line=position.line, character=min(max(0, position.character), width)
        )
        native = self.codec.position_from_client_units(self._lines, client)
        return min(start + native.character, line_end)


def _is_escaped(text: str, index: int) -> bool:
    return index > 0 and text[index - 1] == "\\"


def find_enclosing_literal(text: str, offset: int) -> NotationLiteral | None:
    quote_start = -1
    quote_char = ""
    for index in range(offset - 1, -1, -1):
        char = text[index]
        if char in ("'", '"'):
            if _is_escaped(text, index):
                continue
            quote_start = index
            quote_char = char
            break
        if char in ("\n", ";"):
            break
    if quote_start == -1:
        return None

    quote_end = -1
    for index in range(offset, len(text)):
        char = text[index]
        if char == quote_char:
            if _is_escaped(text, index):
                continue
            quote_end = index
            break
        if char == "\n":
            break
    if quote_end == -1:
        return None
    return NotationLiteral(
        raw_body=text[quote_start + 1 : quote_end],
        body_start=quote_start + 1,
        quote=quote_char,
    )


def find_all_literals(text: str) -> list[NotationLiteral]:
    return [
        NotationLiteral(
            raw_body=match.group(2),
            body_start=match.start() + 1,
            quote=match.group(1),
        )
        for match in _STRING_RE.finditer(text)
    ]


def find_enclosing_call(text: str, offset: int) -> CallContext | None:
    depth = 0
    arg_index = 0
    for index in range(offset - 1, -1, -1):
        char = text[index]
        if char == ")":
            depth += 1
        elif char == "(":
            if depth == 0:
                name_start = index
                while name_start > 0 and _WORD_CHAR_RE.match(text[name_start - 1]):
                    name_start -= 1
                if name_start < index:
                    return CallContext(name=text[name_start:index], arg_index=arg_index)
                return None
            depth -= 1
        elif char == "," and depth == 0:
            arg_index += 1
        elif char in ("\n", ";"):
            break
    return None


def call_opening_before(text: str, offset: int) -> str | None:
    """Name of the call whose ``(`` directly precedes ``offset``.

    Only whitespace, newlines included, may sit between the parenthesis and
    ``offset``.
    """
    match = _OPENING_CALL_RE.search(text, max(0, offset - _CALL_LOOKBEHIND), offset)
    return match.group(1) if match else None


def find_call_sites(text: str) -> Iterator[CallSite]:
    for match in _CALL_SITE_RE.finditer(text):
        yield CallSite(name=match.group(1), name_start=match.start(1))


def current_word(text: str, offset: int) -> str:
    start = offset
    end = offset
    while start > 0 and _WORD_CHAR_RE.match(text[start - 1]):
        start -= 1
    while end < len(text) and _WORD_CHAR_RE.match(text[end]):
        end += 1
    return text[start:end]


def is_excluded_literal(body: str) -> bool:
    """True for string arguments that are clearly not mini-notation."""
    if not body.strip():
        return True
    if "/" in body and body.startswith(_PATH_PREFIXES):
        return True
    return any(marker in body for marker in _CODE_MARKERS)
