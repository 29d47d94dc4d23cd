"""Delegation of mini-notation parsing to an external parser.

The parser works on the *quoted* form of a literal (``"bd sd"``), so every
offset it reports is one character to the right of the matching character in
the literal body. :class:`NotationDelegate` hides that, and turns every parser
exception into a :class:`ParseFailure`.
"""

from __future__ import annotations

import json
import logging
import os
import re
import select
import subprocess
import time
from dataclasses import dataclass
from typing import Callable, Mapping, Protocol, Sequence

from pydantic import ValidationError

from strudel_lsp.config import (
    DEFAULT_PARSER_COMMAND,
    DEFAULT_PARSER_MODULE,
    DEFAULT_PARSER_RESTART_DELAY,
    DEFAULT_PARSER_TIMEOUT,
)
from strudel_lsp.exceptions import MiniSyntaxError, ParserUnavailable
from strudel_lsp.schema import ParserResponse

logger = logging.getLogger(__name__)

_MESSAGE_LOCATION_RE = re.compile(r"line (\d+)(?: column (\d+))?")
_MESSAGE_PREFIX_RE = re.compile(r"^\[mini\] parse error at line \d+(?: column \d+)?:\s*")


@dataclass(frozen=True)
class ParserSpan:
    """Half-open offset range in the parser's quoted input."""

    start: int
    end: int


@dataclass(frozen=True)
class Leaf:
    kind: str
    text: str
    span: ParserSpan


@dataclass(frozen=True)
class ParseSuccess:
    leaves: tuple[Leaf, ...]


@dataclass(frozen=True)
class ParseFailure:
    message: str
    span: ParserSpan | None = None
    expected: tuple[str, ...] | None = None
    found: str | None = None
    has_found: bool = False
    # False when the parser never ran (worker missing or crashed).
    syntax: bool = True


ParseOutcome = ParseSuccess | ParseFailure


class MiniParser(Protocol):
    def parse(self, quoted_input: str) -> None: ...

    def get_leaves(self, quoted_input: str) -> list[Leaf]: ...


def quote_literal(body: str) -> str:
    escaped = body.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _line_column_offset(text: str, line: int, column: int) -> int:
    offset = 0
    for _ in range(max(0, line - 1)):
        newline = text.find("\n", offset)
        if newline == -1:
            break
        offset = newline + 1
    return offset + max(0, column - 1)


def _point_offset(point: object, quoted_input: str) -> int | None:
    if not isinstance(point, Mapping):
        return None
    offset = point.get("offset")
    if isinstance(offset, int) and not isinstance(offset, bool):
        return offset
    line = point.get("line")
    column = point.get("column")
    if isinstance(line, int) and isinstance(column, int):
        return _line_column_offset(quoted_input, line, column)
    return None


def span_from_location(location: object, quoted_input: str) -> ParserSpan | None:
    if not isinstance(location, Mapping):
        return None
    start = _point_offset(location.get("start"), quoted_input)
    if start is None:
        return None
    end = _point_offset(location.get("end"), quoted_input)
    if end is None or end < start:
        end = start + 1
    return ParserSpan(start=start, end=end)


def describe_expected(item: object) -> str:
    if isinstance(item, Mapping):
        if item.get("type") == "literal" and "text" in item:
            return f"'{item['text']}'"
        description = item.get("description")
        if description:
            return str(description)
    return str(item)


class NotationDelegate:
    """Parse literal bodies through a :class:`MiniParser`; never raises."""

    def __init__(self, parser: MiniParser) -> None:
        self.parser = parser

    def parse_literal(self, body: str) -> ParseOutcome:
        quoted = quote_literal(body)
        try:
            self.parser.parse(quoted)
            leaves = self.parser.get_leaves(quoted)
        except ParserUnavailable as exc:
            logger.debug("mini-notation parser unavailable: %s", exc)
            return ParseFailure(message=str(exc) or "parser unavailable", syntax=False)
        except Exception as exc:
            return self._failure_from_error(exc, quoted)
        return ParseSuccess(leaves=tuple(leaves))

    def _failure_from_error(self, exc: Exception, quoted: str) -> ParseFailure:
        message = getattr(exc, "message", None) or str(exc) or "Unknown parse error"
        location = getattr(exc, "location", None)
        if location:
            raw_expected = getattr(exc, "expected", None)
            expected = (
                tuple(describe_expected(item) for item in raw_expected)
                if raw_expected is not None
                else None
            )
            has_found = bool(getattr(exc, "has_found", False))
            found = getattr(exc, "found", None)
            return ParseFailure(
                message=message,
                span=span_from_location(location, quoted),
                expected=expected,
                found=None if found is None else str(found),
                has_found=has_found,
            )
        match = _MESSAGE_LOCATION_RE.search(message)
        if match:
            line = int(match.group(1))
            column = int(match.group(2)) if match.group(2) else 1
            start = _line_column_offset(quoted, line, column)
            return ParseFailure(
                message=_MESSAGE_PREFIX_RE.sub("", message),
                span=ParserSpan(start=start, end=start + 1),
            )
        return ParseFailure(message=message)


_WORKER_SOURCE = r"""
console.log = (...args) => console.error(...args);
const { createInterface } = await import('node:readline');
let mini;
try {
  mini = await import(process.env.STRUDEL_MINI_MODULE || '@strudel/mini');
} catch (err) {
  process.stderr.write(`cannot load mini-notation parser: ${err && err.message}\n`);
  process.exit(3);
}
const reply = (payload) => process.stdout.write(JSON.stringify(payload) + '\n');
createInterface({ input: process.stdin }).on('line', (line) => {
  let request;
  try {
    request = JSON.parse(line);
  } catch {
    return;
  }
  try {
    if (request.op === 'leaves') {
      const leaves = mini.getLeaves(request.input).map((leaf) => ({
        type: leaf.type_,
        source: leaf.source_,
        location: leaf.location_,
      }));
      reply({ id: request.id, ok: true, leaves });
    } else {
      mini.parse(request.input);
      reply({ id: request.id, ok: true });
    }
  } catch (err) {
    const error = { message: String((err && err.message) || err) };
    if (err && err.location) error.location = err.location;
    if (err && Array.isArray(err.expected)) error.expected = err.expected;
    if (err && 'found' in err) error.found = err.found;
    reply({ id: request.id, ok: false, error });
  }
});
"""


def _wait_readable(stream, deadline: float) -> None:
    fileno = getattr(stream, "fileno", None)
    if fileno is None:
        return
    try:
        fd = fileno()
    except (OSError, ValueError):
        return
    timeout = max(0.0, deadline - time.monotonic())
    try:
        ready, _, _ = select.select([fd], [], [], timeout)
    except (OSError, ValueError) as exc:
        raise ParserUnavailable(f"cannot wait for mini-notation parser: {exc}") from exc
    if not ready:
        raise ParserUnavailable("mini-notation parser timed out")


class NodeMiniParser:
    """Runs ``@strudel/mini`` in a long-lived Node.js worker process.

    Requests and replies are newline-delimited JSON on the worker's stdin and
    stdout. The worker is started on first use and restarted after it dies;
    if it cannot be spawned at all, every later call fails fast. A worker that
    stops answering is killed, and calls fail fast for ``restart_delay``
    seconds before a new one is started.
    """

    def __init__(
        self,
        *,
        command: Sequence[str] = DEFAULT_PARSER_COMMAND,
        module: str = DEFAULT_PARSER_MODULE,
        timeout: float = DEFAULT_PARSER_TIMEOUT,
        restart_delay: float = DEFAULT_PARSER_RESTART_DELAY,
        cwd: str | None = None,
        process_factory: Callable[..., subprocess.Popen] = subprocess.Popen,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.command = tuple(command)
        self.module = module
        self.timeout = timeout
        self.restart_delay = restart_delay
        self.cwd = cwd
        self._process_factory = process_factory
        self._clock = clock
        self._proc: subprocess.Popen | None = None
        self._next_id = 0
        self._spawn_error: str | None = None
        self._retry_at: float | None = None

    def parse(self, quoted_input: str) -> None:
        self._request("parse", quoted_input)

    def get_leaves(self, quoted_input: str) -> list[Leaf]:
        response = self._request("leaves", quoted_input)
        leaves: list[Leaf] = []
        for leaf in response.leaves:
            span = span_from_location(leaf.location, quoted_input)
            if span is None:
                continue
            leaves.append(Leaf(kind=leaf.type, text=leaf.source, span=span))
        return leaves

    def close(self) -> None:
        proc = self._proc
        self._proc = None
        if proc is None:
            return
        try:
            if proc.stdin is not None:
                proc.stdin.close()
        except OSError:
            pass
        try:
            proc.wait(timeout=1.0)
        except subprocess.TimeoutExpired:
            proc.kill()

    def _discard(self, proc: subprocess.Popen) -> None:
        if self._proc is proc:
            self._proc = None
        self._retry_at = self._clock() + self.restart_delay
        try:
            proc.kill()
        except OSError:
            logger.debug("mini-notation parser worker already gone")

    def _ensure_process(self) -> subprocess.Popen:
        if self._spawn_error is not None:
            raise ParserUnavailable(self._spawn_error)
        if self._proc is not None and self._proc.poll() is None:
            return self._proc
        if self._retry_at is not None:
            if self._clock() < self._retry_at:
                raise ParserUnavailable("mini-notation parser is restarting")
            self._retry_at = None
        env = {**os.environ, "STRUDEL_MINI_MODULE": self.module}
        try:
            self._proc = self._process_factory(
                [*self.command, "--input-type=module", "-e", _WORKER_SOURCE],
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                cwd=self.cwd,
                env=env,
                bufsize=0,
            )
        except OSError as exc:
            self._spawn_error = f"cannot start mini-notation parser ({self.command[0]}): {exc}"
            logger.warning("%s", self._spawn_error)
            raise ParserUnavailable(self._spawn_error) from exc
        logger.info("started mini-notation parser worker (%s)", self.module)
        return self._proc

    def _request(self, op: str, quoted_input: str) -> ParserResponse:
        proc = self._ensure_process()
        if proc.stdin is None or proc.stdout is None:
            self._discard(proc)
            raise ParserUnavailable("mini-notation parser worker has no pipes")
        self._next_id += 1
        request_id = self._next_id
        line = json.dumps({"id": request_id, "op": op, "input": quoted_input}) + "\n"
        try:
            proc.stdin.write(line.encode("utf-8"))
            proc.stdin.flush()
        except (BrokenPipeError, OSError) as exc:
            self._proc = None
            raise ParserUnavailable("mini-notation parser worker exited") from exc
        response = self._read_response(proc, request_id)
        if not response.ok:
            error = response.error
            if error is None:
                raise MiniSyntaxError("Unknown parse error")
            if "found" in error.model_fields_set:
                raise MiniSyntaxError(
                    error.message,
                    location=error.location,
                    expected=error.expected,
                    found=error.found,
                )
            raise MiniSyntaxError(
                error.message, location=error.location, expected=error.expected
            )
        return response

    def _read_response(self, proc: subprocess.Popen, request_id: int) -> ParserResponse:
        deadline = time.monotonic() + self.timeout
        while True:
            try:
                _wait_readable(proc.stdout, deadline)
            except ParserUnavailable as exc:
                logger.warning("%s; killing worker", exc)
                self._discard(proc)
                raise
            raw = proc.stdout.readline()
            if not raw:
                self._proc = None
                raise ParserUnavailable(
                    f"mini-notation parser worker exited (code {proc.poll()})"
                )
            try:
                response = ParserResponse.model_validate_json(raw)
            except ValidationError:
                # stray output from the parser library
                continue
            if response.id == request_id:
                return response
