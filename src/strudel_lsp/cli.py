from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Callable, List, Mapping, Optional

import typer
from lsprotocol.types import DiagnosticSeverity, PositionEncodingKind
from pygls.workspace import PositionCodec

from strudel_lsp.config import ServerSettings, load_settings, resolve_log_level
from strudel_lsp.diagnostics import DiagnosticEngine, position_key
from strudel_lsp.exceptions import ConfigError
from strudel_lsp.notation import MiniParser, NotationDelegate
from strudel_lsp.server import build_parser, build_registry, server, start, start_tcp
from strudel_lsp.similarity import suggest as rank_suggestions
from strudel_lsp.vocabulary import VocabularyRegistry

app = typer.Typer(add_completion=False)

DEFAULT_TCP_PORT = 2087
_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_CHARACTER_COLUMNS = PositionCodec(encoding=PositionEncodingKind.Utf32)

ParserFactory = Callable[[ServerSettings, Optional[Path]], MiniParser]


def _configure_logging(level: str) -> None:
    # stdout carries the protocol
    logging.basicConfig(stream=sys.stderr, level=resolve_log_level(level), format=_LOG_FORMAT)


def _load_settings(root: Optional[Path], config: Optional[Path]) -> ServerSettings:
    try:
        return load_settings(root=root, config_path=config)
    except ConfigError as exc:
        typer.echo(f"strudel-lsp: {exc}", err=True)
        raise typer.Exit(code=2)


def _default_parser_factory(settings: ServerSettings, root: Optional[Path]) -> MiniParser:
    return build_parser(settings, cwd=str(root) if root is not None else None)


def _context_parser_factory(ctx: typer.Context) -> ParserFactory:
    obj = ctx.obj
    if isinstance(obj, Mapping):
        candidate = obj.get("parser_factory")
        if callable(candidate):
            return candidate
    return _default_parser_factory


def _run_server(
    settings: ServerSettings,
    *,
    pinned: bool,
    root: Optional[Path],
    tcp: bool,
    host: str,
    port: int,
) -> None:
    server.settings_pinned = pinned
    server.configure(settings, root=root)
    if tcp:
        start_tcp(host, port)
    else:
        start()


def _context_run_server(ctx: typer.Context) -> Callable[..., None]:
    obj = ctx.obj
    if isinstance(obj, Mapping):
        candidate = obj.get("run_server")
        if callable(candidate):
            return candidate
    return _run_server


@app.command("serve")
def serve(
    ctx: typer.Context,
    tcp: bool = typer.Option(False, "--tcp", help="Listen on TCP instead of stdio."),
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(DEFAULT_TCP_PORT, "--port"),
    root: Optional[Path] = typer.Option(None, "--root"),
    config: Optional[Path] = typer.Option(None, "--config"),
) -> None:
    """Run the language server."""
    settings = _load_settings(root, config)
    _configure_logging(settings.log_level)
    _context_run_server(ctx)(
        settings,
        pinned=root is not None or config is not None,
        root=root,
        tcp=tcp,
        host=host,
        port=port,
    )


def _severity_name(severity: DiagnosticSeverity | None) -> str:
    if severity is None:
        return "error"
    return DiagnosticSeverity(severity).name.lower()


@app.command("check")
def check(
    ctx: typer.Context,
    paths: List[Path] = typer.Argument(..., exists=True, dir_okay=False),
    root: Optional[Path] = typer.Option(None, "--root"),
    config: Optional[Path] = typer.Option(None, "--config"),
    json_output: bool = typer.Option(False, "--json", help="Print diagnostics as JSON."),
) -> None:
    """Report notation diagnostics for files without a running engine."""
    settings = _load_settings(root, config)
    _configure_logging(settings.log_level)
    parser = _context_parser_factory(ctx)(settings, root)
    engine = DiagnosticEngine(build_registry(settings), NotationDelegate(parser))
    records: list[dict[str, object]] = []
    try:
        for path in paths:
            result = engine.validate(path.read_text(encoding="utf-8"), _CHARACTER_COLUMNS)
            for diagnostic in result.diagnostics:
                start_pos = diagnostic.range.start
                record = result.suggestions.get(position_key(start_pos))
                records.append(
                    {
                        "path": str(path),
                        "line": start_pos.line + 1,
                        "column": start_pos.character + 1,
                        "severity": _severity_name(diagnostic.severity),
                        "code": diagnostic.code,
                        "message": diagnostic.message,
                        "suggestions": list(record.suggestions) if record else [],
                    }
                )
    finally:
        close_parser = getattr(parser, "close", None)
        if close_parser is not None:
            close_parser()
    if json_output:
        typer.echo(json.dumps(records, indent=2))
    else:
        for item in records:
            typer.echo(
                f"{item['path']}:{item['line']}:{item['column']}: "
                f"{item['severity']} {item['code']} {item['message']}"
            )
    if any(item["severity"] == "error" for item in records):
        raise typer.Exit(code=1)


@app.command("suggest")
def suggest(
    word: str = typer.Argument(...),
    functions: bool = typer.Option(
        False, "--functions", help="Match against function names instead of samples."
    ),
) -> None:
    """Print ranked corrections for WORD."""
    registry = VocabularyRegistry()
    vocabulary = registry.function_names if functions else registry.samples
    for candidate in rank_suggestions(word, vocabulary):
        typer.echo(candidate)


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    main()  # pragma: no cover
