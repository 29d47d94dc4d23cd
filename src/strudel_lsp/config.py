from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import date, datetime, time
from pathlib import Path
from typing import Mapping, TypeAlias
import tomllib

from strudel_lsp.exceptions import ConfigError

DEFAULT_CONFIG_NAME = "strudel-lsp.toml"
DEFAULT_ENGINE_HOST = "127.0.0.1"
DEFAULT_STATE_FILE = Path("~/.cache/strudel/engine-state.json")
DEFAULT_SETTLE_DELAY = 0.5
DEFAULT_POLL_INTERVAL = 1.0
DEFAULT_PARSER_COMMAND = ("node",)
DEFAULT_PARSER_MODULE = "@strudel/mini"
DEFAULT_PARSER_TIMEOUT = 5.0
DEFAULT_PARSER_RESTART_DELAY = 5.0
DEFAULT_LOG_LEVEL = "info"

ENV_HOST = "STRUDEL_HOST"
ENV_STATE_FILE = "STRUDEL_ENGINE_STATE"
ENV_LOG_LEVEL = "STRUDEL_LSP_LOG_LEVEL"

TomlScalar: TypeAlias = str | int | float | bool | None | date | datetime | time
TomlValue: TypeAlias = TomlScalar | list["TomlValue"] | dict[str, "TomlValue"]
TomlTable: TypeAlias = dict[str, TomlValue]


def _load_toml(path: Path) -> TomlTable:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except OSError:
        return {}
    try:
        data = tomllib.loads(raw)
    except tomllib.TOMLDecodeError:
        return {}
    return data if isinstance(data, dict) else {}


def load_config(root: Path | None = None, config_path: Path | None = None) -> TomlTable:
    if config_path is None:
        base = root if root is not None else Path.cwd()
        config_path = base / DEFAULT_CONFIG_NAME
    return _load_toml(config_path)


def _section(data: TomlTable, name: str) -> TomlTable:
    section = data.get(name, {})
    return section if isinstance(section, dict) else {}


def engine_defaults(
    root: Path | None = None, config_path: Path | None = None
) -> TomlTable:
    return _section(load_config(root=root, config_path=config_path), "engine")


def parser_defaults(
    root: Path | None = None, config_path: Path | None = None
) -> TomlTable:
    return _section(load_config(root=root, config_path=config_path), "parser")


def diagnostics_defaults(
    root: Path | None = None, config_path: Path | None = None
) -> TomlTable:
    return _section(load_config(root=root, config_path=config_path), "diagnostics")


def logging_defaults(
    root: Path | None = None, config_path: Path | None = None
) -> TomlTable:
    return _section(load_config(root=root, config_path=config_path), "logging")


def _normalize_name_list(value: TomlValue) -> list[str]:
    items: list[str] = []
    if value is None:
        return items
    if isinstance(value, str):
        items = [part.strip() for part in value.split(",") if part.strip()]
    elif isinstance(value, (list, tuple, set)):
        for item in value:
            if isinstance(item, str):
                items.extend([part.strip() for part in item.split(",") if part.strip()])
    return [item for item in items if item]


def _as_positive_float(value: TomlValue, *, name: str, default: float) -> float:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be a number, got {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be a number, got {value!r}") from exc
    if number < 0:
        raise ConfigError(f"{name} must not be negative, got {value!r}")
    return number


_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


def resolve_log_level(name: str) -> int:
    try:
        return _LOG_LEVELS[name.strip().lower()]
    except KeyError:
        raise ConfigError(f"unknown log level {name!r}") from None


def _command_list(value: TomlValue) -> tuple[str, ...]:
    if value is None:
        return DEFAULT_PARSER_COMMAND
    if isinstance(value, str):
        parts = value.split()
    elif isinstance(value, list):
        parts = [str(item) for item in value if str(item).strip()]
    else:
        raise ConfigError(f"parser.command must be a string or list, got {value!r}")
    if not parts:
        raise ConfigError("parser.command must not be empty")
    return tuple(parts)


@dataclass(frozen=True)
class EngineSettings:
    host: str = DEFAULT_ENGINE_HOST
    state_file: Path = DEFAULT_STATE_FILE
    settle_delay: float = DEFAULT_SETTLE_DELAY
    poll_interval: float = DEFAULT_POLL_INTERVAL


@dataclass(frozen=True)
class ParserSettings:
    command: tuple[str, ...] = DEFAULT_PARSER_COMMAND
    module: str = DEFAULT_PARSER_MODULE
    timeout: float = DEFAULT_PARSER_TIMEOUT
    restart_delay: float = DEFAULT_PARSER_RESTART_DELAY


@dataclass(frozen=True)
class ServerSettings:
    engine: EngineSettings = field(default_factory=EngineSettings)
    parser: ParserSettings = field(default_factory=ParserSettings)
    extra_samples: tuple[str, ...] = ()
    non_sample_functions: tuple[str, ...] = ()
    log_level: str = DEFAULT_LOG_LEVEL


def load_settings(
    root: Path | None = None,
    config_path: Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> ServerSettings:
    env = os.environ if environ is None else environ
    engine = engine_defaults(root, config_path)
    parser = parser_defaults(root, config_path)
    diagnostics = diagnostics_defaults(root, config_path)
    logging_section = logging_defaults(root, config_path)

    host = env.get(ENV_HOST) or str(engine.get("host") or DEFAULT_ENGINE_HOST)
    raw_state_file = env.get(ENV_STATE_FILE) or engine.get("state_file")
    state_file = Path(str(raw_state_file)) if raw_state_file else DEFAULT_STATE_FILE
    log_level = env.get(ENV_LOG_LEVEL) or str(
        logging_section.get("level") or DEFAULT_LOG_LEVEL
    )
    resolve_log_level(log_level)
    return ServerSettings(
        engine=EngineSettings(
            host=host,
            state_file=state_file.expanduser(),
            settle_delay=_as_positive_float(
                engine.get("settle_delay"),
                name="engine.settle_delay",
                default=DEFAULT_SETTLE_DELAY,
            ),
            poll_interval=_as_positive_float(
                engine.get("poll_interval"),
                name="engine.poll_interval",
                default=DEFAULT_POLL_INTERVAL,
            ),
        ),
        parser=ParserSettings(
            command=_command_list(parser.get("command")),
            module=str(parser.get("module") or DEFAULT_PARSER_MODULE),
            timeout=_as_positive_float(
                parser.get("timeout"),
                name="parser.timeout",
                default=DEFAULT_PARSER_TIMEOUT,
            ),
            restart_delay=_as_positive_float(
                parser.get("restart_delay"),
                name="parser.restart_delay",
                default=DEFAULT_PARSER_RESTART_DELAY,
            ),
        ),
        extra_samples=tuple(_normalize_name_list(diagnostics.get("extra_samples"))),
        non_sample_functions=tuple(
            _normalize_name_list(diagnostics.get("non_sample_functions"))
        ),
        log_level=log_level.strip().lower(),
    )
