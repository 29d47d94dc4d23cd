"""Engine discovery through the state file the engine writes on start-up."""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Callable, Optional

from pydantic import ValidationError

from strudel_lsp.config import DEFAULT_POLL_INTERVAL, DEFAULT_STATE_FILE
from strudel_lsp.schema import EngineDescriptor

logger = logging.getLogger(__name__)

DiscoveryCallback = Callable[[Optional[EngineDescriptor]], None]


def is_engine_running(descriptor: EngineDescriptor | None) -> bool:
    if descriptor is None or descriptor.port <= 0 or descriptor.pid <= 0:
        return False
    try:
        os.kill(descriptor.pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # exists, owned by another user
        return True
    except OSError:
        return False
    return True


class EngineStateFile:
    """``{"port": int, "pid": int}`` JSON file describing the running engine."""

    def __init__(self, path: Path | str = DEFAULT_STATE_FILE) -> None:
        self.path = Path(path).expanduser()

    def read_current_state(self) -> EngineDescriptor | None:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("cannot read engine state file %s: %s", self.path, exc)
            return None
        try:
            return EngineDescriptor.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning(
                "malformed engine state file %s (%d errors)", self.path, exc.error_count()
            )
            return None

    def is_engine_running(self, descriptor: EngineDescriptor | None) -> bool:
        return is_engine_running(descriptor)

    def signature(self) -> tuple[int, int] | None:
        try:
            stat = self.path.stat()
        except OSError:
            return None
        return stat.st_mtime_ns, stat.st_size

    def watch_for_changes(
        self,
        callback: DiscoveryCallback,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
        interval: float = DEFAULT_POLL_INTERVAL,
    ) -> Callable[[], None]:
        """Poll the file and call ``callback`` whenever it changes.

        Removal of the file is reported as ``None``. Returns a function that
        stops the polling.
        """
        watcher = _StateFileWatcher(
            self, callback, loop or asyncio.get_running_loop(), interval
        )
        watcher.start()
        return watcher.stop


class _StateFileWatcher:
    def __init__(
        self,
        state_file: EngineStateFile,
        callback: DiscoveryCallback,
        loop: asyncio.AbstractEventLoop,
        interval: float,
    ) -> None:
        self._state_file = state_file
        self._callback = callback
        self._loop = loop
        self._interval = interval
        self._last = state_file.signature()
        self._handle: asyncio.TimerHandle | None = None
        self._stopped = False

    def start(self) -> None:
        self._schedule()

    def stop(self) -> None:
        self._stopped = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _schedule(self) -> None:
        self._handle = self._loop.call_later(self._interval, self._poll)

    def _poll(self) -> None:
        self._handle = None
        if self._stopped:
            return
        try:
            signature = self._state_file.signature()
            if signature != self._last:
                self._last = signature
                self._callback(self._state_file.read_current_state())
        finally:
            if not self._stopped:
                self._schedule()
