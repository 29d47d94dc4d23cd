"""TCP client that keeps the vocabulary in sync with a running engine.

The engine speaks newline-delimited JSON. On connect the client asks for the
current samples, banks and synth sounds; every answer replaces the matching
set in the :class:`~strudel_lsp.vocabulary.VocabularyRegistry` and fires
``on_vocabulary_changed``. The engine's state file tells the client when the
engine restarts on a new port, or goes away.
"""

from __future__ import annotations

import asyncio
import codecs
import enum
import json
import logging
from typing import Any, Awaitable, Callable, Optional, Protocol

from pydantic import BaseModel, ValidationError

from strudel_lsp.config import (
    DEFAULT_ENGINE_HOST,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_SETTLE_DELAY,
)
from strudel_lsp.schema import (
    BanksMessage,
    EngineDescriptor,
    EngineRequest,
    SamplesMessage,
    SoundsMessage,
)
from strudel_lsp.vocabulary import VocabularyRegistry

logger = logging.getLogger(__name__)

_READ_SIZE = 65536
_INITIAL_REQUESTS = ("getSamples", "getBanks", "getSounds")
_MESSAGE_MODELS: dict[str, type[BaseModel]] = {
    "samples": SamplesMessage,
    "banks": BanksMessage,
    "sounds": SoundsMessage,
}

OpenConnection = Callable[..., Awaitable[tuple[Any, Any]]]


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class EngineDiscovery(Protocol):
    def read_current_state(self) -> EngineDescriptor | None: ...

    def is_engine_running(self, descriptor: EngineDescriptor | None) -> bool: ...

    def watch_for_changes(
        self,
        callback: Callable[[Optional[EngineDescriptor]], None],
        *,
        loop: asyncio.AbstractEventLoop | None = None,
        interval: float = DEFAULT_POLL_INTERVAL,
    ) -> Callable[[], None]: ...


class EngineSyncClient:
    """Zero or one live connection to the engine.

    All methods must be called from the event loop thread. At most one
    reconnect timer and one connection session exist at any time; starting a
    new one replaces the old.
    """

    def __init__(
        self,
        registry: VocabularyRegistry,
        discovery: EngineDiscovery,
        *,
        host: str = DEFAULT_ENGINE_HOST,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        on_vocabulary_changed: Callable[[], None] | None = None,
        open_connection: OpenConnection = asyncio.open_connection,
    ) -> None:
        self.registry = registry
        self.discovery = discovery
        self.host = host
        self.settle_delay = settle_delay
        self.poll_interval = poll_interval
        self.on_vocabulary_changed = on_vocabulary_changed
        self._open_connection = open_connection
        self.state = ConnectionState.DISCONNECTED
        self.descriptor: EngineDescriptor | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._writer: Any = None
        self._session: asyncio.Task | None = None
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._reconnect_timer: asyncio.TimerHandle | None = None
        self._stop_watching: Callable[[], None] | None = None
        self._closed = False

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_timer is not None and not self._reconnect_timer.cancelled()

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def start(self) -> None:
        loop = self._get_loop()
        descriptor = self.discovery.read_current_state()
        if descriptor is not None and self.discovery.is_engine_running(descriptor):
            self.connect(descriptor)
        else:
            logger.info("engine not running, waiting for it to start")
        self._stop_watching = self.discovery.watch_for_changes(
            self.on_discovery, loop=loop, interval=self.poll_interval
        )

    def on_discovery(self, descriptor: EngineDescriptor | None) -> None:
        if self._closed:
            return
        if descriptor is not None and self.discovery.is_engine_running(descriptor):
            if (
                descriptor == self.descriptor
                and self.state is not ConnectionState.DISCONNECTED
            ):
                return
            self.schedule_reconnect(descriptor)
            return
        logger.info("engine stopped")
        self._cancel_reconnect()
        self.disconnect()

    def schedule_reconnect(self, descriptor: EngineDescriptor) -> None:
        self._cancel_reconnect()
        self._reconnect_timer = self._get_loop().call_later(
            self.settle_delay, self._reconnect, descriptor
        )

    def _reconnect(self, descriptor: EngineDescriptor) -> None:
        self._reconnect_timer = None
        if not self._closed:
            self.connect(descriptor)

    def _cancel_reconnect(self) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None

    def connect(self, descriptor: EngineDescriptor) -> asyncio.Task:
        self._cancel_reconnect()
        self.disconnect()
        logger.info("connecting to engine on port %d", descriptor.port)
        self.descriptor = descriptor
        self.state = ConnectionState.CONNECTING
        self._session = self._get_loop().create_task(self._run_session(descriptor))
        return self._session

    def disconnect(self) -> None:
        session, self._session = self._session, None
        writer, self._writer = self._writer, None
        self._reset_buffer()
        self.state = ConnectionState.DISCONNECTED
        self.descriptor = None
        if session is not None and not session.done():
            session.cancel()
        if writer is not None:
            writer.close()

    def shutdown(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._stop_watching is not None:
            self._stop_watching()
            self._stop_watching = None
        self._cancel_reconnect()
        self.disconnect()

    async def _run_session(self, descriptor: EngineDescriptor) -> None:
        task = asyncio.current_task()
        try:
            reader, writer = await self._open_connection(self.host, descriptor.port)
        except OSError as exc:
            logger.warning(
                "cannot connect to engine on port %d: %s", descriptor.port, exc
            )
            self.on_close(task)
            return
        if self._session is not task:
            writer.close()
            return
        self._writer = writer
        self.state = ConnectionState.CONNECTED
        logger.info("connected to engine on port %d", descriptor.port)
        try:
            for request in _INITIAL_REQUESTS:
                payload = EngineRequest(type=request).model_dump_json() + "\n"
                writer.write(payload.encode("utf-8"))
            await writer.drain()
            while True:
                chunk = await reader.read(_READ_SIZE)
                if not chunk:
                    break
                self.feed(self._decoder.decode(chunk))
        except OSError as exc:
            logger.warning("engine connection error: %s", exc)
        finally:
            self.on_close(task)

    def on_close(self, task: asyncio.Task | None) -> None:
        """Forget the connection if ``task`` is still the live session."""
        if task is None or self._session is not task:
            return
        logger.info("engine connection closed")
        writer, self._writer = self._writer, None
        self._session = None
        self._reset_buffer()
        self.state = ConnectionState.DISCONNECTED
        self.descriptor = None
        if writer is not None:
            writer.close()

    def _reset_buffer(self) -> None:
        self._buffer = ""
        self._decoder.reset()

    def feed(self, data: str) -> None:
        """Append received text and handle every complete line in the buffer."""
        self._buffer += data
        while "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            if line.strip():
                self.handle_line(line)

    def handle_line(self, line: str) -> None:
        try:
            payload = json.loads(line)
        except json.JSONDecodeError:
            logger.debug("ignoring malformed engine message: %.80s", line)
            return
        if isinstance(payload, dict):
            self.handle_message(payload)

    def handle_message(self, payload: dict[str, Any]) -> None:
        kind = payload.get("type")
        model = _MESSAGE_MODELS.get(kind) if isinstance(kind, str) else None
        if model is None:
            logger.debug("ignoring engine message of type %r", kind)
            return
        try:
            message = model.model_validate(payload)
        except ValidationError:
            logger.debug("ignoring invalid %s message from engine", kind)
            return
        if isinstance(message, SamplesMessage):
            self.registry.replace_dynamic_samples(message.samples)
            logger.info("received %d samples from engine", len(message.samples))
        elif isinstance(message, BanksMessage):
            self.registry.replace_dynamic_banks(message.banks)
            logger.info("received %d banks from engine", len(message.banks))
        elif isinstance(message, SoundsMessage):
            self.registry.replace_dynamic_sounds(message.sounds)
            logger.info("received %d sounds from engine", len(message.sounds))
        if self.on_vocabulary_changed is not None:
            self.on_vocabulary_changed()
