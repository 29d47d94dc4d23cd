from __future__ import annotations

import asyncio
import json

from strudel_lsp.engine_client import ConnectionState, EngineSyncClient
from strudel_lsp.schema import EngineDescriptor
from strudel_lsp.vocabulary import VocabularyRegistry


class _FakeWriter:
    def __init__(self) -> None:
        self.data = bytearray()
        self.closed = False

    def write(self, data: bytes) -> None:
        self.data.extend(data)

    async def drain(self) -> None:
        return None

    def close(self) -> None:
        self.closed = True

    def messages(self) -> list[dict[str, object]]:
        return [json.loads(line) for line in self.data.decode("utf-8").splitlines()]


class _Connector:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[tuple[str, int]] = []
        self.readers: list[asyncio.StreamReader] = []
        self.writers: list[_FakeWriter] = []

    async def __call__(self, host: str, port: int):
        self.calls.append((host, port))
        if self.fail:
            raise ConnectionRefusedError("connection refused")
        reader = asyncio.StreamReader()
        writer = _FakeWriter()
        self.readers.append(reader)
        self.writers.append(writer)
        return reader, writer


class _FakeDiscovery:
    def __init__(
        self, descriptor: EngineDescriptor | None = None, *, running: bool = True
    ) -> None:
        self.descriptor = descriptor
        self.running = running
        self.callback = None
        self.interval: float | None = None
        self.stopped = False

    def read_current_state(self) -> EngineDescriptor | None:
        return self.descriptor

    def is_engine_running(self, descriptor: EngineDescriptor | None) -> bool:
        return descriptor is not None and self.running

    def watch_for_changes(self, callback, *, loop=None, interval=1.0):
        self.callback = callback
        self.interval = interval
        return self.stop

    def stop(self) -> None:
        self.stopped = True


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


def _client(registry: VocabularyRegistry, discovery=None, connector=None, **kwargs):
    changes: list[int] = []
    client = EngineSyncClient(
        registry,
        discovery or _FakeDiscovery(),
        on_vocabulary_changed=lambda: changes.append(len(registry.samples)),
        open_connection=connector or _Connector(),
        **kwargs,
    )
    return client, changes


ENGINE_A = EngineDescriptor(port=4321, pid=99)
ENGINE_B = EngineDescriptor(port=4322, pid=100)


def test_lines_split_across_chunks(registry: VocabularyRegistry) -> None:
    client, changes = _client(registry)
    client.feed('{"type":"samp')
    assert registry.dynamic_samples == []
    client.feed('les","samples":["zz1","zz2"]}\n{"type":"banks",')
    assert registry.dynamic_samples == ["zz1", "zz2"]
    assert registry.dynamic_banks == []
    client.feed('"banks":["MyBank"]}\n')
    assert registry.dynamic_banks == ["MyBank"]
    assert len(changes) == 2


def test_bad_messages_are_ignored(registry: VocabularyRegistry) -> None:
    client, changes = _client(registry)
    client.feed(
        "not json\n"
        "[1, 2]\n"
        '{"type": "unknown"}\n'
        '{"type": ["samples"]}\n'
        '{"type": "samples", "samples": "bd"}\n'
        "\n"
    )
    assert changes == []
    assert registry.dynamic_samples == []
    client.feed('{"type": "sounds", "sounds": ["sawtooth2"]}\n')
    assert registry.sounds == ["sawtooth2"]
    assert registry.is_sample("sawtooth2")
    assert len(changes) == 1


def test_connect_requests_and_streams_vocabulary(registry: VocabularyRegistry) -> None:
    async def scenario() -> None:
        connector = _Connector()
        client, changes = _client(registry, connector=connector, host="127.0.0.9")
        task = client.connect(ENGINE_A)
        assert client.state is ConnectionState.CONNECTING
        await _settle()
        assert connector.calls == [("127.0.0.9", 4321)]
        assert client.state is ConnectionState.CONNECTED
        assert client.descriptor == ENGINE_A
        writer = connector.writers[0]
        assert writer.messages() == [
            {"type": "getSamples"},
            {"type": "getBanks"},
            {"type": "getSounds"},
        ]
        reader = connector.readers[0]
        reader.feed_data(b'{"type":"samples","samples":["caf\xc3')
        await _settle()
        reader.feed_data(b'\xa9"]}\n')
        await _settle()
        assert registry.dynamic_samples == ["café"]
        assert len(changes) == 1
        reader.feed_eof()
        await task
        assert client.state is ConnectionState.DISCONNECTED
        assert client.descriptor is None
        assert writer.closed

    asyncio.run(scenario())


def test_connection_refused_leaves_client_disconnected(
    registry: VocabularyRegistry,
) -> None:
    async def scenario() -> None:
        client, _ = _client(registry, connector=_Connector(fail=True))
        await client.connect(ENGINE_A)
        assert client.state is ConnectionState.DISCONNECTED
        assert client.descriptor is None

    asyncio.run(scenario())


def test_only_the_latest_reconnect_timer_fires(registry: VocabularyRegistry) -> None:
    async def scenario() -> None:
        connector = _Connector()
        client, _ = _client(registry, connector=connector, settle_delay=0.01)
        client.on_discovery(ENGINE_A)
        first = client._reconnect_timer
        assert client.reconnect_pending
        client.on_discovery(ENGINE_B)
        assert first is not None and first.cancelled()
        await asyncio.sleep(0.1)
        assert connector.calls == [("127.0.0.1", 4322)]
        assert client.descriptor == ENGINE_B
        assert client.state is ConnectionState.CONNECTED
        assert not client.reconnect_pending
        client.shutdown()

    asyncio.run(scenario())


def test_rediscovering_the_same_engine_keeps_the_connection(
    registry: VocabularyRegistry,
) -> None:
    async def scenario() -> None:
        connector = _Connector()
        client, _ = _client(registry, connector=connector)
        client.connect(ENGINE_A)
        await _settle()
        client.on_discovery(EngineDescriptor(port=4321, pid=99))
        assert not client.reconnect_pending
        assert client.state is ConnectionState.CONNECTED
        assert len(connector.calls) == 1
        client.shutdown()

    asyncio.run(scenario())


def test_engine_going_away_disconnects(registry: VocabularyRegistry) -> None:
    async def scenario() -> None:
        connector = _Connector()
        discovery = _FakeDiscovery()
        client, _ = _client(registry, discovery=discovery, connector=connector)
        client.connect(ENGINE_A)
        await _settle()
        client.schedule_reconnect(ENGINE_B)
        discovery.running = False
        client.on_discovery(ENGINE_A)
        assert client.state is ConnectionState.DISCONNECTED
        assert client.descriptor is None
        assert connector.writers[0].closed
        assert not client.reconnect_pending
        client.on_discovery(None)
        assert client.state is ConnectionState.DISCONNECTED

    asyncio.run(scenario())


def test_start_connects_to_running_engine_and_watches(
    registry: VocabularyRegistry,
) -> None:
    async def scenario() -> None:
        connector = _Connector()
        discovery = _FakeDiscovery(ENGINE_A)
        client, _ = _client(
            registry, discovery=discovery, connector=connector, poll_interval=0.25
        )
        client.start()
        await _settle()
        assert connector.calls == [("127.0.0.1", 4321)]
        assert discovery.callback == client.on_discovery
        assert discovery.interval == 0.25
        client.shutdown()

    asyncio.run(scenario())


def test_start_without_engine_only_watches(registry: VocabularyRegistry) -> None:
    async def scenario() -> None:
        connector = _Connector()
        discovery = _FakeDiscovery(ENGINE_A, running=False)
        client, _ = _client(registry, discovery=discovery, connector=connector)
        client.start()
        await _settle()
        assert connector.calls == []
        assert client.state is ConnectionState.DISCONNECTED
        assert discovery.callback is not None
        client.shutdown()

    asyncio.run(scenario())


def test_shutdown_stops_everything_once(registry: VocabularyRegistry) -> None:
    async def scenario() -> None:
        connector = _Connector()
        discovery = _FakeDiscovery(ENGINE_A)
        client, _ = _client(registry, discovery=discovery, connector=connector)
        client.start()
        await _settle()
        client.schedule_reconnect(ENGINE_B)
        client.shutdown()
        assert discovery.stopped
        assert not client.reconnect_pending
        assert client.state is ConnectionState.DISCONNECTED
        assert connector.writers[0].closed
        client.shutdown()
        client.on_discovery(ENGINE_B)
        assert not client.reconnect_pending

    asyncio.run(scenario())


def test_new_connection_replaces_old_session(registry: VocabularyRegistry) -> None:
    async def scenario() -> None:
        connector = _Connector()
        client, _ = _client(registry, connector=connector)
        first = client.connect(ENGINE_A)
        await _settle()
        second = client.connect(ENGINE_B)
        await _settle()
        assert first.cancelled()
        assert connector.writers[0].closed
        assert not connector.writers[1].closed
        assert client.descriptor == ENGINE_B
        assert client.state is ConnectionState.CONNECTED
        connector.readers[1].feed_eof()
        await second
        assert client.state is ConnectionState.DISCONNECTED

    asyncio.run(scenario())
