from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from rfidzone._codec import build_inventory_command, crc16_bytes
from rfidzone._lock import InstanceLock
from rfidzone.config import ReaderEndpoint, ZoneConfig
from rfidzone.exceptions import RfidReaderError
from rfidzone.models import ReadMode, ZoneEvent
from rfidzone.state.gate import TagGate
from rfidzone.state.store import ZoneStateStore
from rfidzone.supervisor import ConnectionSupervisor, SupervisorState

_EPC = "11700000020F6A1B2C3D"


def _frame(epc_hex: str = "E280" + _EPC, rssi_tenths: int = -550) -> bytes:
    epc = bytes.fromhex(epc_hex)
    data = rssi_tenths.to_bytes(2, "big", signed=True) + bytes((1, 3, len(epc))) + epc
    body = bytes((0xCF, 0x00, 0x00, 0x01, len(data) + 1, 0x00)) + data
    return body + crc16_bytes(body)


class _FakeForwarder:
    def __init__(self) -> None:
        self.events: list[ZoneEvent] = []

    async def forward(self, event: ZoneEvent) -> bool:
        self.events.append(event)
        return True

    async def get_presence(self, epc: str) -> str | None:
        return None


class _FakeConnection:
    def __init__(self, chunks: list[bytes]) -> None:
        self._chunks = list(chunks)
        self.written: list[bytes] = []
        self.closed = False

    async def read(self) -> bytes:
        await asyncio.sleep(0)
        if self._chunks:
            return self._chunks.pop(0)
        return b""

    async def write(self, data: bytes) -> None:
        self.written.append(data)

    async def close(self) -> None:
        self.closed = True


async def _until(predicate: Callable[[], bool], timeout: float = 3.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


def _zone(endpoint: ReaderEndpoint, **overrides: Any) -> ZoneConfig:
    fields: dict[str, Any] = {
        "zone": "IN",
        "endpoint": endpoint,
        "rssi_min_dbm": -127.0,
        "hit_window_ms": 0,
        "min_hits": 1,
        "cooldown_ms": 0,
        "inventory_poll": True,
        "poll_interval_ms": 50,
        "reconnect_delay_ms": 50,
    }
    fields.update(overrides)
    return ZoneConfig(**fields)


def _gate(tmp_path: Path, zone: ZoneConfig, forwarder: _FakeForwarder) -> TagGate:
    return TagGate(zone, ZoneStateStore(tmp_path / "state.txt"), forwarder)


@pytest.mark.asyncio
async def test_tcp_reader_polls_forwards_and_reconnects(tmp_path: Path) -> None:
    commands: list[bytes] = []
    connections = 0

    async def _reader(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        nonlocal connections
        connections += 1
        commands.append(await reader.readexactly(5))
        # Split the frame across writes so reassembly is exercised.
        frame = _frame()
        writer.write(b"\x00\x11" + frame[:7])
        await writer.drain()
        await asyncio.sleep(0.02)
        writer.write(frame[7:])
        await writer.drain()
        await asyncio.sleep(0.1)
        writer.close()

    server = await asyncio.start_server(_reader, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    forwarder = _FakeForwarder()
    zone = _zone(ReaderEndpoint(host="127.0.0.1", port=port))
    supervisor = ConnectionSupervisor(zone, _gate(tmp_path, zone, forwarder))
    stop = asyncio.Event()

    async with server:
        task = asyncio.create_task(supervisor.run(stop))
        await _until(lambda: len(forwarder.events) == 1)
        await _until(lambda: connections >= 2)

        stop.set()
        await asyncio.wait_for(task, 3.0)

    assert commands[0] == build_inventory_command()
    event = forwarder.events[0]
    assert event.epc == _EPC
    assert event.reader_id == f"IN-tcp:127.0.0.1:{port}"
    assert event.payload.model_dump()["rssiDbm"] == -55.0
    assert supervisor.connect_attempts >= 2
    assert supervisor.state == SupervisorState.SHUTTING_DOWN


@pytest.mark.asyncio
async def test_no_poll_when_disabled(tmp_path: Path) -> None:
    connection = _FakeConnection([_frame()])
    forwarder = _FakeForwarder()
    zone = _zone(ReaderEndpoint(host="10.0.0.9"), zone="OUT", inventory_poll=False)
    stop = asyncio.Event()

    async def _opener(endpoint: ReaderEndpoint, reader_id: str) -> _FakeConnection:
        if connection.closed:
            await stop.wait()
        return connection

    supervisor = ConnectionSupervisor(zone, _gate(tmp_path, zone, forwarder), opener=_opener)
    task = asyncio.create_task(supervisor.run(stop))
    await _until(lambda: len(forwarder.events) == 1)
    stop.set()
    await asyncio.wait_for(task, 3.0)

    assert connection.written == []
    assert connection.closed


@pytest.mark.asyncio
async def test_connect_failures_retry_until_stopped(tmp_path: Path) -> None:
    attempts: list[str] = []

    async def _opener(endpoint: ReaderEndpoint, reader_id: str) -> _FakeConnection:
        attempts.append(reader_id)
        raise RfidReaderError("connection refused", reader_id=reader_id)

    lock = InstanceLock(tmp_path / "rfid-in-tcp.lock").acquire()
    zone = _zone(ReaderEndpoint(host="10.0.0.9"))
    supervisor = ConnectionSupervisor(zone, _gate(tmp_path, zone, _FakeForwarder()), opener=_opener, lock=lock)
    stop = asyncio.Event()

    task = asyncio.create_task(supervisor.run(stop))
    await _until(lambda: len(attempts) >= 3)
    stop.set()
    await asyncio.wait_for(task, 3.0)

    assert set(attempts) == {"IN-tcp:10.0.0.9:2022"}
    assert not lock.held
    assert not lock.path.exists()


@pytest.mark.asyncio
async def test_stop_interrupts_pending_connect(tmp_path: Path) -> None:
    started = asyncio.Event()

    async def _opener(endpoint: ReaderEndpoint, reader_id: str) -> _FakeConnection:
        started.set()
        await asyncio.sleep(60)
        raise AssertionError("unreachable")

    zone = _zone(ReaderEndpoint(host="10.0.0.9"))
    supervisor = ConnectionSupervisor(zone, _gate(tmp_path, zone, _FakeForwarder()), opener=_opener)
    stop = asyncio.Event()

    task = asyncio.create_task(supervisor.run(stop))
    await started.wait()
    stop.set()
    await asyncio.wait_for(task, 1.0)
    assert supervisor.connect_attempts == 1


@pytest.mark.asyncio
async def test_feed_falls_back_to_legacy_records(tmp_path: Path) -> None:
    forwarder = _FakeForwarder()
    zone = _zone(ReaderEndpoint(host="10.0.0.9"))
    supervisor = ConnectionSupervisor(zone, _gate(tmp_path, zone, forwarder))

    reads = supervisor.feed(bytes.fromhex("01000CE280" + _EPC))
    assert [r.mode for r in reads] == [ReadMode.LEGACY]

    await _until(lambda: supervisor.pending == 0)
    assert [e.epc for e in forwarder.events] == [_EPC]


@pytest.mark.asyncio
async def test_feed_prefers_framed_reads(tmp_path: Path) -> None:
    forwarder = _FakeForwarder()
    zone = _zone(ReaderEndpoint(host="10.0.0.9"))
    supervisor = ConnectionSupervisor(zone, _gate(tmp_path, zone, forwarder))

    reads = supervisor.feed(_frame() + _frame("E280" + "A" * 20))
    assert [(r.epc, r.mode) for r in reads] == [(_EPC, ReadMode.FRAMED), ("A" * 20, ReadMode.FRAMED)]
    await _until(lambda: supervisor.pending == 0)
    assert len(forwarder.events) == 2


class _IdleConnection(_FakeConnection):
    """Never delivers data; ``read`` parks until the session is cancelled."""

    def __init__(self) -> None:
        super().__init__([])
        self._never = asyncio.Event()

    async def read(self) -> bytes:
        await self._never.wait()
        return b""


@pytest.mark.asyncio
async def test_inventory_command_repeats_every_poll_interval(tmp_path: Path) -> None:
    connection = _IdleConnection()
    zone = _zone(ReaderEndpoint(host="10.0.0.9"), poll_interval_ms=20)
    stop = asyncio.Event()

    async def _opener(endpoint: ReaderEndpoint, reader_id: str) -> _IdleConnection:
        return connection

    supervisor = ConnectionSupervisor(zone, _gate(tmp_path, zone, _FakeForwarder()), opener=_opener)
    task = asyncio.create_task(supervisor.run(stop))
    await _until(lambda: len(connection.written) >= 3)
    assert supervisor.state == SupervisorState.CONNECTED

    stop.set()
    await asyncio.wait_for(task, 3.0)
    sent = len(connection.written)
    await asyncio.sleep(0.1)

    assert len(connection.written) == sent
    assert set(connection.written) == {build_inventory_command()}
    assert connection.closed
