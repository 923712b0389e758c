from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from rfidzone.__main__ import main
from rfidzone._lock import InstanceLock
from rfidzone.config import GatewayConfig, ReaderEndpoint, ZoneConfig
from rfidzone.exceptions import RfidLockError, RfidReaderError
from rfidzone.gateway import ReaderGateway
from rfidzone.models import ZoneEvent
from rfidzone.supervisor import SupervisorState


class _FakeForwarder:
    def __init__(self) -> None:
        self.events: list[ZoneEvent] = []

    async def forward(self, event: ZoneEvent) -> bool:
        self.events.append(event)
        return True

    async def get_presence(self, epc: str) -> str | None:
        return None


def _config(tmp_path: Path, *, single_instance: bool = True) -> GatewayConfig:
    return GatewayConfig(
        state_file=tmp_path / "state.txt",
        lock_dir=tmp_path,
        single_instance=single_instance,
        zones=(
            ZoneConfig(zone="IN", endpoint=ReaderEndpoint(host="10.0.0.1"), reconnect_delay_ms=20),
            ZoneConfig(zone="OUT", endpoint=ReaderEndpoint(serial_path="/dev/ttyUSB0"), reconnect_delay_ms=20),
        ),
    )


async def _refuse(endpoint: ReaderEndpoint, reader_id: str) -> object:
    raise RfidReaderError("offline", reader_id=reader_id)


@pytest.mark.asyncio
async def test_gateway_runs_every_zone_and_releases_locks(tmp_path: Path) -> None:
    gateway = ReaderGateway(_config(tmp_path), forwarder=_FakeForwarder(), opener=_refuse)

    task = asyncio.create_task(gateway.run())
    while len(gateway.supervisors) < 2 or any(s.connect_attempts < 2 for s in gateway.supervisors):
        await asyncio.sleep(0.01)

    assert (tmp_path / "rfid-in-tcp.lock").exists()
    assert (tmp_path / "rfid-out-serial.lock").exists()

    gateway.stop("test")
    await asyncio.wait_for(task, 3.0)

    assert [s.zone for s in gateway.supervisors] == ["IN", "OUT"]
    assert all(s.state == SupervisorState.SHUTTING_DOWN for s in gateway.supervisors)
    assert not list(tmp_path.glob("*.lock"))


@pytest.mark.asyncio
async def test_lock_contention_aborts_before_start(tmp_path: Path) -> None:
    held = InstanceLock.for_zone("OUT", "serial", tmp_path).acquire()
    try:
        gateway = ReaderGateway(_config(tmp_path), forwarder=_FakeForwarder(), opener=_refuse)
        with pytest.raises(RfidLockError):
            await gateway.run()

        assert gateway.supervisors == []
        # The IN lock taken before the failure is given back.
        assert not (tmp_path / "rfid-in-tcp.lock").exists()
    finally:
        held.release()


@pytest.mark.asyncio
async def test_single_instance_disabled_skips_locks(tmp_path: Path) -> None:
    gateway = ReaderGateway(_config(tmp_path, single_instance=False), forwarder=_FakeForwarder(), opener=_refuse)
    gateway.acquire_locks()
    assert not list(tmp_path.glob("*.lock"))


def test_main_rejects_unknown_zone(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RFID_ZONES", "IN")
    assert main(["--zone", "DOCK"]) == 1


def test_main_reports_lock_contention(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RFID_ZONES", "IN")
    monkeypatch.setenv("IN_HOST", "10.0.0.1")
    monkeypatch.setenv("RFID_LOCK_DIR", str(tmp_path))
    monkeypatch.setenv("STATE_FILE", str(tmp_path / "state.txt"))
    monkeypatch.setenv("SINGLE_INSTANCE", "1")

    held = InstanceLock.for_zone("IN", "tcp", tmp_path).acquire()
    try:
        assert main(["--log-level", "WARNING"]) == 1
    finally:
        held.release()


@pytest.mark.asyncio
async def test_supervisor_crash_stops_the_other_zones(tmp_path: Path) -> None:
    async def _opener(endpoint: ReaderEndpoint, reader_id: str) -> object:
        if endpoint.serial_path:
            await asyncio.sleep(0.05)
            raise ValueError("bad serial settings")
        raise RfidReaderError("offline", reader_id=reader_id)

    gateway = ReaderGateway(_config(tmp_path), forwarder=_FakeForwarder(), opener=_opener)

    with pytest.raises(ValueError):
        await asyncio.wait_for(gateway.run(), 3.0)

    assert all(s.state == SupervisorState.SHUTTING_DOWN for s in gateway.supervisors)
    assert not list(tmp_path.glob("*.lock"))
