"""Reader connection lifecycle.

One supervisor owns one reader connection::

    DISCONNECTED -> CONNECTING -> CONNECTED -> RECONNECT_WAIT -> CONNECTING ...
                                   (any state) -> SHUTTING_DOWN

Reconnects use a fixed delay with no backoff. Frame reassembly state is
per connection and discarded on every reconnect.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum

from rfidzone._codec import FrameAssembler, build_inventory_command, parse_inventory_frame, parse_legacy_chunk
from rfidzone._lock import InstanceLock
from rfidzone._reader import ReaderConnection, open_reader
from rfidzone.config import ReaderEndpoint, ZoneConfig
from rfidzone.exceptions import RfidReaderError
from rfidzone.models import TagRead
from rfidzone.state.gate import TagGate

_logger = logging.getLogger(__name__)

ReaderOpener = Callable[[ReaderEndpoint, str], Awaitable[ReaderConnection]]


async def _default_opener(endpoint: ReaderEndpoint, reader_id: str) -> ReaderConnection:
    return await open_reader(endpoint, reader_id=reader_id)


class SupervisorState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECT_WAIT = "reconnect_wait"
    SHUTTING_DOWN = "shutting_down"


class ConnectionSupervisor:
    """Keep one reader connected and feed its bytes through the gate.

    Gate work for each read runs as its own task so a slow backend
    never stalls the byte stream. Shutdown does not wait for those
    tasks; they are cancelled.
    """

    def __init__(
        self,
        zone: ZoneConfig,
        gate: TagGate,
        *,
        opener: ReaderOpener = _default_opener,
        lock: InstanceLock | None = None,
        log_raw: bool = False,
        epc_keep_long: bool = False,
    ) -> None:
        self._zone = zone
        self._gate = gate
        self._opener = opener
        self._lock = lock
        self._log_raw = log_raw
        self._keep_long = epc_keep_long
        self._assembler = FrameAssembler()
        self._command = build_inventory_command()
        self._state = SupervisorState.DISCONNECTED
        self._pending: set[asyncio.Task[object]] = set()
        self._connect_attempts = 0

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def zone(self) -> str:
        return self._zone.zone

    @property
    def connect_attempts(self) -> int:
        return self._connect_attempts

    @property
    def pending(self) -> int:
        """Gate tasks still in flight."""
        return len(self._pending)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def run(self, stop: asyncio.Event) -> None:
        """Supervise the reader until *stop* is set."""
        zone = self._zone
        stop_wait = asyncio.create_task(stop.wait())
        try:
            while not stop.is_set():
                connection = await self._connect(stop_wait)
                if connection is not None:
                    try:
                        await self._run_session(connection, stop_wait)
                    finally:
                        await connection.close()
                if stop.is_set():
                    break

                self._state = SupervisorState.RECONNECT_WAIT
                _logger.warning("%s reconnect in %dms", zone.zone, zone.reconnect_delay_ms)
                await asyncio.wait({stop_wait}, timeout=zone.reconnect_delay_ms / 1000.0)
        finally:
            self._state = SupervisorState.SHUTTING_DOWN
            _logger.info("%s stopping", zone.zone)
            stop_wait.cancel()
            for task in list(self._pending):
                task.cancel()
            if self._lock is not None:
                self._lock.release()

    async def _connect(self, stop_wait: asyncio.Task[object]) -> ReaderConnection | None:
        self._state = SupervisorState.CONNECTING
        self._connect_attempts += 1
        open_task = asyncio.create_task(self._opener(self._zone.endpoint, self._zone.reader_id))
        await asyncio.wait({open_task, stop_wait}, return_when=asyncio.FIRST_COMPLETED)

        if not open_task.done():
            open_task.cancel()
            with contextlib.suppress(asyncio.CancelledError, RfidReaderError):
                await open_task
            return None

        try:
            connection = open_task.result()
        except RfidReaderError as exc:
            _logger.error("%s connect failed: %s", self._zone.zone, exc)
            self._state = SupervisorState.DISCONNECTED
            return None

        if stop_wait.done():
            await connection.close()
            return None
        return connection

    async def _run_session(self, connection: ReaderConnection, stop_wait: asyncio.Task[object]) -> None:
        session = asyncio.create_task(self._serve(connection))
        await asyncio.wait({session, stop_wait}, return_when=asyncio.FIRST_COMPLETED)
        if not session.done():
            session.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await session
            return

        exc = session.exception()
        if exc is not None:
            _logger.error("%s connection error: %s", self._zone.zone, exc)
        self._state = SupervisorState.DISCONNECTED

    async def _serve(self, connection: ReaderConnection) -> None:
        zone = self._zone
        self._assembler.reset()
        self._state = SupervisorState.CONNECTED
        _logger.info("%s connected %s", zone.zone, zone.reader_id)

        poll_task: asyncio.Task[None] | None = None
        try:
            if zone.inventory_poll:
                await connection.write(self._command)
                poll_task = asyncio.create_task(self._poll(connection))
                _logger.info("[%s] inventory poll ON (%dms)", zone.zone, zone.poll_interval_ms)

            while True:
                chunk = await connection.read()
                if not chunk:
                    _logger.info("%s connection closed", zone.zone)
                    return
                self.feed(chunk)
        finally:
            if poll_task is not None:
                poll_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await poll_task

    async def _poll(self, connection: ReaderConnection) -> None:
        interval = self._zone.poll_interval_ms / 1000.0
        while True:
            await asyncio.sleep(interval)
            try:
                await connection.write(self._command)
            except (ConnectionError, OSError) as exc:
                _logger.debug("%s inventory write failed: %s", self._zone.zone, exc)
                return

    # ------------------------------------------------------------------
    # Data path
    # ------------------------------------------------------------------

    def feed(self, chunk: bytes) -> list[TagRead]:
        """Decode *chunk* and hand every recovered read to the gate.

        The legacy unframed parser only runs when the chunk produced no
        framed read.
        """
        if self._log_raw:
            _logger.debug("[%s] raw %d bytes: %s", self._zone.zone, len(chunk), chunk.hex()[:120])

        reads: list[TagRead] = []
        for frame in self._assembler.feed(chunk):
            read = parse_inventory_frame(frame, keep_long=self._keep_long)
            if read is not None:
                reads.append(read)
        if not reads:
            legacy = parse_legacy_chunk(chunk, keep_long=self._keep_long)
            if legacy is not None:
                reads.append(legacy)

        for read in reads:
            self._dispatch(read)
        return reads

    def _dispatch(self, read: TagRead) -> None:
        task: asyncio.Task[object] = asyncio.create_task(self._gate.handle(read))
        self._pending.add(task)
        task.add_done_callback(self._on_gate_done)

    def _on_gate_done(self, task: asyncio.Task[object]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _logger.error("[%s] gate failure", self._zone.zone, exc_info=exc)
