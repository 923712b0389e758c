"""Top-level coordinator wiring stores, gates and supervisors together."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal

from rfidzone._lock import InstanceLock
from rfidzone.config import GatewayConfig
from rfidzone.forwarder import BackendClient, EventForwarder
from rfidzone.state.gate import TagGate
from rfidzone.state.store import ZoneStateStore
from rfidzone.supervisor import ConnectionSupervisor, ReaderOpener, _default_opener

_logger = logging.getLogger(__name__)


class ReaderGateway:
    """Run one supervisor per configured zone until stopped.

    All supervisors share one :class:`ZoneStateStore` and one backend
    client, and watch a single stop event: :meth:`stop` (or SIGINT /
    SIGTERM once :meth:`install_signal_handlers` is called) fans the
    shutdown out to every supervisor.

    Usage::

        gateway = ReaderGateway(GatewayConfig.from_env())
        gateway.install_signal_handlers()
        await gateway.run()
    """

    def __init__(
        self,
        config: GatewayConfig,
        *,
        forwarder: EventForwarder | None = None,
        store: ZoneStateStore | None = None,
        opener: ReaderOpener = _default_opener,
    ) -> None:
        self._config = config
        self._forwarder = forwarder
        self._store = store if store is not None else ZoneStateStore(config.state_file)
        self._opener = opener
        self._stop = asyncio.Event()
        self._locks: dict[str, InstanceLock] = {}
        self._supervisors: list[ConnectionSupervisor] = []

    @property
    def store(self) -> ZoneStateStore:
        return self._store

    @property
    def supervisors(self) -> list[ConnectionSupervisor]:
        return list(self._supervisors)

    def stop(self, reason: str = "manual") -> None:
        if not self._stop.is_set():
            _logger.info("Shutting down all readers (%s)", reason)
            self._stop.set()

    def install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, self.stop, sig.name)

    def acquire_locks(self) -> None:
        """Take every zone's instance lock, or none of them.

        Raises :class:`~rfidzone.exceptions.RfidLockError` if any zone
        is already served by a live process.
        """
        if not self._config.single_instance:
            return
        try:
            for zone in self._config.zones:
                lock = InstanceLock.for_zone(zone.zone, zone.endpoint.kind, self._config.lock_dir)
                lock.acquire()
                self._locks[zone.zone] = lock
        except BaseException:
            self.release_locks()
            raise

    def release_locks(self) -> None:
        for lock in self._locks.values():
            lock.release()
        self._locks.clear()

    def _build_supervisors(self, forwarder: EventForwarder) -> list[ConnectionSupervisor]:
        config = self._config
        supervisors: list[ConnectionSupervisor] = []
        for zone in config.zones:
            gate = TagGate(
                zone,
                self._store,
                forwarder,
                sync_from_disk=config.sync_state_from_disk,
                candidate_ttl_ms=config.candidate_ttl_ms,
                max_candidates=config.max_candidates,
            )
            supervisors.append(
                ConnectionSupervisor(
                    zone,
                    gate,
                    opener=self._opener,
                    lock=self._locks.get(zone.zone),
                    log_raw=config.log_raw,
                    epc_keep_long=config.epc_keep_long,
                )
            )
        return supervisors

    async def _run_with(self, forwarder: EventForwarder) -> None:
        self._supervisors = self._build_supervisors(forwarder)
        _logger.info(
            "Starting rfidzone gateway for zone(s) %s", ", ".join(s.zone for s in self._supervisors) or "<none>"
        )
        tasks = [asyncio.create_task(s.run(self._stop), name=f"rfidzone-{s.zone}") for s in self._supervisors]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            # One supervisor died: bring the others down before locks and
            # the backend client go away.
            self.stop("supervisor failure")
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def run(self) -> None:
        """Acquire locks, supervise every zone until :meth:`stop`, then clean up."""
        self.acquire_locks()
        try:
            if self._forwarder is not None:
                await self._run_with(self._forwarder)
            else:
                async with BackendClient.from_config(self._config) as client:
                    await self._run_with(client)
        finally:
            self.release_locks()
