"""Per-EPC noise gate.

Converts a flood of raw reads into at most one forwarded zone event per
genuine transition. A tag sitting in front of a reader produces dozens
of reads a second; the gate requires ``min_hits`` reads inside a
``hit_window_ms`` window, a signal above ``rssi_min_dbm`` and an elapsed
``cooldown_ms`` before it consults the zone store and forwards.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

from rfidzone.config import ZoneConfig
from rfidzone.forwarder import EventForwarder
from rfidzone.models import TagRead, ZoneEvent
from rfidzone.state.policy import cooldown_elapsed, rssi_acceptable, window_expired, zone_to_presence
from rfidzone.state.store import ZoneStateStore

_logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class GateDecision(StrEnum):
    SUPPRESSED = "suppressed"
    ALREADY_IN_ZONE = "already_in_zone"
    BACKEND_CONSISTENT = "backend_consistent"
    FORWARDED = "forwarded"
    FORWARD_FAILED = "forward_failed"


@dataclass(slots=True)
class Candidate:
    """Hit aggregation for one EPC. Never persisted."""

    window_start_ms: int
    hit_count: int = 0
    max_rssi_dbm: float | None = None
    last_emit_ms: int | None = None
    last_seen_ms: int = 0


class TagGate:
    """Debounce/deduplication state machine for one zone.

    The gate runs on a single event loop and needs no locking, but
    :meth:`handle` suspends while the backend is called. ``last_emit_ms``
    is therefore written *before* the forward is awaited: a second read
    of the same EPC arriving mid-forward then fails the cooldown check
    instead of forwarding twice.
    """

    def __init__(
        self,
        zone: ZoneConfig,
        store: ZoneStateStore,
        forwarder: EventForwarder,
        *,
        sync_from_disk: bool = True,
        clock: Callable[[], int] = _now_ms,
        candidate_ttl_ms: int = 10 * 60 * 1000,
        max_candidates: int = 10_000,
    ) -> None:
        self._zone = zone
        self._store = store
        self._forwarder = forwarder
        self._sync_from_disk = sync_from_disk
        self._clock = clock
        # Evicting a candidate must never shorten its window or cooldown.
        self._candidate_ttl_ms = max(candidate_ttl_ms, zone.hit_window_ms, zone.cooldown_ms)
        self._max_candidates = max(1, max_candidates)
        self._candidates: OrderedDict[str, Candidate] = OrderedDict()

    @property
    def zone(self) -> str:
        return self._zone.zone

    def candidate(self, epc: str) -> Candidate | None:
        return self._candidates.get(epc)

    def __len__(self) -> int:
        return len(self._candidates)

    def _touch(self, epc: str, now: int) -> Candidate:
        candidate = self._candidates.get(epc)
        if candidate is None:
            candidate = Candidate(window_start_ms=now)
            self._candidates[epc] = candidate
        else:
            self._candidates.move_to_end(epc)
        candidate.last_seen_ms = now
        self._evict(now)
        return candidate

    def _evict(self, now: int) -> None:
        while len(self._candidates) > self._max_candidates:
            self._candidates.popitem(last=False)
        while self._candidates:
            oldest = next(iter(self._candidates.values()))
            if now - oldest.last_seen_ms <= self._candidate_ttl_ms:
                break
            self._candidates.popitem(last=False)

    async def handle(self, read: TagRead) -> GateDecision:
        """Feed one read through the gate and forward it if it qualifies."""
        cfg = self._zone
        epc = read.epc
        now = self._clock()
        candidate = self._touch(epc, now)

        if window_expired(now, candidate.window_start_ms, cfg.hit_window_ms):
            candidate.window_start_ms = now
            candidate.hit_count = 0
            candidate.max_rssi_dbm = None

        candidate.hit_count += 1
        if read.rssi_dbm is not None:
            if candidate.max_rssi_dbm is None or read.rssi_dbm > candidate.max_rssi_dbm:
                candidate.max_rssi_dbm = read.rssi_dbm

        enough_hits = candidate.hit_count >= cfg.min_hits
        cooldown_ok = cooldown_elapsed(now, candidate.last_emit_ms, cfg.cooldown_ms)
        rssi_ok = rssi_acceptable(read.rssi_dbm, candidate.max_rssi_dbm, cfg.rssi_min_dbm)

        if not (enough_hits and cooldown_ok and rssi_ok):
            _logger.debug(
                "[%s] skip epc=%s hits=%d/%d cooldown_ok=%s rssi=%s min=%s",
                cfg.zone,
                epc,
                candidate.hit_count,
                cfg.min_hits,
                cooldown_ok,
                candidate.max_rssi_dbm,
                cfg.rssi_min_dbm,
            )
            return GateDecision.SUPPRESSED

        if self._sync_from_disk:
            self._store.reload()

        last = self._store.get(epc)
        if last is not None and last.zone == cfg.zone:
            candidate.last_emit_ms = now
            return GateDecision.ALREADY_IN_ZONE

        if cfg.backend_precheck:
            desired = zone_to_presence(cfg.zone)
            presence = await self._forwarder.get_presence(epc)
            if presence and presence == desired:
                _logger.debug("[%s] backend already reports epc=%s as %s", cfg.zone, epc, presence)
                self._store.set(epc, cfg.zone)
                candidate.last_emit_ms = now
                return GateDecision.BACKEND_CONSISTENT

        candidate.last_emit_ms = now
        event = ZoneEvent.build(
            read=read,
            zone=cfg.zone,
            reader_id=cfg.reader_id,
            endpoint_meta=cfg.endpoint.meta(),
        )
        if await self._forwarder.forward(event):
            if read.rssi_dbm is not None:
                _logger.info("[%s] EPC %s rssi=%.1fdBm", cfg.zone, epc, read.rssi_dbm)
            else:
                _logger.info("[%s] EPC %s", cfg.zone, epc)
            self._store.set(epc, cfg.zone)
            return GateDecision.FORWARDED

        _logger.warning("[%s] failed to forward EPC %s", cfg.zone, epc)
        return GateDecision.FORWARD_FAILED
