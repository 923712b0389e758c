"""Noise-gate predicates.

Pure functions over plain values; the gate owns all mutable state.
"""

from __future__ import annotations

from rfidzone._constants import PRESENCE_UNKNOWN, ZONE_PRESENCE


def zone_to_presence(zone: str) -> str:
    """Map a zone label to the backend's presence vocabulary."""
    return ZONE_PRESENCE.get(zone.upper(), PRESENCE_UNKNOWN)


def window_expired(now_ms: int, window_start_ms: int, hit_window_ms: int) -> bool:
    return now_ms - window_start_ms > hit_window_ms


def cooldown_elapsed(now_ms: int, last_emit_ms: int | None, cooldown_ms: int) -> bool:
    if last_emit_ms is None:
        return True
    return now_ms - last_emit_ms >= cooldown_ms


def rssi_acceptable(read_rssi: float | None, max_rssi: float | None, rssi_min_dbm: float) -> bool:
    """Reads without RSSI (legacy mode) always pass the floor."""
    if read_rssi is None:
        return True
    return max_rssi is not None and max_rssi >= rssi_min_dbm
