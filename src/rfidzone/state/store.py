"""Durable EPC -> zone store backed by a flat file.

This is the single source of truth for "last known zone". The backing
file may be shared with sibling processes (an IN and an OUT gateway for
the same room); :meth:`ZoneStateStore.reload` picks up their writes.
There is no cross-process merge: the file is last-write-wins.
"""

from __future__ import annotations

import contextlib
import fcntl
import logging
import os
import time
from collections.abc import Callable, Iterator
from pathlib import Path

from pydantic import BaseModel, ConfigDict

_logger = logging.getLogger(__name__)

_FIELD_SEP = "|"


def _now_ms() -> int:
    return int(time.time() * 1000)


class ZoneState(BaseModel):
    model_config = ConfigDict(frozen=True)

    zone: str
    last_seen_at_ms: int


def _parse_line(line: str) -> tuple[str, ZoneState] | None:
    parts = line.strip().split(_FIELD_SEP)
    if len(parts) < 3:
        return None
    epc, zone, stamp = parts[0].strip(), parts[1].strip(), parts[2].strip()
    if not epc or not zone:
        return None
    try:
        ts = int(stamp)
    except ValueError:
        return None
    return epc, ZoneState(zone=zone, last_seen_at_ms=ts)


@contextlib.contextmanager
def _flocked(lock_path: Path, *, exclusive: bool) -> Iterator[None]:
    """Hold an advisory lock on *lock_path* for the duration of the block.

    Lock-file problems never block state I/O; the caller proceeds unlocked.
    """
    try:
        fd = os.open(lock_path, os.O_RDWR | os.O_CREAT, 0o644)
    except OSError:
        _logger.debug("State lock %s unavailable", lock_path, exc_info=True)
        yield
        return
    try:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)
        except OSError:
            _logger.debug("Could not lock %s; continuing unlocked", lock_path, exc_info=True)
        yield
    finally:
        os.close(fd)


class ZoneStateStore:
    """In-memory map of EPC -> :class:`ZoneState`, mirrored to disk.

    Every :meth:`set` rewrites the whole file: to a temporary file that
    is then renamed over the target, falling back to an in-place write.
    If both fail the update stays in memory only.
    """

    def __init__(
        self,
        path: str | os.PathLike[str],
        *,
        clock: Callable[[], int] = _now_ms,
        load: bool = True,
    ) -> None:
        self._path = Path(path)
        self._lock_path = self._path.with_name(self._path.name + ".lock")
        self._clock = clock
        self._states: dict[str, ZoneState] = {}
        if load:
            self.reload()

    @property
    def path(self) -> Path:
        return self._path

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, epc: object) -> bool:
        return epc in self._states

    def get(self, epc: str) -> ZoneState | None:
        return self._states.get(epc)

    def snapshot(self) -> dict[str, ZoneState]:
        return dict(self._states)

    def set(self, epc: str, zone: str) -> ZoneState:
        """Record *epc* in *zone* now and persist the whole map."""
        state = ZoneState(zone=zone, last_seen_at_ms=self._clock())
        self._states[epc] = state
        self._persist()
        return state

    def reload(self) -> None:
        """Replace the in-memory map with the file contents.

        A missing or unreadable file leaves the current map untouched.
        Malformed lines are skipped.
        """
        try:
            with _flocked(self._lock_path, exclusive=False):
                text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return
        except OSError:
            _logger.warning("Could not read state file %s", self._path, exc_info=True)
            return

        fresh: dict[str, ZoneState] = {}
        skipped = 0
        for line in text.splitlines():
            if not line.strip():
                continue
            parsed = _parse_line(line)
            if parsed is None:
                skipped += 1
                continue
            fresh[parsed[0]] = parsed[1]
        if skipped:
            _logger.debug("Skipped %d malformed line(s) in %s", skipped, self._path)
        self._states = fresh

    def _render(self) -> str:
        return "\n".join(
            f"{epc}{_FIELD_SEP}{state.zone}{_FIELD_SEP}{state.last_seen_at_ms}" for epc, state in self._states.items()
        )

    def _persist(self) -> None:
        body = self._render()
        tmp_path = self._path.with_name(f"{self._path.name}.tmp-{os.getpid()}")
        with _flocked(self._lock_path, exclusive=True):
            try:
                tmp_path.write_text(body, encoding="utf-8")
                os.replace(tmp_path, self._path)
                return
            except OSError:
                _logger.debug("Atomic state write failed for %s; overwriting in place", self._path, exc_info=True)
                with contextlib.suppress(OSError):
                    tmp_path.unlink()

            try:
                self._path.write_text(body, encoding="utf-8")
            except OSError:
                _logger.warning("Dropping state update: could not write %s", self._path, exc_info=True)
