"""Gateway configuration for rfidzone."""

from __future__ import annotations

import dataclasses
import os
import tempfile
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from rfidzone.exceptions import RfidConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_number(env: Mapping[str, str], keys: tuple[str, ...], cast: type, default: Any) -> Any:
    """Return the first of *keys* present in *env*, converted with *cast*."""
    for key in keys:
        raw = env.get(key)
        if raw is None or not raw.strip():
            continue
        try:
            return cast(float(raw)) if cast is int else cast(raw)
        except (ValueError, OverflowError) as exc:
            raise RfidConfigError(f"{key} must be numeric, got {raw!r}") from exc
    return default


@dataclasses.dataclass(frozen=True)
class ZoneProfile:
    """Default noise-gate settings for a zone label."""

    rssi_min_dbm: float
    hit_window_ms: int
    min_hits: int
    cooldown_ms: int
    inventory_poll: bool


#: IN readers sit next to the door and are tuned strict; OUT readers
#: forward every read.
ZONE_PROFILES: dict[str, ZoneProfile] = {
    "IN": ZoneProfile(rssi_min_dbm=-90.0, hit_window_ms=250, min_hits=2, cooldown_ms=3000, inventory_poll=True),
    "OUT": ZoneProfile(rssi_min_dbm=-127.0, hit_window_ms=0, min_hits=1, cooldown_ms=0, inventory_poll=False),
}

_DEFAULT_HOSTS: dict[str, str] = {
    "IN": "192.168.179.201",
    "OUT": "192.168.179.200",
}


@dataclasses.dataclass(frozen=True)
class ReaderEndpoint:
    """Where a reader is attached.

    Exactly one of ``host`` (TCP) or ``serial_path`` must be set.
    """

    host: str | None = None
    port: int = 2022
    serial_path: str | None = None
    baud_rate: int = 57600

    def __post_init__(self) -> None:
        if bool(self.host) == bool(self.serial_path):
            raise RfidConfigError("ReaderEndpoint needs exactly one of host or serial_path")
        if not 0 < self.port < 65536:
            raise RfidConfigError(f"port out of range: {self.port}")
        if self.baud_rate <= 0:
            raise RfidConfigError(f"baud_rate must be positive, got {self.baud_rate}")

    @property
    def kind(self) -> str:
        return "tcp" if self.host else "serial"

    def reader_id(self, zone: str) -> str:
        if self.host:
            return f"{zone}-tcp:{self.host}:{self.port}"
        return f"{zone}-serial:{self.serial_path}"

    def meta(self) -> dict[str, Any]:
        """Endpoint fields echoed in forwarded event payloads."""
        if self.host:
            return {"host": self.host, "port": self.port}
        return {"serial_path": self.serial_path}


@dataclasses.dataclass(frozen=True)
class ZoneConfig:
    """Immutable per-supervisor parameters.

    Parameters
    ----------
    zone : str
        Zone label reported to the backend (e.g. ``"IN"``).
    endpoint : ReaderEndpoint
        Reader transport address.
    rssi_min_dbm : float
        Reads weaker than this never forward.
    hit_window_ms : int
        Debounce window; hit counting restarts when it elapses.
    min_hits : int
        Reads required inside one window.
    cooldown_ms : int
        Minimum spacing between forwards for the same EPC.
    inventory_poll : bool
        Send the inventory command on connect and every ``poll_interval_ms``.
    poll_interval_ms : int
        Inventory poll period.
    reconnect_delay_ms : int
        Fixed delay before reconnecting after a close or error.
    backend_precheck : bool
        Ask the backend for current presence and skip forwards it
        already agrees with.
    """

    zone: str
    endpoint: ReaderEndpoint
    rssi_min_dbm: float = -127.0
    hit_window_ms: int = 0
    min_hits: int = 1
    cooldown_ms: int = 0
    inventory_poll: bool = True
    poll_interval_ms: int = 300
    reconnect_delay_ms: int = 1500
    backend_precheck: bool = False

    def __post_init__(self) -> None:
        if not self.zone or not self.zone.strip():
            raise RfidConfigError("zone must be non-empty")
        if self.min_hits < 1:
            raise RfidConfigError(f"min_hits must be >= 1, got {self.min_hits}")
        for name in ("hit_window_ms", "cooldown_ms", "reconnect_delay_ms"):
            if getattr(self, name) < 0:
                raise RfidConfigError(f"{name} must be >= 0")
        if self.poll_interval_ms <= 0:
            raise RfidConfigError(f"poll_interval_ms must be positive, got {self.poll_interval_ms}")

    @property
    def reader_id(self) -> str:
        return self.endpoint.reader_id(self.zone)

    @classmethod
    def from_env(cls, zone: str, env: Mapping[str, str] | None = None, **overrides: Any) -> ZoneConfig:
        """Build one zone's configuration from ``{ZONE}_*`` variables.

        Each prefixed variable falls back to its un-prefixed global
        (``RFID_READER_HOST``, ``RSSI_MIN_DBM``, ...) and then to the
        zone's default profile.
        """
        env = os.environ if env is None else env
        zone = zone.strip().upper()
        profile = ZONE_PROFILES.get(zone, ZONE_PROFILES["OUT"])

        serial_path = env.get(f"{zone}_SERIAL_PATH") or None
        host = None
        if serial_path is None:
            host = env.get(f"{zone}_HOST") or env.get("RFID_READER_HOST") or _DEFAULT_HOSTS.get(zone)
            if not host:
                raise RfidConfigError(f"No reader address for zone {zone}: set {zone}_HOST or {zone}_SERIAL_PATH")

        endpoint = ReaderEndpoint(
            host=host,
            port=_env_number(env, (f"{zone}_PORT", "RFID_READER_PORT"), int, 2022),
            serial_path=serial_path,
            baud_rate=_env_number(env, (f"{zone}_BAUD_RATE", "BAUD_RATE"), int, 57600),
        )

        config_kwargs: dict[str, Any] = {
            "zone": zone,
            "endpoint": endpoint,
            "rssi_min_dbm": _env_number(env, (f"{zone}_RSSI_MIN", "RSSI_MIN_DBM"), float, profile.rssi_min_dbm),
            "hit_window_ms": _env_number(env, (f"{zone}_HIT_WINDOW_MS", "HIT_WINDOW_MS"), int, profile.hit_window_ms),
            "min_hits": _env_number(env, (f"{zone}_MIN_HITS", "MIN_HITS"), int, profile.min_hits),
            "cooldown_ms": _env_number(env, (f"{zone}_COOLDOWN_MS", "COOLDOWN_MS"), int, profile.cooldown_ms),
            "inventory_poll": _env_bool(env.get(f"{zone}_INVENTORY_POLL"), profile.inventory_poll),
            "poll_interval_ms": _env_number(env, ("INVENTORY_INTERVAL_MS",), int, 300),
            "reconnect_delay_ms": _env_number(env, ("RECONNECT_MS",), int, 1500),
            "backend_precheck": _env_bool(env.get(f"{zone}_BACKEND_PRECHECK"), False),
        }
        config_kwargs.update(overrides)
        return cls(**config_kwargs)


@dataclasses.dataclass(frozen=True)
class GatewayConfig:
    """Process-wide configuration.

    Parameters
    ----------
    backend_url : str
        Base URL of the presence backend.
    backend_auth : str
        Value for the ``Authorization`` header; empty disables it.
    backend_timeout : float
        Total timeout in seconds for each backend call.
    state_file : Path
        Shared zone-state file (``EPC|ZONE|EPOCH_MILLIS`` lines).
    sync_state_from_disk : bool
        Re-read the state file before each forward decision so
        transitions made by sibling processes are visible.
    single_instance : bool
        Hold a per-zone PID lock file while running.
    lock_dir : Path
        Directory for lock files.
    log_raw : bool
        Log every inbound chunk as hex at DEBUG level.
    epc_keep_long : bool
        Keep 24-character EPCs instead of cutting them to 20.
    candidate_ttl_ms : int
        Idle time after which a noise-gate candidate is evicted.
    max_candidates : int
        Upper bound on tracked candidates per zone.
    zones : tuple of ZoneConfig
        Readers to supervise.
    """

    backend_url: str = "http://localhost:3001"
    backend_auth: str = ""
    backend_timeout: float = 5.0
    state_file: Path = Path("rfid_state.txt")
    sync_state_from_disk: bool = True
    single_instance: bool = True
    lock_dir: Path = dataclasses.field(default_factory=lambda: Path(tempfile.gettempdir()))
    log_raw: bool = False
    epc_keep_long: bool = False
    candidate_ttl_ms: int = 10 * 60 * 1000
    max_candidates: int = 10_000
    zones: tuple[ZoneConfig, ...] = ()

    def __post_init__(self) -> None:
        if self.backend_timeout <= 0:
            raise RfidConfigError(f"backend_timeout must be positive, got {self.backend_timeout}")
        if self.max_candidates < 1:
            raise RfidConfigError(f"max_candidates must be >= 1, got {self.max_candidates}")
        labels = [z.zone for z in self.zones]
        if len(labels) != len(set(labels)):
            raise RfidConfigError(f"duplicate zone labels: {labels}")

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None, **overrides: Any) -> GatewayConfig:
        """Create configuration from environment variables.

        Reads ``BACKEND_URL``, ``BACKEND_AUTH``, ``BACKEND_TIMEOUT_MS``,
        ``STATE_FILE`` and the other process-wide switches, plus one
        :class:`ZoneConfig` per label in ``RFID_ZONES`` (default
        ``IN,OUT``). Explicit keyword arguments override environment
        values.
        """
        env = os.environ if env is None else env

        config_kwargs: dict[str, Any] = {}
        _ENV_STR_MAP = {
            "BACKEND_URL": "backend_url",
            "BACKEND_AUTH": "backend_auth",
        }
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        timeout_ms = _env_number(env, ("BACKEND_TIMEOUT_MS",), float, None)
        if timeout_ms is not None:
            config_kwargs["backend_timeout"] = timeout_ms / 1000.0

        state_file = env.get("STATE_FILE")
        if state_file:
            config_kwargs["state_file"] = Path(state_file).resolve()
        lock_dir = env.get("RFID_LOCK_DIR")
        if lock_dir:
            config_kwargs["lock_dir"] = Path(lock_dir)

        config_kwargs["sync_state_from_disk"] = _env_bool(env.get("SYNC_STATE_FROM_DISK"), True)
        config_kwargs["single_instance"] = _env_bool(env.get("SINGLE_INSTANCE"), True)
        config_kwargs["log_raw"] = _env_bool(env.get("DEBUG_RAW"), False)
        config_kwargs["epc_keep_long"] = _env_bool(env.get("EPC_KEEP_LONG"), False)

        ttl = _env_number(env, ("CANDIDATE_TTL_MS",), int, None)
        if ttl is not None:
            config_kwargs["candidate_ttl_ms"] = ttl
        max_candidates = _env_number(env, ("MAX_CANDIDATES",), int, None)
        if max_candidates is not None:
            config_kwargs["max_candidates"] = max_candidates

        if "zones" not in overrides:
            labels = [z.strip().upper() for z in env.get("RFID_ZONES", "IN,OUT").split(",") if z.strip()]
            config_kwargs["zones"] = tuple(ZoneConfig.from_env(label, env) for label in labels)

        config_kwargs.update(overrides)
        return cls(**config_kwargs)

    def select_zones(self, labels: list[str] | None) -> GatewayConfig:
        """Return a copy supervising only the zones named in *labels*."""
        if not labels:
            return self
        wanted = {label.strip().upper() for label in labels}
        missing = wanted - {z.zone for z in self.zones}
        if missing:
            raise RfidConfigError(f"unknown zone(s): {', '.join(sorted(missing))}")
        return dataclasses.replace(self, zones=tuple(z for z in self.zones if z.zone in wanted))
