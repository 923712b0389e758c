"""rfidzone - Async gateway turning UHF RFID reader output into zone events."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("rfidzone")
except PackageNotFoundError:
    __version__ = "0+local"
from rfidzone.config import GatewayConfig, ReaderEndpoint, ZoneConfig
from rfidzone.exceptions import (
    RfidConfigError,
    RfidError,
    RfidLockError,
    RfidReaderError,
    RfidTransportError,
)
from rfidzone.forwarder import BackendClient, EventForwarder
from rfidzone.gateway import ReaderGateway
from rfidzone.models import EventMeta, PresenceLookup, ReadMode, TagRead, ZoneEvent
from rfidzone.state.gate import GateDecision, TagGate
from rfidzone.state.store import ZoneState, ZoneStateStore
from rfidzone.supervisor import ConnectionSupervisor, SupervisorState

__all__ = [
    "__version__",
    "BackendClient",
    "ConnectionSupervisor",
    "EventForwarder",
    "EventMeta",
    "GateDecision",
    "GatewayConfig",
    "PresenceLookup",
    "ReadMode",
    "ReaderEndpoint",
    "ReaderGateway",
    "RfidConfigError",
    "RfidError",
    "RfidLockError",
    "RfidReaderError",
    "RfidTransportError",
    "SupervisorState",
    "TagGate",
    "TagRead",
    "ZoneConfig",
    "ZoneEvent",
    "ZoneState",
    "ZoneStateStore",
]
