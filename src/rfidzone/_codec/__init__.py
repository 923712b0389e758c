"""Reader wire protocol: checksum, EPC canonicalization and frame handling."""

from __future__ import annotations

from rfidzone._codec.crc import build_inventory_command, crc16_bytes, crc16_mcrf4xx
from rfidzone._codec.epc import normalize_epc
from rfidzone._codec.frames import (
    FrameAssembler,
    RawFrame,
    decode_frame,
    parse_inventory_frame,
    parse_legacy_chunk,
)

__all__ = [
    "FrameAssembler",
    "RawFrame",
    "build_inventory_command",
    "crc16_bytes",
    "crc16_mcrf4xx",
    "decode_frame",
    "normalize_epc",
    "parse_inventory_frame",
    "parse_legacy_chunk",
]
