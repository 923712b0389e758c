"""Frame reassembly and decoding for the ``0xCF`` reader protocol.

Frame layout::

    [0xCF][address][command:2][length][status][data:length-1][crc:2]

``length`` counts the status byte plus data, so a complete frame is
``5 + length + 2`` bytes. The CRC covers everything before it and is
sent most-significant byte first.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from rfidzone._codec.crc import crc16_bytes
from rfidzone._codec.epc import normalize_epc
from rfidzone._constants import (
    FRAME_CRC_LEN,
    FRAME_HEADER,
    FRAME_MIN_SCAN_LEN,
    FRAME_PREFIX_LEN,
    INVENTORY_RESPONSE_CMD,
    STATUS_OK,
)
from rfidzone.models import ReadMode, TagRead

_logger = logging.getLogger(__name__)

# Inventory data: rssi(2) + antenna + channel + epc_len
_INVENTORY_FIXED_LEN = 5

# Older firmware emits unframed records; only the EPC is recoverable.
_LEGACY_PREFIXED_RE = re.compile(r"01000CE280([0-9A-F]{20})")
_LEGACY_PLAIN_RE = re.compile(r"01000C([0-9A-F]{24})")


@dataclass(frozen=True, slots=True)
class RawFrame:
    """One complete frame split into its fields."""

    address: int
    command: int
    length: int
    status: int
    data: bytes
    crc: bytes
    raw: bytes

    @property
    def crc_valid(self) -> bool:
        return self.crc == crc16_bytes(self.raw[: FRAME_PREFIX_LEN + self.length])


class FrameAssembler:
    """Turn an arbitrarily chunked byte stream into complete frames.

    Bytes before a header are dropped as soon as they are seen; a buffer
    with no header at all is discarded whole, so noise never accumulates.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()

    @property
    def remaining(self) -> bytes:
        """Bytes held back waiting for the rest of a frame."""
        return bytes(self._buffer)

    def reset(self) -> None:
        self._buffer.clear()

    def feed(self, chunk: bytes) -> list[bytes]:
        """Append *chunk* and return every frame it completed."""
        buf = self._buffer
        buf.extend(chunk)
        frames: list[bytes] = []

        while len(buf) >= FRAME_MIN_SCAN_LEN:
            start = buf.find(FRAME_HEADER)
            if start < 0:
                buf.clear()
                break
            if start > 0:
                del buf[:start]
                if len(buf) < FRAME_MIN_SCAN_LEN:
                    break

            total = FRAME_PREFIX_LEN + buf[4] + FRAME_CRC_LEN
            if len(buf) < total:
                break

            frames.append(bytes(buf[:total]))
            del buf[:total]

        return frames


def decode_frame(frame: bytes) -> RawFrame | None:
    """Split a complete frame into fields, or ``None`` if it is truncated."""
    if len(frame) < FRAME_MIN_SCAN_LEN or frame[0] != FRAME_HEADER:
        return None
    length = frame[4]
    end = FRAME_PREFIX_LEN + length
    if length < 1 or len(frame) < end + FRAME_CRC_LEN:
        return None
    return RawFrame(
        address=frame[1],
        command=int.from_bytes(frame[2:4], "big"),
        length=length,
        status=frame[5],
        data=bytes(frame[6:end]),
        crc=bytes(frame[end : end + FRAME_CRC_LEN]),
        raw=bytes(frame[: end + FRAME_CRC_LEN]),
    )


def parse_inventory_frame(frame: bytes, *, keep_long: bool = False) -> TagRead | None:
    """Decode an inventory response frame into a :class:`TagRead`.

    Non-inventory commands, non-zero status and short payloads yield
    ``None``. A checksum mismatch does not: it is reported through
    ``TagRead.crc_valid``.
    """
    decoded = decode_frame(frame)
    if decoded is None:
        return None
    if decoded.command != INVENTORY_RESPONSE_CMD:
        return None
    if decoded.status != STATUS_OK:
        return None

    data = decoded.data
    if len(data) < _INVENTORY_FIXED_LEN:
        return None

    rssi_tenths = int.from_bytes(data[0:2], "big", signed=True)
    antenna = data[2]
    channel = data[3]
    epc_len = data[4]
    epc_end = _INVENTORY_FIXED_LEN + epc_len
    if len(data) < epc_end:
        return None

    epc = normalize_epc(data[_INVENTORY_FIXED_LEN:epc_end].hex().upper(), keep_long=keep_long)
    if epc is None:
        _logger.debug("Dropping frame with unrecognized EPC %s", data[_INVENTORY_FIXED_LEN:epc_end].hex())
        return None

    return TagRead(
        epc=epc,
        rssi_dbm=rssi_tenths / 10,
        crc_valid=decoded.crc_valid,
        mode=ReadMode.FRAMED,
        antenna=antenna,
        channel=channel,
    )


def parse_legacy_chunk(chunk: bytes, *, keep_long: bool = False) -> TagRead | None:
    """Recover an EPC from unframed legacy reader output, if present."""
    hex_text = bytes(chunk).hex().upper()
    match = _LEGACY_PREFIXED_RE.search(hex_text)
    if match is None:
        match = _LEGACY_PLAIN_RE.search(hex_text)
    if match is None:
        return None
    epc = normalize_epc(match.group(1), keep_long=keep_long)
    if epc is None:
        return None
    return TagRead(epc=epc, rssi_dbm=None, crc_valid=False, mode=ReadMode.LEGACY)
