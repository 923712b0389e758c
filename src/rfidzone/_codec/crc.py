"""CRC-16/MCRF4XX checksum used by the reader protocol.

Parameters: reflected poly ``0x8408``, init ``0xFFFF``, no final XOR,
bytes processed LSB-first. Catalogue check value for ``b"123456789"`` is
``0x6F91``.
"""

from __future__ import annotations

from rfidzone._constants import CRC16_INIT, CRC16_POLY_REFLECTED, INVENTORY_PAYLOAD


def crc16_mcrf4xx(data: bytes | bytearray | memoryview) -> int:
    """Compute the CRC-16/MCRF4XX checksum of *data*.

    Parameters
    ----------
    data : bytes
        Bytes to checksum.

    Returns
    -------
    int
        16-bit checksum value.
    """
    value = CRC16_INIT
    for byte in bytes(data):
        value ^= byte
        for _ in range(8):
            if value & 0x0001:
                value = (value >> 1) ^ CRC16_POLY_REFLECTED
            else:
                value >>= 1
    return value & 0xFFFF


def crc16_bytes(data: bytes | bytearray | memoryview) -> bytes:
    """Checksum of *data* as two bytes, most-significant first.

    This is the orientation found at the tail of inbound frames.
    """
    return crc16_mcrf4xx(data).to_bytes(2, "big")


def build_inventory_command() -> bytes:
    """Build the fixed inventory-poll command.

    The reader expects the checksum least-significant byte first here,
    the opposite of the order it uses in its own responses. Do not
    normalize the two.
    """
    crc = crc16_mcrf4xx(INVENTORY_PAYLOAD)
    return INVENTORY_PAYLOAD + crc.to_bytes(2, "little")
