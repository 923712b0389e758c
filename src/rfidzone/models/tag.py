"""Tag read produced by the frame parser."""

from __future__ import annotations

from pydantic import Field, field_validator

from rfidzone.models._base import ReadMode, RfidBaseModel


class TagRead(RfidBaseModel):
    """A single validated tag observation.

    Parameters
    ----------
    epc : str
        Canonical EPC (20 hex characters, or 24 when long EPCs are kept).
    rssi_dbm : float or None
        Signal strength with one decimal place; ``None`` for legacy reads.
    crc_valid : bool
        Whether the frame checksum matched. Mismatches are surfaced here
        rather than rejected.
    mode : ReadMode
        Framed (``0xCF`` protocol) or legacy unframed output.
    """

    epc: str = Field(..., min_length=1)
    rssi_dbm: float | None = None
    crc_valid: bool = False
    mode: ReadMode = ReadMode.FRAMED
    antenna: int | None = None
    channel: int | None = None

    @field_validator("epc")
    @classmethod
    def _upper_epc(cls, value: str) -> str:
        return value.strip().upper()
