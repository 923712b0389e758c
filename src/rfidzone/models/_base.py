"""Base model for rfidzone data objects.

Every model inherits from :class:`RfidBaseModel`, which is frozen and
ignores unknown keys so backend responses can grow without breaking
parsing.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict


class ReadMode(StrEnum):
    """How a tag read was recovered from the reader byte stream."""

    FRAMED = "CF"
    LEGACY = "LEGACY"


class RfidBaseModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )
