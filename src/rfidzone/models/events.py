"""Backend request/response models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from rfidzone._constants import EVENT_SOURCE
from rfidzone.models._base import ReadMode, RfidBaseModel
from rfidzone.models.tag import TagRead


class EventMeta(BaseModel):
    """Read metadata carried inside the event payload.

    The backend expects camelCase keys (``crcOk``, ``rssiDbm``).
    """

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )

    mode: ReadMode
    crc_ok: bool | None = None
    rssi_dbm: float | None = None
    host: str | None = None
    port: int | None = None
    serial_path: str | None = None

    @classmethod
    def from_read(cls, read: TagRead, endpoint_meta: dict[str, Any] | None = None) -> EventMeta:
        fields: dict[str, Any] = {"mode": read.mode}
        if read.mode == ReadMode.FRAMED:
            fields["crc_ok"] = read.crc_valid
            fields["rssi_dbm"] = read.rssi_dbm
        fields.update(endpoint_meta or {})
        return cls(**fields)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class EventPayload(BaseModel):
    model_config = ConfigDict(frozen=True, extra="allow")

    source: str = EVENT_SOURCE
    zone_origin: str


class ZoneEvent(RfidBaseModel):
    """One "tag entered zone" event, as posted to the backend."""

    epc: str
    zone: str
    reader_id: str
    payload: EventPayload

    @classmethod
    def build(
        cls,
        *,
        read: TagRead,
        zone: str,
        reader_id: str,
        endpoint_meta: dict[str, Any] | None = None,
    ) -> ZoneEvent:
        meta = EventMeta.from_read(read, endpoint_meta)
        return cls(
            epc=read.epc,
            zone=zone,
            reader_id=reader_id,
            payload=EventPayload(zone_origin=zone, **meta.to_wire()),
        )

    def to_request_body(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class PresenceLookup(RfidBaseModel):
    """Response of the backend presence query for one EPC."""

    found: bool = False
    presence_status: str | None = None

    @property
    def presence(self) -> str | None:
        if not self.found:
            return None
        return self.presence_status or None
