"""Backend client that receives gated zone events."""

from __future__ import annotations

import logging
from typing import Any, Protocol
from urllib.parse import quote

import aiohttp
from pydantic import ValidationError

from rfidzone._constants import EVENTS_ENDPOINT, PRESENCE_ENDPOINT
from rfidzone._transport import BackendTransport, Transport
from rfidzone.config import GatewayConfig
from rfidzone.exceptions import RfidError, RfidTransportError
from rfidzone.models import PresenceLookup, ZoneEvent

_logger = logging.getLogger(__name__)


class EventForwarder(Protocol):
    """What the noise gate needs from the backend."""

    async def forward(self, event: ZoneEvent) -> bool: ...

    async def get_presence(self, epc: str) -> str | None: ...


class BackendClient:
    """Async client for the presence backend.

    Usage::

        async with BackendClient("https://backend.example") as client:
            await client.forward(event)

    Failures never raise out of :meth:`forward` or :meth:`get_presence`:
    a failed forward returns ``False`` and the next qualifying read
    retries naturally; an unknown presence is ``None``.
    """

    def __init__(
        self,
        base_url: str,
        *,
        auth: str = "",
        timeout: float = 5.0,
        session: aiohttp.ClientSession | None = None,
        transport: Transport | None = None,
    ) -> None:
        self._base_url = base_url
        self._auth = auth
        self._timeout = timeout
        self._external_session = session is not None
        self._http_session = session
        self._transport: Transport | None = transport

    @classmethod
    def from_config(cls, config: GatewayConfig, *, session: aiohttp.ClientSession | None = None) -> BackendClient:
        return cls(
            config.backend_url,
            auth=config.backend_auth,
            timeout=config.backend_timeout,
            session=session,
        )

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> BackendClient:
        if self._transport is None:
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
            self._transport = BackendTransport(
                self._base_url,
                self._http_session,
                auth=self._auth,
                timeout=self._timeout,
            )
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
            self._transport = None

    def _require_transport(self) -> Transport:
        if self._transport is None:
            raise RfidError("Client not initialized. Use 'async with BackendClient(...) as client:'")
        return self._transport

    # ------------------------------------------------------------------
    # Backend operations
    # ------------------------------------------------------------------

    async def lookup(self, epc: str) -> PresenceLookup | None:
        """Fetch what the backend knows about *epc*, or ``None`` when unknown."""
        transport = self._require_transport()
        endpoint = PRESENCE_ENDPOINT.format(epc=quote(epc, safe=""))
        try:
            raw = await transport.get_json(endpoint)
        except RfidTransportError as exc:
            _logger.debug("Presence lookup for %s failed: %s", epc, exc)
            return None
        if not isinstance(raw, dict):
            return None
        try:
            return PresenceLookup.model_validate(raw)
        except ValidationError:
            _logger.debug("Unexpected presence payload for %s: %s", epc, raw)
            return None

    async def get_presence(self, epc: str) -> str | None:
        lookup = await self.lookup(epc)
        return lookup.presence if lookup is not None else None

    async def forward(self, event: ZoneEvent) -> bool:
        """Post *event*; ``True`` only on a 2xx response."""
        transport = self._require_transport()
        try:
            await transport.post_json(EVENTS_ENDPOINT, event.to_request_body())
        except RfidTransportError as exc:
            _logger.warning("[%s] backend rejected EPC %s: %s", event.zone, event.epc, exc)
            return False
        return True
