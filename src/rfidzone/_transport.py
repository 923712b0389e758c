"""HTTP transport to the presence backend."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from rfidzone._redact import redact_for_log
from rfidzone.exceptions import RfidTransportError

_logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Structural transport interface used by the backend client.

    Having a protocol here makes it easy to pass test doubles while
    keeping the production implementation (`BackendTransport`) concrete.
    """

    async def get_json(self, endpoint: str) -> Any: ...

    async def post_json(self, endpoint: str, body: Mapping[str, Any]) -> None: ...


class BackendTransport:
    """aiohttp transport with optional ``Authorization`` header and a hard timeout.

    Every failure (network error, timeout, non-2xx status, undecodable
    JSON) surfaces as :class:`RfidTransportError`.
    """

    def __init__(
        self,
        base_url: str,
        http_session: aiohttp.ClientSession,
        *,
        auth: str = "",
        timeout: float = 5.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._http = http_session
        self._auth = auth
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    def _headers(self, *, with_body: bool) -> dict[str, str]:
        headers: dict[str, str] = {"accept": "application/json"}
        if with_body:
            headers["content-type"] = "application/json"
        if self._auth:
            headers["authorization"] = self._auth
        return headers

    async def _request(self, method: str, endpoint: str, body: Mapping[str, Any] | None = None) -> str:
        url = f"{self._base_url}{endpoint}"
        headers = self._headers(with_body=body is not None)
        data = json.dumps(body, separators=(",", ":")) if body is not None else None

        _logger.debug("%s %s headers=%s body=%s", method, url, redact_for_log(headers), redact_for_log(body))

        try:
            async with self._http.request(method, url, data=data, headers=headers, timeout=self._timeout) as resp:
                text = await resp.text()
                if not 200 <= resp.status < 300:
                    raise RfidTransportError(
                        f"HTTP {resp.status} from {endpoint}: {text[:200]}",
                        status_code=resp.status,
                        endpoint=endpoint,
                    )
        except RfidTransportError:
            raise
        except TimeoutError as exc:
            raise RfidTransportError(
                f"Request to {endpoint} timed out after {self._timeout.total}s",
                endpoint=endpoint,
            ) from exc
        except aiohttp.ClientError as exc:
            raise RfidTransportError(
                f"Request to {endpoint} failed: {exc}",
                endpoint=endpoint,
            ) from exc
        return text

    async def get_json(self, endpoint: str) -> Any:
        text = await self._request("GET", endpoint)
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise RfidTransportError(
                f"Invalid JSON from {endpoint}: {text[:200]}",
                endpoint=endpoint,
            ) from exc

    async def post_json(self, endpoint: str, body: Mapping[str, Any]) -> None:
        await self._request("POST", endpoint, body)
