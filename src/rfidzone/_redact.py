"""Helpers for safe debug logging.

Backend requests may carry an ``Authorization`` header or other
credentials. Values under sensitive keys are masked before DEBUG logs
are emitted; for ``"<scheme> <secret>"`` credentials the scheme is kept
so logs still show which kind of auth was sent.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import BaseModel

_REDACTED = "<redacted>"

_SENSITIVE_VALUE_KEYS: frozenset[str] = frozenset(
    {
        "authorization",
        "proxy-authorization",
        "cookie",
        "set-cookie",
        "password",
        "token",
        "accesstoken",
        "apikey",
        "x-api-key",
    }
)


def _mask_credential(value: Any) -> str:
    if isinstance(value, str):
        scheme, sep, _ = value.strip().partition(" ")
        if sep and scheme.isalpha():
            return f"{scheme} {_REDACTED}"
    return _REDACTED


def redact_for_log(value: Any, *, max_string: int = 512, _depth: int = 0) -> Any:
    """Return a redacted copy of *value* suitable for debug logs.

    Pydantic models are dumped in their wire form first.
    """
    if _depth > 20:
        return "<max-depth>"

    if value is None or isinstance(value, (int, float, bool)):
        return value

    if isinstance(value, str):
        if len(value) > max_string:
            return f"{value[:max_string]}…<truncated>"
        return value

    if isinstance(value, (bytes, bytearray, memoryview)):
        return f"<bytes:{len(value)}b>"

    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json", by_alias=True)

    if isinstance(value, Mapping):
        redacted: dict[str, Any] = {}
        for k, v in value.items():
            key = str(k)
            if key.lower() in _SENSITIVE_VALUE_KEYS:
                redacted[key] = _mask_credential(v)
            else:
                redacted[key] = redact_for_log(v, max_string=max_string, _depth=_depth + 1)
        return redacted

    if isinstance(value, Sequence):
        return [redact_for_log(v, max_string=max_string, _depth=_depth + 1) for v in value]

    return repr(value)
