"""EPC canonicalization."""

from __future__ import annotations

import re

from rfidzone._constants import EPC_CANONICAL_LEN, EPC_LONG_LEN, EPC_VENDOR_PREFIX

_HEX_RE = re.compile(r"^[0-9A-F]+$")


def normalize_epc(raw_hex: str | None, *, keep_long: bool = False) -> str | None:
    """Canonicalize a raw hex EPC string.

    The ``E280`` vendor prefix is stripped when present. The remainder is
    accepted only when it is 20 or 24 hex characters long. 24-character
    values are an alternate input format and are cut down to their first
    20 characters unless *keep_long* is set.

    Returns ``None`` for anything else.
    """
    if raw_hex is None:
        return None
    hex_value = str(raw_hex).strip().upper()
    if hex_value.startswith(EPC_VENDOR_PREFIX):
        hex_value = hex_value[len(EPC_VENDOR_PREFIX) :]

    if len(hex_value) not in (EPC_CANONICAL_LEN, EPC_LONG_LEN):
        return None
    if not _HEX_RE.match(hex_value):
        return None

    if len(hex_value) == EPC_LONG_LEN and not keep_long:
        return hex_value[:EPC_CANONICAL_LEN]
    return hex_value
