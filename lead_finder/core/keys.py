"""Canonical form and ledger id of caller-supplied Places API keys."""

import hashlib
import re
from typing import Optional

_WHITESPACE = re.compile(r"[\s　]+")
_KEY_HASH = re.compile(r"^[a-f0-9]{64}$")
_QUOTES = ("'", '"')


def normalize_api_key(raw: Optional[str]) -> str:
    """Strip pasted whitespace and one layer of quotes from a key. Case is significant."""

    if not raw:
        return ""
    value = _WHITESPACE.sub("", str(raw))
    if value[:1] in _QUOTES:
        value = value[1:]
    if value[-1:] in _QUOTES:
        value = value[:-1]
    return value


def hash_key(normalized_key: str) -> str:
    return hashlib.sha256(normalized_key.encode("utf-8")).hexdigest()


def key_id(raw: Optional[str]) -> str:
    """Ledger id for a raw key, or an empty string when nothing usable remains."""

    normalized = normalize_api_key(raw)
    if not normalized:
        return ""
    return hash_key(normalized)


def is_key_hash(value: Optional[str]) -> bool:
    return bool(value) and bool(_KEY_HASH.match(value))
