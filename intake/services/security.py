# intake/services/security.py
"""
One-way hashing for anything derived from client network metadata.

Digests are deterministic (same input, same output) so rate-limit keys and
consent rows can be correlated, but they are keyed with a server-side pepper
so a leaked table cannot be reversed by enumerating the IPv4 space.
"""
from __future__ import annotations

import hashlib
import hmac

from intake.core.config import HASH_PEPPER

UNKNOWN_CLIENT = "unknown"


def hash_string(value: str, *, pepper: str = HASH_PEPPER) -> str:
    return hmac.new(
        pepper.encode("utf-8"), (value or "").encode("utf-8"), hashlib.sha256
    ).hexdigest()


def first_forwarded_ip(forwarded_for: str | None) -> str:
    """First hop of an X-Forwarded-For style header, or the 'unknown' sentinel."""
    if not forwarded_for:
        return UNKNOWN_CLIENT
    first = forwarded_for.split(",")[0].strip()
    return first or UNKNOWN_CLIENT
