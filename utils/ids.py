"""Proposal id shapes: canonical UUIDv4 strings and client-side fallback ids."""
import re
import secrets
import time

CANONICAL_ID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

FALLBACK_PREFIX = "fallback-"


def is_canonical_id(value) -> bool:
    return isinstance(value, str) and CANONICAL_ID_RE.match(value) is not None


def is_fallback_id(value) -> bool:
    return isinstance(value, str) and value.startswith(FALLBACK_PREFIX)


def make_fallback_id() -> str:
    """``fallback-<epoch ms>-<random>``; never mistaken for a canonical id."""
    return f"{FALLBACK_PREFIX}{int(time.time() * 1000)}-{secrets.token_hex(4)}"
