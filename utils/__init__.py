"""Shared helpers: proposal id shapes."""
from utils.ids import is_canonical_id, is_fallback_id, make_fallback_id

__all__ = [
    "is_canonical_id",
    "is_fallback_id",
    "make_fallback_id",
]
