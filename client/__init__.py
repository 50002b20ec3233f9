"""Client-side identity resolution for draft proposals."""
from client.identity import IdentityResolver, infer_event_type, rewrite_location
from client.storage import DraftIdStorage

__all__ = ["DraftIdStorage", "IdentityResolver", "infer_event_type", "rewrite_location"]
