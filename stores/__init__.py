"""Store handles injected into the persistence coordinator."""
from stores.blobs import LocalBlobStore
from stores.documents import DocumentStore

__all__ = [
    "DocumentStore",
    "LocalBlobStore",
]
