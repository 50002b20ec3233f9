"""Content-addressed blob storage on the local filesystem."""
from __future__ import annotations

import hashlib
import logging
import os
from pathlib import Path

from errors import NotFoundError, PersistenceError

logger = logging.getLogger(__name__)

LOCATOR_PREFIX = "sha256:"


class LocalBlobStore:
    """
    Stores bytes under ``<root>/<aa>/<bb>/<sha256>``.
    Identical content maps to the same locator, so writes are idempotent.
    """

    def __init__(self, root: str | os.PathLike):
        self.root = Path(root)

    def _path_for(self, locator: str) -> Path:
        if not locator.startswith(LOCATOR_PREFIX):
            raise NotFoundError(f"Unknown storage locator: {locator}")
        digest = locator[len(LOCATOR_PREFIX):]
        if len(digest) != 64 or not all(c in "0123456789abcdef" for c in digest):
            raise NotFoundError(f"Unknown storage locator: {locator}")
        return self.root / digest[:2] / digest[2:4] / digest

    def put(self, data: bytes) -> str:
        locator = LOCATOR_PREFIX + hashlib.sha256(data).hexdigest()
        path = self._path_for(locator)
        if path.exists():
            return locator
        tmp = path.with_suffix(".part")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(data)
            os.replace(tmp, path)
        except OSError as e:
            logger.error("Blob write failed for %s: %s", locator, e)
            tmp.unlink(missing_ok=True)
            raise PersistenceError(f"Blob store write failed: {e}", store="blobs") from e
        return locator

    def get(self, locator: str) -> bytes:
        path = self._path_for(locator)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise NotFoundError(f"Blob not found: {locator}") from e
        except OSError as e:
            raise PersistenceError(f"Blob store read failed: {e}", store="blobs") from e

    def exists(self, locator: str) -> bool:
        return self._path_for(locator).exists()

    def delete(self, locator: str) -> bool:
        path = self._path_for(locator)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise PersistenceError(f"Blob store delete failed: {e}", store="blobs") from e
        return True
