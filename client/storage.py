"""
Client-side cache of resolved draft ids, keyed by descriptive reference.

The server record is authoritative; this file only spares redundant creation calls.
"""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class DraftIdStorage:
    """JSON file of ``{reference: {"draftId": ..., "eventType": ...}}``. ``path=None`` keeps it in memory."""

    def __init__(self, path: Optional[str | os.PathLike] = None):
        self.path = Path(path) if path is not None else None
        self._entries: dict[str, dict[str, str]] = {}
        if self.path is not None and self.path.exists():
            try:
                self._entries = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                # A corrupt cache only costs a creation call
                logger.warning("Ignoring unreadable draft id cache %s: %s", self.path, e)
                self._entries = {}

    def get(self, reference: str) -> Optional[dict[str, str]]:
        entry = self._entries.get(reference)
        return dict(entry) if entry else None

    def put(self, reference: str, draft_id: str, event_type: str) -> None:
        self._entries[reference] = {"draftId": draft_id, "eventType": event_type}
        self._save()

    def find_by_draft_id(self, draft_id: str) -> Optional[tuple[str, dict[str, str]]]:
        """The first reference (other than the id itself) whose entry points at ``draft_id``."""
        for reference, entry in self._entries.items():
            if reference != draft_id and entry.get("draftId") == draft_id:
                return reference, dict(entry)
        return None

    def repoint(self, old_id: str, new_id: str) -> int:
        """Rewrite every entry pointing at ``old_id`` to ``new_id``; returns how many changed."""
        changed = 0
        for entry in self._entries.values():
            if entry.get("draftId") == old_id:
                entry["draftId"] = new_id
                changed += 1
        if changed:
            self._save()
        return changed

    def forget(self, reference: str) -> None:
        if self._entries.pop(reference, None) is not None:
            self._save()

    def _save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(self._entries, indent=2, sort_keys=True), encoding="utf-8")
        os.replace(tmp, self.path)

    def __contains__(self, reference: str) -> bool:
        return reference in self._entries

    def __len__(self) -> int:
        return len(self._entries)
