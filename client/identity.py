"""
Identity resolver: turns a draft reference from the wizard URL into a canonical proposal id.

Canonical ids pass straight through. Descriptive references ("new-draft", "school-event")
create a draft on the server once per reference; the resulting id is cached client side
and written back into the visible location. When the server cannot be reached the
resolver hands out a ``fallback-...`` id so the wizard stays usable, and retries the
server the next time that reference (or the fallback id itself) is resolved.
"""
from __future__ import annotations

import asyncio
import logging
import random
from typing import Callable, Optional

import httpx

from errors import IdentityResolutionError
from models.enums import EventType
from client.storage import DraftIdStorage
from utils.ids import is_canonical_id, is_fallback_id, make_fallback_id

logger = logging.getLogger(__name__)

RETRY_STATUSES = {429, 502, 503, 504}


def infer_event_type(reference: str, hint: Optional[EventType | str] = None) -> EventType:
    """An explicit hint wins; otherwise look for "community" / "school" in the reference."""
    if hint is not None:
        try:
            return EventType(hint)
        except ValueError:
            logger.warning("Ignoring unknown event type hint %r", hint)
    lowered = reference.lower()
    if "community" in lowered:
        return EventType.COMMUNITY_BASED
    return EventType.SCHOOL_BASED


def rewrite_location(path: str, reference: str, canonical_id: str) -> str:
    """Replace the path segment equal to ``reference`` with ``canonical_id``."""
    segments = path.split("/")
    for i in range(len(segments) - 1, -1, -1):
        if segments[i] == reference:
            segments[i] = canonical_id
            return "/".join(segments)
    return path


class IdentityResolver:
    def __init__(
        self,
        client: httpx.AsyncClient,
        storage: Optional[DraftIdStorage] = None,
        on_location_change: Optional[Callable[[str], None]] = None,
        max_attempts: int = 2,
        base_delay: float = 0.25,
    ):
        self.client = client
        self.storage = storage if storage is not None else DraftIdStorage()
        self.on_location_change = on_location_change
        self.max_attempts = max_attempts
        self.base_delay = base_delay

    async def _post(self, payload: dict) -> httpx.Response:
        for attempt in range(self.max_attempts - 1):
            try:
                response = await self.client.post("/api/drafts", json=payload)
            except httpx.RequestError as exc:
                logger.warning("Draft creation failed, retrying", exc_info=exc)
            else:
                if response.status_code not in RETRY_STATUSES:
                    return response
                logger.warning("Draft creation returned %s, retrying", response.status_code)
            if self.base_delay:
                delay = self.base_delay * (2**attempt)
                await asyncio.sleep(delay + random.uniform(0, delay / 2))
        return await self.client.post("/api/drafts", json=payload)

    async def create_draft(self, reference: str, event_type: EventType) -> str:
        """POST /api/drafts; raises IdentityResolutionError on any transport or server failure."""
        try:
            response = await self._post({"eventType": event_type.value, "originalDescriptiveId": reference})
        except httpx.RequestError as e:
            raise IdentityResolutionError(f"Could not reach the draft service: {e}") from e
        if response.status_code not in (200, 201):
            raise IdentityResolutionError(
                f"Draft creation failed with HTTP {response.status_code}",
                meta={"status": response.status_code},
            )
        try:
            draft_id = response.json()["draftId"]
        except (ValueError, KeyError, TypeError) as e:
            raise IdentityResolutionError("Draft creation returned an unexpected body") from e
        if not is_canonical_id(draft_id):
            raise IdentityResolutionError(f"Server returned a non-canonical id {draft_id!r}")
        return draft_id

    async def resolve(
        self,
        reference: str,
        hint_event_type: Optional[EventType | str] = None,
        location: Optional[str] = None,
    ) -> str:
        if is_canonical_id(reference):
            return reference

        cached = self.storage.get(reference)
        if cached and is_canonical_id(cached.get("draftId")):
            self._update_location(location, reference, cached["draftId"])
            return cached["draftId"]

        # A fallback id stands in for the descriptive reference that minted it
        original = reference
        if is_fallback_id(reference):
            found = self.storage.find_by_draft_id(reference)
            if found is not None:
                original, origin_entry = found
                cached = cached or origin_entry

        if hint_event_type is None and cached:
            hint_event_type = cached.get("eventType")
        event_type = infer_event_type(original, hint_event_type)

        try:
            draft_id = await self.create_draft(original, event_type)
        except IdentityResolutionError as e:
            if cached and is_fallback_id(cached.get("draftId")):
                fallback = cached["draftId"]
            elif is_fallback_id(reference):
                fallback = reference
            else:
                fallback = make_fallback_id()
            logger.warning("Identity resolution for %r failed (%s); using %s", original, e.message, fallback)
            self.storage.put(original, fallback, event_type.value)
            return fallback

        self.storage.put(original, draft_id, event_type.value)
        stale = cached.get("draftId") if cached else None
        if is_fallback_id(reference):
            stale = reference
        if is_fallback_id(stale):
            # Later lookups of the fallback id land on the same draft
            self.storage.repoint(stale, draft_id)
            self.storage.put(stale, draft_id, event_type.value)
        logger.info("Resolved %r to %s (%s)", original, draft_id, event_type.value)
        self._update_location(location, reference, draft_id)
        return draft_id

    def _update_location(self, location: Optional[str], reference: str, draft_id: str) -> None:
        if location is None or self.on_location_change is None:
            return
        rewritten = rewrite_location(location, reference, draft_id)
        if rewritten != location:
            self.on_location_change(rewritten)
