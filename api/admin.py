from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from api.deps import get_coordinator, get_current_actor
from errors import PermissionDeniedError
from models.enums import EventType, ProposalStatus
from services.actors import Actor
from services.coordinator import PersistenceCoordinator

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.get("/proposals")
async def list_proposals(
    status: Optional[ProposalStatus] = None,
    event_type: Optional[EventType] = Query(None, alias="eventType"),
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    coordinator: PersistenceCoordinator = Depends(get_coordinator),
):
    """Submitted proposals merged with their attachment metadata, tagged by data source."""
    if not actor.is_reviewer:
        raise PermissionDeniedError("Only reviewers can list proposals")
    return await coordinator.get_admin_view(
        status=status, event_type=event_type, search=search, page=page, limit=limit
    )
