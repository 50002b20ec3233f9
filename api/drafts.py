from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from api.deps import get_coordinator, get_current_actor
from models import Proposal
from schemas.draft import DraftCreate, EventTypeUpdate, WizardTransitionRequest
from services.actors import Actor
from services.coordinator import PersistenceCoordinator

router = APIRouter(prefix="/api/drafts", tags=["drafts"])


def _wizard_state(p: Proposal) -> dict[str, Any]:
    return {
        "draftId": p.id,
        "eventType": p.event_type.value,
        "status": p.status.value,
        "currentSection": p.current_section.value,
        "formCompletionPercentage": p.form_completion_percentage,
        "originalDescriptiveId": p.original_descriptive_id,
        "updatedAt": p.updated_at.isoformat() if p.updated_at else None,
    }


@router.post("", status_code=201)
async def create_draft(
    body: DraftCreate,
    actor: Actor = Depends(get_current_actor),
    coordinator: PersistenceCoordinator = Depends(get_coordinator),
):
    proposal = await coordinator.create_draft(actor.user_id, body.event_type, body.original_descriptive_id)
    return {"draftId": proposal.id, "eventType": proposal.event_type.value, "status": proposal.status.value}


@router.get("/{draft_id}")
async def get_draft(
    draft_id: str,
    actor: Actor = Depends(get_current_actor),
    coordinator: PersistenceCoordinator = Depends(get_coordinator),
):
    proposal = await coordinator.load(draft_id)
    coordinator.ensure_access(proposal, actor)
    return _wizard_state(proposal)


@router.patch("/{draft_id}/event-type")
async def update_event_type(
    draft_id: str,
    body: EventTypeUpdate,
    actor: Actor = Depends(get_current_actor),
    coordinator: PersistenceCoordinator = Depends(get_coordinator),
):
    await coordinator.set_event_type(draft_id, body.event_type, actor)
    return {"ok": True}


@router.post("/{draft_id}/transitions")
async def wizard_transition(
    draft_id: str,
    body: WizardTransitionRequest,
    actor: Actor = Depends(get_current_actor),
    coordinator: PersistenceCoordinator = Depends(get_coordinator),
):
    result = await coordinator.navigate(draft_id, body.action, actor, step=body.step, event_type=body.event_type)
    proposal = await coordinator.load(draft_id)
    return {
        "from": result.source.value,
        "to": result.target.value,
        "action": result.action.value,
        **_wizard_state(proposal),
    }
