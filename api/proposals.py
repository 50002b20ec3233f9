from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, File, Response, UploadFile

from api.deps import get_coordinator, get_current_actor, get_status_engine
from errors import PermissionDeniedError
from schemas.proposal import ReconcileRequest, ReopenRequest, ReviewRequest, SectionSaveRequest, SubmitRequest
from services.actors import Actor
from services.coordinator import PersistenceCoordinator, proposal_to_dict
from services.notifications import notification_to_dict
from services.status_engine import StatusTransitionEngine, TransitionResult

router = APIRouter(prefix="/api/proposals", tags=["proposals"])


def _transition_to_response(result: TransitionResult) -> dict[str, Any]:
    return {
        "proposal": proposal_to_dict(result.proposal),
        "fromStatus": result.from_status.value,
        "toStatus": result.to_status.value,
        "notifications": [notification_to_dict(n) for n in result.notifications],
        "notificationError": result.notification_error,
    }


async def _save(section: str, body: SectionSaveRequest, actor: Actor, coordinator: PersistenceCoordinator, advance: bool):
    result = await coordinator.save_section(body.proposal_id, section, body.fields, actor, advance=advance)
    return {
        "id": result.id,
        "completionPercentage": result.completion_percentage,
        "currentSection": result.current_section.value,
    }


@router.post("/section/{section}")
async def save_and_advance(
    section: str,
    body: SectionSaveRequest,
    actor: Actor = Depends(get_current_actor),
    coordinator: PersistenceCoordinator = Depends(get_coordinator),
):
    """Save the section and move the wizard forward; incomplete sections are rejected."""
    return await _save(section, body, actor, coordinator, advance=True)


@router.put("/section/{section}")
async def save_only(
    section: str,
    body: SectionSaveRequest,
    actor: Actor = Depends(get_current_actor),
    coordinator: PersistenceCoordinator = Depends(get_coordinator),
):
    """Autosave: partial data is accepted without the completeness check."""
    return await _save(section, body, actor, coordinator, advance=False)


@router.get("/debug/{proposal_id}")
async def debug_proposal(
    proposal_id: str,
    actor: Actor = Depends(get_current_actor),
    coordinator: PersistenceCoordinator = Depends(get_coordinator),
):
    if not actor.is_reviewer:
        raise PermissionDeniedError("Only reviewers can inspect store state")
    return await coordinator.inspect(proposal_id)


@router.post("/debug/{proposal_id}/reconcile")
async def reconcile_proposal(
    proposal_id: str,
    body: ReconcileRequest,
    actor: Actor = Depends(get_current_actor),
    coordinator: PersistenceCoordinator = Depends(get_coordinator),
):
    return await coordinator.reconcile(proposal_id, body.action, actor)


@router.post("/{proposal_id}/attachments/{role}", status_code=201)
async def upload_attachment(
    proposal_id: str,
    role: str,
    file: UploadFile = File(...),
    actor: Actor = Depends(get_current_actor),
    coordinator: PersistenceCoordinator = Depends(get_coordinator),
):
    data = await file.read()
    document = await coordinator.attach_file(
        proposal_id,
        role,
        data,
        file.filename or role,
        file.content_type or "application/octet-stream",
        actor,
    )
    return coordinator.attachment_view(document)


@router.get("/{proposal_id}/attachments/{role}")
async def download_attachment(
    proposal_id: str,
    role: str,
    actor: Actor = Depends(get_current_actor),
    coordinator: PersistenceCoordinator = Depends(get_coordinator),
):
    document, data = await coordinator.read_attachment(proposal_id, role, actor)
    return Response(
        content=data,
        media_type=document["mimeType"],
        headers={"Content-Disposition": f'attachment; filename="{document["originalName"]}"'},
    )


@router.get("/{proposal_id}/history")
async def status_history(
    proposal_id: str,
    actor: Actor = Depends(get_current_actor),
    engine: StatusTransitionEngine = Depends(get_status_engine),
):
    changes = await engine.history(proposal_id, actor)
    return [
        {
            "fromStatus": c.from_status.value,
            "toStatus": c.to_status.value,
            "actorId": c.actor_id,
            "comments": c.comments,
            "createdAt": c.created_at.isoformat() if c.created_at else None,
        }
        for c in changes
    ]


@router.post("/{proposal_id}:submit")
async def submit_proposal(
    proposal_id: str,
    body: Optional[SubmitRequest] = None,
    actor: Actor = Depends(get_current_actor),
    engine: StatusTransitionEngine = Depends(get_status_engine),
):
    escalation = body.escalation if body else None
    return _transition_to_response(await engine.submit(proposal_id, actor, escalation=escalation))


@router.post("/{proposal_id}:review")
async def review_proposal(
    proposal_id: str,
    body: ReviewRequest,
    actor: Actor = Depends(get_current_actor),
    engine: StatusTransitionEngine = Depends(get_status_engine),
):
    result = await engine.review(proposal_id, body.decision, actor, comments=body.comments)
    return _transition_to_response(result)


@router.post("/{proposal_id}:reopen")
async def reopen_proposal(
    proposal_id: str,
    body: Optional[ReopenRequest] = None,
    actor: Actor = Depends(get_current_actor),
    engine: StatusTransitionEngine = Depends(get_status_engine),
):
    comments = body.comments if body else None
    return _transition_to_response(await engine.reopen(proposal_id, actor, comments=comments))


@router.get("/{proposal_id}")
async def get_proposal(
    proposal_id: str,
    actor: Actor = Depends(get_current_actor),
    coordinator: PersistenceCoordinator = Depends(get_coordinator),
):
    return await coordinator.get_proposal(proposal_id, actor)


@router.delete("/{proposal_id}", status_code=204)
async def delete_proposal(
    proposal_id: str,
    actor: Actor = Depends(get_current_actor),
    coordinator: PersistenceCoordinator = Depends(get_coordinator),
):
    await coordinator.delete_proposal(proposal_id, actor)
    return Response(status_code=204)
