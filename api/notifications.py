from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from api.deps import get_current_actor, get_notifications
from errors import PermissionDeniedError
from models.enums import NotificationType, Priority
from schemas.notification import NotificationCreate
from services.actors import Actor
from services.notifications import NotificationDirectory, notification_to_dict

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("")
async def list_notifications(
    unread_only: bool = Query(False, alias="unreadOnly"),
    notification_type: Optional[NotificationType] = Query(None, alias="type"),
    priority: Optional[Priority] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    directory: NotificationDirectory = Depends(get_notifications),
):
    items = await directory.list_for(
        actor,
        unread_only=unread_only,
        notification_type=notification_type,
        priority=priority,
        page=page,
        limit=limit,
    )
    return {
        "data": [notification_to_dict(n) for n in items],
        "unreadCount": await directory.unread_count(actor),
        "page": page,
        "limit": limit,
    }


@router.post("", status_code=201)
async def create_notification(
    body: NotificationCreate,
    actor: Actor = Depends(get_current_actor),
    directory: NotificationDirectory = Depends(get_notifications),
):
    # Status notifications come from the transition engine; this is for announcements
    if not actor.is_reviewer:
        raise PermissionDeniedError("Only reviewers can create notifications")
    return notification_to_dict(await directory.create(body, created_by=actor.user_id))


@router.get("/unread-count")
async def unread_count(
    actor: Actor = Depends(get_current_actor),
    directory: NotificationDirectory = Depends(get_notifications),
):
    return {"unreadCount": await directory.unread_count(actor)}


@router.get("/stats")
async def notification_stats(
    actor: Actor = Depends(get_current_actor),
    directory: NotificationDirectory = Depends(get_notifications),
):
    return await directory.stats(actor)


@router.post("/read-all")
async def mark_all_read(
    actor: Actor = Depends(get_current_actor),
    directory: NotificationDirectory = Depends(get_notifications),
):
    return {"updated": await directory.mark_all_read(actor)}


@router.patch("/{notification_id}:read")
async def mark_read(
    notification_id: str,
    actor: Actor = Depends(get_current_actor),
    directory: NotificationDirectory = Depends(get_notifications),
):
    return notification_to_dict(await directory.mark_read(notification_id, actor))


@router.post("/{notification_id}:hide")
async def hide_notification(
    notification_id: str,
    actor: Actor = Depends(get_current_actor),
    directory: NotificationDirectory = Depends(get_notifications),
):
    return notification_to_dict(await directory.hide(notification_id, actor))
