"""
Notification directory: stores notification records and answers "what can this user see".

Delivery (email, SMS, push) is handled elsewhere; records here are only created,
listed, marked read or hidden.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from errors import NotFoundError, PersistenceError
from models import Notification
from models.enums import NotificationType, Priority, TargetType
from schemas.notification import NotificationCreate
from services.actors import Actor

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def notification_to_dict(n: Notification) -> dict[str, Any]:
    return {
        "id": n.id,
        "targetType": n.target_type.value,
        "targetUserId": n.target_user_id,
        "targetRole": n.target_role,
        "title": n.title,
        "message": n.message,
        "notificationType": n.notification_type.value,
        "priority": n.priority.value,
        "relatedProposalId": n.related_proposal_id,
        "isRead": n.is_read,
        "readAt": n.read_at.isoformat() if n.read_at else None,
        "isHidden": n.is_hidden,
        "createdBy": n.created_by,
        "createdAt": n.created_at.isoformat() if n.created_at else None,
        "expiresAt": n.expires_at.isoformat() if n.expires_at else None,
    }


class NotificationDirectory:
    def __init__(self, session: AsyncSession):
        self.session = session

    def _visible_to(self, actor: Actor):
        """Targeting, hidden and expiry filter for one user."""
        roles = {actor.role}
        if actor.is_reviewer:
            roles.add(settings.reviewer_notification_role)
        return and_(
            or_(
                and_(Notification.target_type == TargetType.USER, Notification.target_user_id == actor.user_id),
                and_(Notification.target_type == TargetType.ROLE, Notification.target_role.in_(sorted(roles))),
                Notification.target_type == TargetType.ALL,
            ),
            Notification.is_hidden.is_(False),
            or_(Notification.expires_at.is_(None), Notification.expires_at > _utcnow()),
        )

    async def create(self, body: NotificationCreate, created_by: Optional[str] = None) -> Notification:
        now = _utcnow()
        expires_at = body.expires_at
        if expires_at is None and settings.notification_expiry_days > 0:
            expires_at = now + timedelta(days=settings.notification_expiry_days)
        notification = Notification(
            id=f"ntf-{uuid.uuid4().hex[:16]}",
            target_type=body.target_type,
            target_user_id=body.target_user_id,
            target_role=body.target_role,
            title=body.title,
            message=body.message,
            notification_type=body.notification_type,
            priority=body.priority,
            related_proposal_id=body.related_proposal_id,
            is_read=False,
            is_hidden=False,
            created_by=created_by,
            created_at=now,
            expires_at=expires_at,
        )
        self.session.add(notification)
        try:
            await self.session.flush()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Notification write failed: {e}", store="relational") from e
        logger.info(
            "Notification %s (%s, %s) -> %s %s",
            notification.id, notification.notification_type.value, notification.priority.value,
            notification.target_type.value, notification.target_user_id or notification.target_role or "*",
        )
        return notification

    async def list_for(
        self,
        actor: Actor,
        unread_only: bool = False,
        notification_type: Optional[NotificationType] = None,
        priority: Optional[Priority] = None,
        page: int = 1,
        limit: int = 20,
    ) -> list[Notification]:
        query = select(Notification).where(self._visible_to(actor))
        if unread_only:
            query = query.where(Notification.is_read.is_(False))
        if notification_type is not None:
            query = query.where(Notification.notification_type == notification_type)
        if priority is not None:
            query = query.where(Notification.priority == priority)
        query = query.order_by(Notification.created_at.desc(), Notification.id).offset((page - 1) * limit).limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def for_proposal(self, proposal_id: str) -> list[Notification]:
        result = await self.session.execute(
            select(Notification)
            .where(Notification.related_proposal_id == proposal_id)
            .order_by(Notification.created_at, Notification.id)
        )
        return list(result.scalars().all())

    async def _get_visible(self, notification_id: str, actor: Actor) -> Notification:
        result = await self.session.execute(
            select(Notification).where(Notification.id == notification_id, self._visible_to(actor))
        )
        notification = result.scalar_one_or_none()
        if notification is None:
            raise NotFoundError("Notification not found", meta={"notificationId": notification_id})
        return notification

    async def mark_read(self, notification_id: str, actor: Actor) -> Notification:
        notification = await self._get_visible(notification_id, actor)
        if not notification.is_read:
            notification.is_read = True
            notification.read_at = _utcnow()
            await self.session.flush()
        return notification

    async def mark_all_read(self, actor: Actor) -> int:
        ids = (await self.session.execute(
            select(Notification.id).where(self._visible_to(actor), Notification.is_read.is_(False))
        )).scalars().all()
        if not ids:
            return 0
        await self.session.execute(
            update(Notification)
            .where(Notification.id.in_(ids))
            .values(is_read=True, read_at=_utcnow())
            .execution_options(synchronize_session=False)
        )
        return len(ids)

    async def hide(self, notification_id: str, actor: Actor) -> Notification:
        notification = await self._get_visible(notification_id, actor)
        notification.is_hidden = True
        await self.session.flush()
        return notification

    async def unread_count(self, actor: Actor) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(Notification).where(
                self._visible_to(actor), Notification.is_read.is_(False)
            )
        )
        return int(result.scalar_one())

    async def stats(self, actor: Actor) -> dict[str, int]:
        result = await self.session.execute(
            select(
                func.count(),
                func.sum(case((Notification.is_read.is_(False), 1), else_=0)),
                func.sum(case((Notification.priority == Priority.URGENT, 1), else_=0)),
                func.sum(case((Notification.priority == Priority.HIGH, 1), else_=0)),
            ).select_from(Notification).where(self._visible_to(actor))
        )
        total, unread, urgent, high = result.one()
        return {
            "total": int(total or 0),
            "unread": int(unread or 0),
            "read": int((total or 0) - (unread or 0)),
            "urgent": int(urgent or 0),
            "highPriority": int(high or 0),
        }
