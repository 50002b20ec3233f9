"""
Proposal lifecycle: draft -> pending -> approved | rejected | revision_requested,
plus the single back-edge revision_requested -> draft.

Each transition writes the new status and an audit row together. Notifications are
created afterwards inside a savepoint: if that fails the savepoint is rolled back,
the failure is logged, and the status change stands.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from errors import PermissionDeniedError, StateTransitionError, ValidationError
from models import Notification, Proposal, StatusChange
from models.enums import NotificationType, Priority, ProposalStatus, Section, TargetType
from schemas.notification import NotificationCreate
from services.actors import Actor
from services.coordinator import PersistenceCoordinator
from services.notifications import NotificationDirectory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationRule:
    target_type: TargetType
    notification_type: NotificationType
    priority: Priority
    title: str
    message: str


# (from, to) -> who may perform it
ALLOWED_TRANSITIONS: dict[tuple[ProposalStatus, ProposalStatus], str] = {
    (ProposalStatus.DRAFT, ProposalStatus.PENDING): "owner",
    (ProposalStatus.PENDING, ProposalStatus.APPROVED): "reviewer",
    (ProposalStatus.PENDING, ProposalStatus.REJECTED): "reviewer",
    (ProposalStatus.PENDING, ProposalStatus.REVISION_REQUESTED): "reviewer",
    (ProposalStatus.REVISION_REQUESTED, ProposalStatus.DRAFT): "owner_or_reviewer",
}

NOTIFICATION_RULES: dict[tuple[ProposalStatus, ProposalStatus], NotificationRule] = {
    (ProposalStatus.DRAFT, ProposalStatus.PENDING): NotificationRule(
        TargetType.ROLE,
        NotificationType.PROPOSAL_SUBMITTED,
        Priority.NORMAL,
        "New Proposal Submitted",
        'A new proposal "{event_name}" has been submitted by {organization}. Please review it.',
    ),
    (ProposalStatus.PENDING, ProposalStatus.APPROVED): NotificationRule(
        TargetType.USER,
        NotificationType.PROPOSAL_APPROVED,
        Priority.NORMAL,
        "Proposal Approved",
        'Your proposal "{event_name}" has been approved. Congratulations!',
    ),
    (ProposalStatus.PENDING, ProposalStatus.REJECTED): NotificationRule(
        TargetType.USER,
        NotificationType.PROPOSAL_REJECTED,
        Priority.NORMAL,
        "Proposal Not Approved",
        'Your proposal "{event_name}" has not been approved. Please review the feedback.',
    ),
    (ProposalStatus.PENDING, ProposalStatus.REVISION_REQUESTED): NotificationRule(
        TargetType.USER,
        NotificationType.REVISION_REQUESTED,
        Priority.NORMAL,
        "Revision Requested",
        'Your proposal "{event_name}" needs changes before it can be approved.',
    ),
    (ProposalStatus.REVISION_REQUESTED, ProposalStatus.DRAFT): NotificationRule(
        TargetType.ROLE,
        NotificationType.PROPOSAL_REOPENED,
        Priority.LOW,
        "Proposal Reopened",
        'The proposal "{event_name}" from {organization} was reopened for editing.',
    ),
}

REVIEW_DECISIONS = {
    "approved": ProposalStatus.APPROVED,
    "rejected": ProposalStatus.REJECTED,
    "revision_requested": ProposalStatus.REVISION_REQUESTED,
}


@dataclass
class TransitionResult:
    proposal: Proposal
    from_status: ProposalStatus
    to_status: ProposalStatus
    notifications: list[Notification]
    notification_error: Optional[str] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StatusTransitionEngine:
    def __init__(
        self,
        session: AsyncSession,
        coordinator: PersistenceCoordinator,
        notifications: NotificationDirectory,
        reviewer_role: Optional[str] = None,
    ):
        self.session = session
        self.coordinator = coordinator
        self.notifications = notifications
        self.reviewer_role = reviewer_role or settings.reviewer_notification_role

    def _authorize(self, proposal: Proposal, actor: Actor, who: str) -> None:
        is_owner = actor.user_id == proposal.owner_id
        if who == "owner" and is_owner:
            return
        if who == "reviewer" and actor.is_reviewer:
            return
        if who == "owner_or_reviewer" and (is_owner or actor.is_reviewer):
            return
        raise PermissionDeniedError(f"This action requires the proposal {who.replace('_', ' ')}")

    def build_notifications(
        self,
        proposal: Proposal,
        from_status: ProposalStatus,
        to_status: ProposalStatus,
        escalation: Optional[Priority] = None,
    ) -> list[NotificationCreate]:
        rule = NOTIFICATION_RULES.get((from_status, to_status))
        if rule is None:
            return []
        priority = rule.priority
        if escalation is not None and rule.notification_type is NotificationType.PROPOSAL_SUBMITTED:
            priority = escalation
        text = {
            "event_name": proposal.event_name or "Untitled event",
            "organization": proposal.organization_name or "an organization",
        }
        if rule.target_type is TargetType.USER:
            targets = [{"target_user_id": proposal.owner_id}]
        elif rule.target_type is TargetType.ROLE:
            targets = [{"target_role": self.reviewer_role}]
        else:
            targets = [{}]
        return [
            NotificationCreate(
                target_type=rule.target_type,
                title=rule.title,
                message=rule.message.format(**text),
                notification_type=rule.notification_type,
                priority=priority,
                related_proposal_id=proposal.id,
                **target,
            )
            for target in targets
        ]

    async def transition(
        self,
        proposal_id: str,
        to_status: ProposalStatus,
        actor: Actor,
        comments: Optional[str] = None,
        escalation: Optional[Priority] = None,
    ) -> TransitionResult:
        proposal = await self.coordinator.load(proposal_id, for_update=True)
        from_status = proposal.status
        who = ALLOWED_TRANSITIONS.get((from_status, to_status))
        if who is None:
            raise StateTransitionError(
                f"Cannot move a {from_status.value} proposal to {to_status.value}",
                source=from_status.value,
                action=to_status.value,
            )
        self._authorize(proposal, actor, who)

        now = _utcnow()
        if to_status is ProposalStatus.PENDING:
            missing = self.coordinator.submission_gaps(proposal)
            if missing:
                raise ValidationError(
                    f"Proposal is incomplete: missing {', '.join(missing)}",
                    missing,
                )
            self.coordinator.write_section(proposal, Section.REPORTING)
            proposal.submitted_at = now
        elif from_status is ProposalStatus.PENDING:
            proposal.reviewed_by = actor.user_id
            proposal.reviewed_at = now
            proposal.admin_comments = comments
        elif to_status is ProposalStatus.DRAFT:
            self.coordinator.write_section(proposal, Section.ORG_INFO)

        proposal.status = to_status
        proposal.updated_at = now
        self.session.add(StatusChange(
            proposal_id=proposal.id,
            from_status=from_status,
            to_status=to_status,
            actor_id=actor.user_id,
            comments=comments,
            created_at=now,
        ))
        await self.coordinator.flush()
        logger.info("Proposal %s: %s -> %s by %s", proposal.id, from_status.value, to_status.value, actor.user_id)

        result = TransitionResult(proposal, from_status, to_status, notifications=[])
        try:
            async with self.session.begin_nested():
                for body in self.build_notifications(proposal, from_status, to_status, escalation):
                    result.notifications.append(await self.notifications.create(body, created_by=actor.user_id))
        except Exception as e:
            # The status change is authoritative; notifications are best-effort
            logger.exception("Notification fan-out failed for proposal %s (%s -> %s)", proposal.id, from_status.value, to_status.value)
            result.notifications = []
            result.notification_error = str(e)
        return result

    async def submit(self, proposal_id: str, actor: Actor, escalation: Optional[Priority] = None) -> TransitionResult:
        return await self.transition(proposal_id, ProposalStatus.PENDING, actor, escalation=escalation)

    async def review(self, proposal_id: str, decision: str, actor: Actor, comments: Optional[str] = None) -> TransitionResult:
        try:
            to_status = REVIEW_DECISIONS[decision]
        except KeyError:
            raise ValidationError(
                f"Unknown review decision '{decision}'",
                {"decision": f"Must be one of: {', '.join(REVIEW_DECISIONS)}"},
            ) from None
        return await self.transition(proposal_id, to_status, actor, comments=comments)

    async def reopen(self, proposal_id: str, actor: Actor, comments: Optional[str] = None) -> TransitionResult:
        return await self.transition(proposal_id, ProposalStatus.DRAFT, actor, comments=comments)

    async def history(self, proposal_id: str, actor: Actor) -> list[StatusChange]:
        proposal = await self.coordinator.load(proposal_id)
        self.coordinator.ensure_access(proposal, actor)
        result = await self.session.execute(
            select(StatusChange)
            .where(StatusChange.proposal_id == proposal_id)
            .order_by(StatusChange.created_at, StatusChange.id)
        )
        return list(result.scalars().all())
