"""
Persistence coordinator: the only component that reads and writes both the relational
proposal store and the file-metadata document store.

The two stores share no transaction, so writes are ordered to keep any partial failure
detectable rather than silent:

1. the proposal row must exist before a file is accepted for it;
2. bytes go to the blob store, then the metadata document is upserted;
3. the row's ``declared_attachments`` is updated last.

A failure between 2 and 3 leaves metadata the row does not declare. ``inspect`` reports
such mismatches; ``reconcile`` repairs them only when explicitly asked to.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from errors import (
    ConsistencyError,
    NotFoundError,
    PermissionDeniedError,
    PersistenceError,
    StateTransitionError,
    ValidationError,
)
from models import Proposal, StatusChange
from models.enums import EventType, FileRole, ProposalStatus, Section, WizardStep
from schemas.proposal import parse_section_fields, parse_section_name
from services.actors import Actor
from services.requirements import (
    completion_percentage,
    event_step_for,
    invalid_choices,
    missing_for,
    missing_for_submission,
    snapshot_of,
)
from services.section_machine import Transition, WizardAction, step_for_section, transition
from stores.blobs import LocalBlobStore
from stores.documents import DocumentStore

logger = logging.getLogger(__name__)

ATTACHMENTS = "file_attachments"

EDITABLE_STATUSES = frozenset({ProposalStatus.DRAFT, ProposalStatus.PENDING})


@dataclass(frozen=True)
class SectionSaveResult:
    id: str
    completion_percentage: int
    current_section: Section


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _attachment_key(proposal_id: str, role: FileRole) -> str:
    return f"{proposal_id}:{role.value}"


def _column_value(value: Any) -> Any:
    # JSON columns hold plain strings, not enum members
    if isinstance(value, list):
        return [v.value if hasattr(v, "value") else v for v in value]
    return value


def proposal_to_dict(p: Proposal) -> dict[str, Any]:
    """Serialize a proposal row with camelCase keys."""
    return {
        "id": p.id,
        "ownerId": p.owner_id,
        "originalDescriptiveId": p.original_descriptive_id,
        "organizationName": p.organization_name,
        "organizationTypes": list(p.organization_types or []),
        "organizationDescription": p.organization_description,
        "contactName": p.contact_name,
        "contactEmail": p.contact_email,
        "contactPhone": p.contact_phone,
        "eventType": p.event_type.value if p.event_type else None,
        "eventCategory": p.event_category,
        "eventName": p.event_name,
        "eventVenue": p.event_venue,
        "eventStartDate": p.event_start_date.isoformat() if p.event_start_date else None,
        "eventEndDate": p.event_end_date.isoformat() if p.event_end_date else None,
        "eventStartTime": p.event_start_time,
        "eventEndTime": p.event_end_time,
        "eventMode": p.event_mode.value if p.event_mode else None,
        "targetAudience": list(p.target_audience or []),
        "credits": p.credits,
        "attendanceCount": p.attendance_count,
        "reportEventStatus": p.report_event_status.value if p.report_event_status else None,
        "reportDescription": p.report_description,
        "currentSection": p.current_section.value,
        "formCompletionPercentage": p.form_completion_percentage,
        "status": p.status.value,
        "declaredAttachments": list(p.declared_attachments or []),
        "adminComments": p.admin_comments,
        "reviewedBy": p.reviewed_by,
        "createdAt": p.created_at.isoformat() if p.created_at else None,
        "updatedAt": p.updated_at.isoformat() if p.updated_at else None,
        "submittedAt": p.submitted_at.isoformat() if p.submitted_at else None,
        "reviewedAt": p.reviewed_at.isoformat() if p.reviewed_at else None,
    }


class PersistenceCoordinator:
    def __init__(self, session: AsyncSession, documents: DocumentStore, blobs: LocalBlobStore):
        self.session = session
        self.documents = documents
        self.blobs = blobs

    # ------------------------------------------------------------------
    # Relational helpers
    # ------------------------------------------------------------------

    async def flush(self) -> None:
        try:
            await self.session.flush()
        except SQLAlchemyError as e:
            logger.error("Relational write failed: %s", e)
            raise PersistenceError(f"Relational store write failed: {e}", store="relational") from e

    async def _find(self, proposal_id: str, for_update: bool = False) -> Optional[Proposal]:
        query = select(Proposal).where(Proposal.id == proposal_id)
        if for_update:
            query = query.with_for_update()
        try:
            result = await self.session.execute(query)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Relational store read failed: {e}", store="relational") from e
        return result.scalar_one_or_none()

    async def load(self, proposal_id: str, for_update: bool = False) -> Proposal:
        proposal = await self._find(proposal_id, for_update=for_update)
        if proposal is None:
            raise NotFoundError("Proposal not found", meta={"proposalId": proposal_id})
        return proposal

    def write_section(self, proposal: Proposal, section: Section | str) -> None:
        """Set ``current_section``; values outside the closed set are rejected."""
        try:
            proposal.current_section = Section(section)
        except ValueError:
            allowed = ", ".join(s.value for s in Section)
            raise ValidationError(
                f"Invalid section '{section}'",
                {"currentSection": f"Must be one of: {allowed}"},
            ) from None

    def refresh_completion(self, proposal: Proposal) -> int:
        """Recompute the completion percentage; it never goes down."""
        computed = completion_percentage(
            proposal.event_type, snapshot_of(proposal), proposal.declared_attachments or []
        )
        proposal.form_completion_percentage = max(proposal.form_completion_percentage or 0, computed)
        return proposal.form_completion_percentage

    def change_event_type(self, proposal: Proposal, event_type: EventType) -> None:
        """Switch the event type, clearing category/credit values the new type does not offer."""
        if proposal.event_type is event_type:
            return
        proposal.event_type = event_type
        cleared = invalid_choices(event_type, snapshot_of(proposal))
        if "eventCategory" in cleared:
            proposal.event_category = None
        if "credits" in cleared:
            proposal.credits = None
        if cleared:
            logger.info("Proposal %s switched to %s; cleared %s", proposal.id, event_type.value, sorted(cleared))

    def submission_gaps(self, proposal: Proposal) -> dict[str, str]:
        return missing_for_submission(
            proposal.event_type, snapshot_of(proposal), proposal.declared_attachments or []
        )

    # ------------------------------------------------------------------
    # Access rules
    # ------------------------------------------------------------------

    @staticmethod
    def ensure_access(proposal: Proposal, actor: Actor) -> None:
        if actor.user_id == proposal.owner_id:
            return
        if proposal.status is not ProposalStatus.DRAFT and actor.is_reviewer:
            return
        raise PermissionDeniedError("You do not have access to this proposal")

    def ensure_can_edit(self, proposal: Proposal, actor: Actor, section: Section) -> None:
        if section is Section.REPORTING:
            if proposal.status is not ProposalStatus.APPROVED:
                raise StateTransitionError(
                    "The reporting section unlocks once the proposal is approved",
                    source=proposal.status.value,
                    action="edit_reporting",
                )
        elif proposal.status not in EDITABLE_STATUSES:
            raise StateTransitionError(
                f"Proposal is {proposal.status.value}; it can no longer be edited",
                source=proposal.status.value,
                action="edit",
            )
        self.ensure_access(proposal, actor)

    # ------------------------------------------------------------------
    # Drafts
    # ------------------------------------------------------------------

    async def create_draft(
        self,
        owner_id: str,
        event_type: EventType = EventType.SCHOOL_BASED,
        original_descriptive_id: Optional[str] = None,
    ) -> Proposal:
        now = _utcnow()
        proposal = Proposal(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            original_descriptive_id=original_descriptive_id,
            event_type=event_type,
            organization_types=[],
            target_audience=[],
            declared_attachments=[],
            current_section=Section.OVERVIEW,
            form_completion_percentage=0,
            status=ProposalStatus.DRAFT,
            created_at=now,
            updated_at=now,
        )
        self.session.add(proposal)
        await self.flush()
        logger.info(
            "Created draft %s for %s (event type %s, from %r)",
            proposal.id, owner_id, event_type.value, original_descriptive_id,
        )
        return proposal

    async def set_event_type(self, proposal_id: str, event_type: EventType, actor: Actor) -> Proposal:
        proposal = await self.load(proposal_id, for_update=True)
        if proposal.status is not ProposalStatus.DRAFT:
            raise StateTransitionError(
                "Event type can only change while the proposal is a draft",
                source=proposal.status.value,
                action="set_event_type",
            )
        self.ensure_access(proposal, actor)
        self.change_event_type(proposal, EventType(event_type))
        self.refresh_completion(proposal)
        proposal.updated_at = _utcnow()
        await self.flush()
        return proposal

    async def navigate(
        self,
        proposal_id: str,
        action: WizardAction | str,
        actor: Actor,
        step: Optional[WizardStep] = None,
        event_type: Any = None,
    ) -> Transition:
        """Run a wizard transition against persisted data and store the resulting section."""
        proposal = await self.load(proposal_id, for_update=True)
        if proposal.status is not ProposalStatus.DRAFT:
            raise StateTransitionError(
                "Wizard navigation is only available for drafts",
                source=proposal.status.value,
                action=str(getattr(action, "value", action)),
            )
        self.ensure_access(proposal, actor)

        current = step_for_section(proposal.current_section)
        if step is not None:
            if WizardStep(step).stored_section is not proposal.current_section:
                raise StateTransitionError(
                    f"Client step '{WizardStep(step).value}' does not match stored section "
                    f"'{proposal.current_section.value}'",
                    source=proposal.current_section.value,
                    action=str(getattr(action, "value", action)),
                )
            current = WizardStep(step)

        result = transition(
            current, action, snapshot_of(proposal), proposal.declared_attachments or [], event_type
        )
        if result.event_type is not None:
            self.change_event_type(proposal, result.event_type)
        self.write_section(proposal, result.stored_section)
        self.refresh_completion(proposal)
        proposal.updated_at = _utcnow()
        await self.flush()
        logger.info(
            "Proposal %s moved %s -> %s via %s",
            proposal.id, result.source.value, result.target.value, result.action.value,
        )
        return result

    # ------------------------------------------------------------------
    # Sections
    # ------------------------------------------------------------------

    async def save_section(
        self,
        proposal_id: str,
        section: Section | str,
        fields: dict[str, Any],
        actor: Actor,
        advance: bool = False,
    ) -> SectionSaveResult:
        """
        Write one section's fields. With ``advance`` the section must be complete and the
        wizard moves forward; an incomplete section raises before anything is written.
        """
        section = parse_section_name(section)
        payload = parse_section_fields(section, fields)
        proposal = await self.load(proposal_id, for_update=True)
        self.ensure_can_edit(proposal, actor, section)

        if section in (Section.SCHOOL_EVENT, Section.COMMUNITY_EVENT):
            expected = event_step_for(proposal.event_type).stored_section
            if section is not expected:
                raise ValidationError(
                    f"Proposal is a {proposal.event_type.value} event; use the {expected.value} section",
                    {"section": f"Expected {expected.value}"},
                )

        updates = payload.model_dump(exclude_unset=True)
        next_section = section
        if advance:
            merged = {**snapshot_of(proposal), **updates}
            attachments = proposal.declared_attachments or []
            if section is Section.REPORTING:
                # Last section: completing it keeps the wizard where it is
                missing = missing_for(WizardStep.REPORTING, merged, attachments)
                if missing:
                    raise ValidationError(
                        f"Section 'reporting' is incomplete: missing {', '.join(missing)}", missing
                    )
            else:
                result = transition(step_for_section(section), WizardAction.NEXT, merged, attachments)
                next_section = result.stored_section

        for name, value in updates.items():
            setattr(proposal, name, _column_value(value))
        if proposal.status is ProposalStatus.DRAFT:
            self.write_section(proposal, next_section)
        self.refresh_completion(proposal)
        proposal.updated_at = _utcnow()
        await self.flush()

        logger.info(
            "Saved section %s of %s (%d fields, advance=%s, completion=%d%%)",
            section.value, proposal.id, len(updates), advance, proposal.form_completion_percentage,
        )
        return SectionSaveResult(
            id=proposal.id,
            completion_percentage=proposal.form_completion_percentage,
            current_section=proposal.current_section,
        )

    # ------------------------------------------------------------------
    # Attachments
    # ------------------------------------------------------------------

    async def attach_file(
        self,
        proposal_id: str,
        role: FileRole | str,
        data: bytes,
        original_name: str,
        mime_type: str,
        actor: Actor,
    ) -> dict[str, Any]:
        try:
            role = FileRole(role)
        except ValueError:
            allowed = ", ".join(r.value for r in FileRole)
            raise ValidationError(f"Unknown attachment role '{role}'", {"role": f"Must be one of: {allowed}"}) from None
        if not data:
            raise ValidationError("File is empty", {"file": "File is empty"})
        if len(data) > settings.max_upload_bytes:
            raise ValidationError(
                "File is too large",
                {"file": f"Maximum size is {settings.max_upload_bytes} bytes"},
            )
        if mime_type not in settings.allowed_mime_type_set:
            raise ValidationError(f"Unsupported file type '{mime_type}'", {"file": "Unsupported file type"})

        # The relational row must exist before any file is accepted for it
        proposal = await self.load(proposal_id, for_update=True)
        if role is FileRole.ACCOMPLISHMENT_REPORT:
            section = Section.REPORTING
        else:
            section = event_step_for(proposal.event_type).stored_section
        self.ensure_can_edit(proposal, actor, section)

        key = _attachment_key(proposal.id, role)
        previous = await self.documents.get(ATTACHMENTS, key)
        locator = self.blobs.put(data)
        document = {
            "ownerProposalId": proposal.id,
            "role": role.value,
            "originalName": original_name,
            "sizeBytes": len(data),
            "mimeType": mime_type,
            "storageLocator": locator,
            "uploadedAt": _utcnow().isoformat(),
            "uploadedBy": actor.user_id,
        }
        await self.documents.put(ATTACHMENTS, key, document, owner_ref=proposal.id)
        if previous and previous.get("storageLocator") != locator:
            await self._release_blob(previous["storageLocator"])

        proposal.declared_attachments = sorted(set(proposal.declared_attachments or []) | {role.value})
        self.refresh_completion(proposal)
        proposal.updated_at = _utcnow()
        await self.flush()
        logger.info(
            "Stored %s for proposal %s (%d bytes, %s, replaced=%s)",
            role.value, proposal.id, len(data), locator, previous is not None,
        )
        return document

    async def _release_blob(self, locator: str) -> None:
        """Delete a blob once no attachment document points at it."""
        if await self.documents.count_referencing(ATTACHMENTS, "storageLocator", locator) == 0:
            self.blobs.delete(locator)

    async def attachments_for(self, proposal_id: str) -> list[dict[str, Any]]:
        return await self.documents.find(ATTACHMENTS, owner_ref=proposal_id)

    async def read_attachment(self, proposal_id: str, role: FileRole | str, actor: Actor) -> tuple[dict[str, Any], bytes]:
        proposal = await self.load(proposal_id)
        self.ensure_access(proposal, actor)
        try:
            role = FileRole(role)
        except ValueError:
            raise NotFoundError(f"Unknown attachment role '{role}'") from None
        document = await self.documents.get(ATTACHMENTS, _attachment_key(proposal.id, role))
        if document is None:
            raise NotFoundError("Attachment not found", meta={"proposalId": proposal.id, "role": role.value})
        return document, self.blobs.get(document["storageLocator"])

    # ------------------------------------------------------------------
    # Reads across both stores
    # ------------------------------------------------------------------

    def _issues(self, proposal: Optional[Proposal], documents: list[dict[str, Any]]) -> list[dict[str, Any]]:
        stored = {d["role"] for d in documents}
        issues: list[dict[str, Any]] = []
        if proposal is None:
            if stored:
                issues.append({"type": "orphaned_metadata", "roles": sorted(stored)})
            return issues
        declared = set(proposal.declared_attachments or [])
        if declared - stored:
            issues.append({"type": "missing_metadata", "roles": sorted(declared - stored)})
        if stored - declared:
            issues.append({"type": "undeclared_metadata", "roles": sorted(stored - declared)})
        missing_blobs = sorted(d["role"] for d in documents if not self.blobs.exists(d["storageLocator"]))
        if missing_blobs:
            issues.append({"type": "missing_blob", "roles": missing_blobs})
        return issues

    @staticmethod
    def attachment_view(document: dict[str, Any]) -> dict[str, Any]:
        return {k: v for k, v in document.items() if k != "storageLocator"}

    async def get_proposal(self, proposal_id: str, actor: Actor) -> dict[str, Any]:
        """Merged relational + document view of one proposal."""
        proposal = await self._find(proposal_id)
        documents = await self.attachments_for(proposal_id)
        if proposal is None:
            if documents:
                issues = self._issues(None, documents)
                logger.warning("Orphaned attachment metadata for missing proposal %s", proposal_id)
                raise ConsistencyError("File metadata exists for a proposal with no relational record", issues)
            raise NotFoundError("Proposal not found", meta={"proposalId": proposal_id})
        self.ensure_access(proposal, actor)

        issues = self._issues(proposal, documents)
        if issues:
            logger.warning("Proposal %s has cross-store inconsistencies: %s", proposal.id, issues)
        view = proposal_to_dict(proposal)
        view["attachments"] = [self.attachment_view(d) for d in documents]
        view["dataSource"] = "hybrid" if documents else "relational-only"
        view["consistencyIssues"] = issues
        return view

    async def get_admin_view(
        self,
        status: Optional[ProposalStatus] = None,
        event_type: Optional[EventType] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> dict[str, Any]:
        """Paginated proposals (drafts excluded) with their attachment metadata merged in."""
        conditions = [Proposal.status != ProposalStatus.DRAFT]
        if status is not None:
            conditions.append(Proposal.status == status)
        if event_type is not None:
            conditions.append(Proposal.event_type == event_type)
        if search:
            term = search.strip().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            pattern = f"%{term}%"
            conditions.append(or_(
                Proposal.organization_name.ilike(pattern, escape="\\"),
                Proposal.event_name.ilike(pattern, escape="\\"),
                Proposal.contact_name.ilike(pattern, escape="\\"),
                Proposal.contact_email.ilike(pattern, escape="\\"),
            ))

        try:
            total = (await self.session.execute(
                select(func.count()).select_from(Proposal).where(*conditions)
            )).scalar_one()
            result = await self.session.execute(
                select(Proposal)
                .where(*conditions)
                .order_by(Proposal.updated_at.desc(), Proposal.id)
                .offset((page - 1) * limit)
                .limit(limit)
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Relational store read failed: {e}", store="relational") from e
        proposals = result.scalars().all()

        items = []
        for p in proposals:
            documents = await self.attachments_for(p.id)
            item = proposal_to_dict(p)
            item["attachments"] = [self.attachment_view(d) for d in documents]
            item["dataSource"] = "hybrid" if documents else "relational-only"
            items.append(item)

        total_pages = (total + limit - 1) // limit if total else 0
        return {
            "data": items,
            "pagination": {
                "currentPage": page,
                "totalPages": total_pages,
                "totalCount": total,
                "hasNextPage": page < total_pages,
                "hasPrevPage": page > 1,
                "limit": limit,
            },
            "filters": {
                "status": status.value if status else None,
                "eventType": event_type.value if event_type else None,
                "search": search,
            },
        }

    async def inspect(self, proposal_id: str) -> dict[str, Any]:
        """Per-store presence report for one proposal id."""
        proposal = await self._find(proposal_id)
        documents = await self.attachments_for(proposal_id)
        issues = self._issues(proposal, documents)
        if issues:
            logger.warning("Consistency check for %s found %s", proposal_id, issues)
        return {
            "proposalId": proposal_id,
            "relational": {
                "found": proposal is not None,
                "status": proposal.status.value if proposal else None,
                "currentSection": proposal.current_section.value if proposal else None,
                "declaredAttachments": sorted(proposal.declared_attachments or []) if proposal else [],
            },
            "documents": {
                "found": bool(documents),
                "attachments": sorted(d["role"] for d in documents),
            },
            "consistent": not issues,
            "issues": issues,
        }

    async def reconcile(self, proposal_id: str, action: str, actor: Actor) -> dict[str, Any]:
        """
        Explicit repair of a cross-store mismatch.

        ``purge_orphans`` deletes metadata the relational side does not know about.
        ``adopt_stored`` makes the row declare exactly the attachments that are stored.
        """
        if not actor.is_reviewer:
            raise PermissionDeniedError("Only reviewers can reconcile proposals")
        proposal = await self._find(proposal_id, for_update=True)
        documents = await self.attachments_for(proposal_id)

        if action == "purge_orphans":
            declared = set(proposal.declared_attachments or []) if proposal else set()
            for document in documents:
                if document["role"] in declared:
                    continue
                await self.documents.delete(ATTACHMENTS, _attachment_key(proposal_id, FileRole(document["role"])))
                await self._release_blob(document["storageLocator"])
                logger.warning("Purged %s metadata for %s", document["role"], proposal_id)
        elif action == "adopt_stored":
            if proposal is None:
                raise NotFoundError("Proposal not found", meta={"proposalId": proposal_id})
            proposal.declared_attachments = sorted(d["role"] for d in documents)
            self.refresh_completion(proposal)
            proposal.updated_at = _utcnow()
            await self.flush()
            logger.warning("Proposal %s now declares %s", proposal_id, proposal.declared_attachments)
        else:
            raise ValidationError(f"Unknown reconcile action '{action}'", {"action": "Unknown action"})
        return await self.inspect(proposal_id)

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    async def delete_proposal(self, proposal_id: str, actor: Actor) -> None:
        """Delete the proposal row, then its attachment metadata and unreferenced blobs."""
        proposal = await self.load(proposal_id, for_update=True)
        is_owner = actor.user_id == proposal.owner_id
        if proposal.status is ProposalStatus.DRAFT:
            # Drafts belong to their owner alone
            if not is_owner:
                raise PermissionDeniedError("You do not have access to this proposal")
        elif not actor.is_reviewer:
            if not is_owner:
                raise PermissionDeniedError("You do not have access to this proposal")
            raise StateTransitionError(
                "Submitted proposals can only be deleted by a reviewer",
                source=proposal.status.value,
                action="delete",
            )

        documents = await self.attachments_for(proposal.id)
        try:
            await self.session.execute(delete(StatusChange).where(StatusChange.proposal_id == proposal.id))
            await self.session.delete(proposal)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Relational store delete failed: {e}", store="relational") from e
        # Files go only once the relational delete has gone through
        await self.flush()

        await self.documents.delete_owned_by(ATTACHMENTS, proposal_id)
        for locator in {d["storageLocator"] for d in documents}:
            await self._release_blob(locator)
        logger.info("Deleted proposal %s and %d attachments", proposal_id, len(documents))
