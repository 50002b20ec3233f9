"""
Closed value sets shared by the validation (pydantic) and storage (SQLAlchemy) layers.
Column types are built from these enums so the database CHECK constraints and the
request schemas can never drift apart.
"""
from __future__ import annotations

from enum import Enum

from sqlalchemy import Enum as SAEnum


class Section(str, Enum):
    """Wizard section as persisted on the proposal row."""

    OVERVIEW = "overview"
    ORG_INFO = "orgInfo"
    SCHOOL_EVENT = "schoolEvent"
    COMMUNITY_EVENT = "communityEvent"
    REPORTING = "reporting"


class WizardStep(str, Enum):
    """Every step the section state machine can be in."""

    OVERVIEW = "overview"
    EVENT_TYPE_SELECTION = "eventTypeSelection"
    ORG_INFO = "orgInfo"
    SCHOOL_EVENT = "schoolEvent"
    COMMUNITY_EVENT = "communityEvent"
    REPORTING = "reporting"

    @property
    def stored_section(self) -> Section:
        # eventTypeSelection is a sub-step of the overview page
        if self is WizardStep.EVENT_TYPE_SELECTION:
            return Section.OVERVIEW
        return Section(self.value)


class ProposalStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    REVISION_REQUESTED = "revision_requested"


class EventType(str, Enum):
    SCHOOL_BASED = "school-based"
    COMMUNITY_BASED = "community-based"


class OrganizationType(str, Enum):
    SCHOOL_BASED = "school-based"
    COMMUNITY_BASED = "community-based"


class EventMode(str, Enum):
    OFFLINE = "offline"
    ONLINE = "online"
    HYBRID = "hybrid"


class ReportEventStatus(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    POSTPONED = "postponed"


class FileRole(str, Enum):
    GPOA = "gpoa"
    PROJECT_PROPOSAL = "projectProposal"
    ACCOMPLISHMENT_REPORT = "accomplishmentReport"


class TargetType(str, Enum):
    USER = "user"
    ROLE = "role"
    ALL = "all"


class NotificationType(str, Enum):
    PROPOSAL_SUBMITTED = "proposal_submitted"
    PROPOSAL_APPROVED = "proposal_approved"
    PROPOSAL_REJECTED = "proposal_rejected"
    REVISION_REQUESTED = "revision_requested"
    PROPOSAL_REOPENED = "proposal_reopened"
    SYSTEM_ANNOUNCEMENT = "system_announcement"


class Priority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


# Activity kinds offered for each event type.
EVENT_CATEGORIES: dict[EventType, frozenset[str]] = {
    EventType.SCHOOL_BASED: frozenset({
        "academic-enhancement",
        "workshop-seminar-webinar",
        "conference",
        "competition",
        "cultural-show",
        "sports-fest",
        "other",
    }),
    EventType.COMMUNITY_BASED: frozenset({
        "academic-enhancement",
        "seminar-webinar",
        "general-assembly",
        "leadership-training",
        "others",
    }),
}

CREDIT_OPTIONS: dict[EventType, frozenset[str]] = {
    EventType.SCHOOL_BASED: frozenset({"1", "2", "3", "Not Applicable"}),
    EventType.COMMUNITY_BASED: frozenset({"1", "2"}),
}


def enum_column_type(enum_cls: type[Enum], name: str) -> SAEnum:
    """Column type storing enum *values* with a named CHECK constraint."""
    return SAEnum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        create_constraint=True,
        validate_strings=True,
        length=32,
    )
