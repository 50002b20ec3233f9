from schemas.draft import DraftCreate, EventTypeUpdate, WizardTransitionRequest
from schemas.notification import NotificationCreate
from schemas.proposal import (
    SECTION_SCHEMAS,
    CommunityEventSection,
    OrgInfoSection,
    OverviewSection,
    ReconcileRequest,
    ReopenRequest,
    ReportingSection,
    ReviewRequest,
    SchoolEventSection,
    SectionSaveRequest,
    SubmitRequest,
    parse_section_fields,
    parse_section_name,
)

__all__ = [
    "DraftCreate",
    "EventTypeUpdate",
    "WizardTransitionRequest",
    "NotificationCreate",
    "SECTION_SCHEMAS",
    "CommunityEventSection",
    "OrgInfoSection",
    "OverviewSection",
    "ReconcileRequest",
    "ReopenRequest",
    "ReportingSection",
    "ReviewRequest",
    "SchoolEventSection",
    "SectionSaveRequest",
    "SubmitRequest",
    "parse_section_fields",
    "parse_section_name",
]
