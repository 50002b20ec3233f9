"""
Required-field table for every wizard step, and the completion percentage derived from it.

This is the one place that decides what "section complete" means; the state machine
guard, the submit check and the completion percentage all read from it.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from pydantic.alias_generators import to_camel

from models.enums import CREDIT_OPTIONS, EVENT_CATEGORIES, EventType, FileRole, WizardStep


@dataclass(frozen=True)
class Requirement:
    field: str
    message: str


_EVENT_FIELDS = (
    Requirement("event_name", "Event name is required"),
    Requirement("event_venue", "Venue is required"),
    Requirement("event_start_date", "Start date is required"),
    Requirement("event_end_date", "End date is required"),
    Requirement("event_start_time", "Start time is required"),
    Requirement("event_end_time", "End time is required"),
    Requirement("event_category", "Event type is required"),
    Requirement("event_mode", "Event mode is required"),
    Requirement("target_audience", "At least one target audience must be selected"),
    Requirement("credits", "Number of credits is required"),
)

SECTION_REQUIREMENTS: dict[WizardStep, tuple[Requirement, ...]] = {
    WizardStep.OVERVIEW: (),
    WizardStep.EVENT_TYPE_SELECTION: (
        Requirement("event_type", "Please select an event type"),
    ),
    WizardStep.ORG_INFO: (
        Requirement("organization_name", "Organization name is required"),
        Requirement("organization_types", "Please select one organization type"),
        Requirement("contact_name", "Contact person name is required"),
        Requirement("contact_email", "Contact email is required"),
    ),
    WizardStep.SCHOOL_EVENT: _EVENT_FIELDS,
    WizardStep.COMMUNITY_EVENT: _EVENT_FIELDS,
    WizardStep.REPORTING: (
        Requirement("attendance_count", "Attendance count is required"),
        Requirement("report_event_status", "Event status is required"),
    ),
}

REQUIRED_ATTACHMENTS: dict[WizardStep, tuple[FileRole, ...]] = {
    WizardStep.SCHOOL_EVENT: (FileRole.GPOA, FileRole.PROJECT_PROPOSAL),
    WizardStep.COMMUNITY_EVENT: (FileRole.GPOA, FileRole.PROJECT_PROPOSAL),
    WizardStep.REPORTING: (FileRole.ACCOMPLISHMENT_REPORT,),
}

ATTACHMENT_MESSAGES: dict[FileRole, str] = {
    FileRole.GPOA: "GPOA file is required",
    FileRole.PROJECT_PROPOSAL: "Proposal document is required",
    FileRole.ACCOMPLISHMENT_REPORT: "Accomplishment report file is required",
}

TRACKED_FIELDS: tuple[str, ...] = tuple(
    dict.fromkeys(r.field for reqs in SECTION_REQUIREMENTS.values() for r in reqs)
)


def is_populated(value: Any) -> bool:
    """Empty strings and empty collections count as missing; 0 and False do not."""
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    if isinstance(value, (list, tuple, set, frozenset, dict)):
        return len(value) > 0
    return True


def event_step_for(event_type: EventType | str | None) -> WizardStep:
    """Event section for an event type; anything unrecognised falls back to the school branch."""
    if event_type == EventType.COMMUNITY_BASED:
        return WizardStep.COMMUNITY_EVENT
    return WizardStep.SCHOOL_EVENT


def submission_steps(event_type: EventType | str | None) -> tuple[WizardStep, ...]:
    """Steps that must be complete before a proposal can be submitted."""
    return (WizardStep.ORG_INFO, event_step_for(event_type))


def snapshot_of(obj: Any) -> dict[str, Any]:
    """Read every tracked field from a proposal row (or any object with those attributes)."""
    return {name: getattr(obj, name, None) for name in TRACKED_FIELDS}


STEP_EVENT_TYPES: dict[WizardStep, EventType] = {
    WizardStep.SCHOOL_EVENT: EventType.SCHOOL_BASED,
    WizardStep.COMMUNITY_EVENT: EventType.COMMUNITY_BASED,
}

CHOICE_FIELDS: dict[str, dict[EventType, frozenset[str]]] = {
    "event_category": EVENT_CATEGORIES,
    "credits": CREDIT_OPTIONS,
}


def invalid_choices(event_type: EventType, snapshot: dict[str, Any]) -> dict[str, str]:
    """Populated category/credit values that ``event_type`` does not offer."""
    invalid: dict[str, str] = {}
    for name, options in CHOICE_FIELDS.items():
        value = snapshot.get(name)
        if is_populated(value) and value not in options[event_type]:
            allowed = ", ".join(sorted(options[event_type]))
            invalid[to_camel(name)] = f"'{value}' is not offered for {event_type.value} events. Must be one of: {allowed}"
    return invalid


def missing_for(
    step: WizardStep,
    snapshot: dict[str, Any],
    attachments: Iterable[FileRole | str] = (),
) -> dict[str, str]:
    """camelCase field name -> message for everything ``step`` still needs or holds invalidly."""
    present = {FileRole(a) for a in attachments}
    missing: dict[str, str] = {}
    for req in SECTION_REQUIREMENTS.get(step, ()):
        if not is_populated(snapshot.get(req.field)):
            missing[to_camel(req.field)] = req.message
    if step in STEP_EVENT_TYPES:
        missing.update(invalid_choices(STEP_EVENT_TYPES[step], snapshot))
    for role in REQUIRED_ATTACHMENTS.get(step, ()):
        if role not in present:
            missing[role.value] = ATTACHMENT_MESSAGES[role]
    return missing


def missing_for_submission(
    event_type: EventType | str | None,
    snapshot: dict[str, Any],
    attachments: Iterable[FileRole | str] = (),
) -> dict[str, str]:
    attachments = list(attachments)
    missing: dict[str, str] = {}
    for step in submission_steps(event_type):
        missing.update(missing_for(step, snapshot, attachments))
    return missing


def completion_percentage(
    event_type: EventType | str | None,
    snapshot: dict[str, Any],
    attachments: Iterable[FileRole | str] = (),
) -> int:
    """Share of required fields and attachments populated across the submission steps."""
    present = {FileRole(a) for a in attachments}
    total = 0
    done = 0
    for step in submission_steps(event_type):
        for req in SECTION_REQUIREMENTS[step]:
            total += 1
            done += is_populated(snapshot.get(req.field))
        for role in REQUIRED_ATTACHMENTS.get(step, ()):
            total += 1
            done += role in present
    if total == 0:
        return 0
    return max(0, min(100, round(100 * done / total)))
