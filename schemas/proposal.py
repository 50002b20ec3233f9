"""
Typed payloads for each wizard section.

Section bodies arrive as camelCase field bags; ``parse_section_fields`` selects the
schema registered for the section and turns pydantic errors into a field-level
``ValidationError`` before anything reaches the persistence coordinator.
"""
from __future__ import annotations

import re
from datetime import date
from typing import Annotated, Any, ClassVar, Literal, Optional

from pydantic import BaseModel, BeforeValidator, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from errors import ValidationError
from models.enums import (
    CREDIT_OPTIONS,
    EVENT_CATEGORIES,
    EventMode,
    EventType,
    OrganizationType,
    Priority,
    ReportEventStatus,
    Section,
)

EMAIL_RE = re.compile(r"^\S+@\S+\.\S+$")
TIME_RE = re.compile(r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$")

_SECTION_CONFIG = {
    "alias_generator": to_camel,
    "populate_by_name": True,
    "extra": "forbid",
    "str_strip_whitespace": True,
}


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


OptStr = Annotated[Optional[str], BeforeValidator(_blank_to_none)]


class OverviewSection(BaseModel):
    """No fields; saving overview only records the wizard position."""

    model_config = {**_SECTION_CONFIG}


class OrgInfoSection(BaseModel):
    organization_name: OptStr = None
    organization_types: Optional[list[OrganizationType]] = None
    organization_description: OptStr = None
    contact_name: OptStr = None
    contact_email: OptStr = None
    contact_phone: OptStr = None

    model_config = {**_SECTION_CONFIG}

    @field_validator("organization_types")
    @classmethod
    def _unique_types(cls, v: Optional[list[OrganizationType]]) -> Optional[list[OrganizationType]]:
        if v is None:
            return v
        return list(dict.fromkeys(v))

    @field_validator("contact_email")
    @classmethod
    def _email_shape(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not EMAIL_RE.match(v):
            raise ValueError("Please enter a valid email address")
        return v


class _EventSection(BaseModel):
    event_type: ClassVar[EventType]

    event_name: OptStr = None
    event_venue: OptStr = None
    event_start_date: Annotated[Optional[date], BeforeValidator(_blank_to_none)] = None
    event_end_date: Annotated[Optional[date], BeforeValidator(_blank_to_none)] = None
    event_start_time: OptStr = None
    event_end_time: OptStr = None
    event_category: OptStr = None
    event_mode: Annotated[Optional[EventMode], BeforeValidator(_blank_to_none)] = None
    target_audience: Optional[list[str]] = None
    credits: OptStr = None

    model_config = {**_SECTION_CONFIG}

    @field_validator("event_start_time", "event_end_time")
    @classmethod
    def _time_shape(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not TIME_RE.match(v):
            raise ValueError("Time must be HH:MM (24h)")
        return v

    @field_validator("target_audience")
    @classmethod
    def _audience_set(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        if v is None:
            return v
        return sorted({a.strip() for a in v if a and a.strip()})

    @field_validator("event_category")
    @classmethod
    def _known_category(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in EVENT_CATEGORIES[cls.event_type]:
            allowed = ", ".join(sorted(EVENT_CATEGORIES[cls.event_type]))
            raise ValueError(f"Unknown event category for {cls.event_type.value} events. Must be one of: {allowed}")
        return v

    @field_validator("credits")
    @classmethod
    def _known_credits(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in CREDIT_OPTIONS[cls.event_type]:
            allowed = ", ".join(sorted(CREDIT_OPTIONS[cls.event_type]))
            raise ValueError(f"Credits must be one of: {allowed}")
        return v

    @model_validator(mode="after")
    def _dates_in_order(self):
        if self.event_start_date and self.event_end_date and self.event_end_date < self.event_start_date:
            raise ValueError("eventEndDate must not be before eventStartDate")
        return self


class SchoolEventSection(_EventSection):
    event_type: ClassVar[EventType] = EventType.SCHOOL_BASED


class CommunityEventSection(_EventSection):
    event_type: ClassVar[EventType] = EventType.COMMUNITY_BASED


class ReportingSection(BaseModel):
    attendance_count: Optional[int] = Field(None, gt=0)
    report_event_status: Annotated[Optional[ReportEventStatus], BeforeValidator(_blank_to_none)] = None
    report_description: OptStr = None

    model_config = {**_SECTION_CONFIG}


SECTION_SCHEMAS: dict[Section, type[BaseModel]] = {
    Section.OVERVIEW: OverviewSection,
    Section.ORG_INFO: OrgInfoSection,
    Section.SCHOOL_EVENT: SchoolEventSection,
    Section.COMMUNITY_EVENT: CommunityEventSection,
    Section.REPORTING: ReportingSection,
}


def parse_section_name(name: str) -> Section:
    try:
        return Section(name)
    except ValueError:
        allowed = ", ".join(s.value for s in Section)
        raise ValidationError(
            f"Unknown section '{name}'",
            {"section": f"Must be one of: {allowed}"},
        ) from None


def parse_section_fields(section: Section, fields: dict[str, Any]) -> BaseModel:
    schema = SECTION_SCHEMAS[section]
    try:
        return schema.model_validate(fields or {})
    except PydanticValidationError as e:
        field_errors: dict[str, str] = {}
        for err in e.errors():
            key = ".".join(str(p) for p in err["loc"]) or "__root__"
            field_errors.setdefault(key, err["msg"])
        raise ValidationError(f"Invalid {section.value} fields", field_errors) from None


class SectionSaveRequest(BaseModel):
    proposal_id: str = Field(..., alias="proposalId")
    fields: dict[str, Any] = Field(default_factory=dict)

    model_config = {"populate_by_name": True}


class SubmitRequest(BaseModel):
    escalation: Optional[Priority] = None

    @field_validator("escalation")
    @classmethod
    def _escalation_only(cls, v: Optional[Priority]) -> Optional[Priority]:
        if v is not None and v not in (Priority.HIGH, Priority.URGENT):
            raise ValueError("escalation must be high or urgent")
        return v


class ReviewRequest(BaseModel):
    decision: Literal["approved", "rejected", "revision_requested"]
    comments: Optional[str] = None


class ReopenRequest(BaseModel):
    comments: Optional[str] = None


class ReconcileRequest(BaseModel):
    action: Literal["purge_orphans", "adopt_stored"]
