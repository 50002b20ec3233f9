from sqlalchemy import CheckConstraint, Column, Date, DateTime, ForeignKey, Integer, JSON, String, Text, func
from sqlalchemy.orm import validates

from database import Base
from models.enums import EventMode, EventType, ProposalStatus, ReportEventStatus, Section, enum_column_type


class Proposal(Base):
    __tablename__ = "proposals"
    __table_args__ = (
        CheckConstraint(
            "form_completion_percentage >= 0 AND form_completion_percentage <= 100",
            name="ck_proposals_completion_range",
        ),
    )

    id = Column(String(36), primary_key=True, index=True)
    owner_id = Column(String(64), nullable=False, index=True)
    original_descriptive_id = Column(String(128), nullable=True)

    # orgInfo
    organization_name = Column(String(255), nullable=True, index=True)
    organization_types = Column(JSON, nullable=False, default=list)
    organization_description = Column(Text, nullable=True)
    contact_name = Column(String(255), nullable=True)
    contact_email = Column(String(255), nullable=True)
    contact_phone = Column(String(32), nullable=True)

    # schoolEvent / communityEvent (only the branch matching event_type is filled)
    event_type = Column(enum_column_type(EventType, "ck_proposals_event_type"), nullable=False, index=True)
    event_category = Column(String(64), nullable=True)
    event_name = Column(String(255), nullable=True)
    event_venue = Column(String(500), nullable=True)
    event_start_date = Column(Date, nullable=True)
    event_end_date = Column(Date, nullable=True)
    event_start_time = Column(String(5), nullable=True)
    event_end_time = Column(String(5), nullable=True)
    event_mode = Column(enum_column_type(EventMode, "ck_proposals_event_mode"), nullable=True)
    target_audience = Column(JSON, nullable=False, default=list)
    credits = Column(String(32), nullable=True)

    # reporting
    attendance_count = Column(Integer, nullable=True)
    report_event_status = Column(enum_column_type(ReportEventStatus, "ck_proposals_report_event_status"), nullable=True)
    report_description = Column(Text, nullable=True)

    current_section = Column(
        enum_column_type(Section, "ck_proposals_current_section"),
        nullable=False,
        default=Section.OVERVIEW,
        index=True,
    )
    form_completion_percentage = Column(Integer, nullable=False, default=0)
    status = Column(
        enum_column_type(ProposalStatus, "ck_proposals_status"),
        nullable=False,
        default=ProposalStatus.DRAFT,
        index=True,
    )
    # File roles the relational side believes are stored in the document store
    declared_attachments = Column(JSON, nullable=False, default=list)

    admin_comments = Column(Text, nullable=True)
    reviewed_by = Column(String(64), nullable=True)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @validates("current_section")
    def _validate_current_section(self, key, value):
        # Raises ValueError for anything outside the closed set; never coerced
        return Section(value)


class StatusChange(Base):
    __tablename__ = "proposal_status_changes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    proposal_id = Column(String(36), ForeignKey("proposals.id", ondelete="CASCADE"), nullable=False, index=True)
    from_status = Column(enum_column_type(ProposalStatus, "ck_status_changes_from"), nullable=False)
    to_status = Column(enum_column_type(ProposalStatus, "ck_status_changes_to"), nullable=False)
    actor_id = Column(String(64), nullable=False)
    comments = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
