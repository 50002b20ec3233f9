from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, String, Text, func

from database import Base
from models.enums import NotificationType, Priority, TargetType, enum_column_type


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        CheckConstraint(
            "(target_type = 'user' AND target_user_id IS NOT NULL AND target_role IS NULL)"
            " OR (target_type = 'role' AND target_role IS NOT NULL AND target_user_id IS NULL)"
            " OR (target_type = 'all' AND target_user_id IS NULL AND target_role IS NULL)",
            name="ck_notifications_target",
        ),
    )

    id = Column(String(64), primary_key=True, index=True)
    target_type = Column(enum_column_type(TargetType, "ck_notifications_target_type"), nullable=False)
    target_user_id = Column(String(64), nullable=True, index=True)
    target_role = Column(String(64), nullable=True, index=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    notification_type = Column(enum_column_type(NotificationType, "ck_notifications_type"), nullable=False, index=True)
    priority = Column(enum_column_type(Priority, "ck_notifications_priority"), nullable=False, default=Priority.NORMAL)
    # No FK: notifications outlive deleted proposals
    related_proposal_id = Column(String(36), nullable=True, index=True)
    is_read = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime(timezone=True), nullable=True)
    is_hidden = Column(Boolean, nullable=False, default=False)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
