from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from models.enums import NotificationType, Priority, TargetType


class NotificationCreate(BaseModel):
    target_type: TargetType = Field(..., alias="targetType")
    target_user_id: Optional[str] = Field(None, alias="targetUserId")
    target_role: Optional[str] = Field(None, alias="targetRole")
    title: str = Field(..., min_length=1, max_length=255)
    message: str = Field(..., min_length=1)
    notification_type: NotificationType = Field(NotificationType.SYSTEM_ANNOUNCEMENT, alias="notificationType")
    priority: Priority = Priority.NORMAL
    related_proposal_id: Optional[str] = Field(None, alias="relatedProposalId")
    expires_at: Optional[datetime] = Field(None, alias="expiresAt")

    model_config = {"populate_by_name": True}

    @model_validator(mode="after")
    def _target_matches_type(self):
        if self.target_type is TargetType.USER:
            if not self.target_user_id or self.target_role is not None:
                raise ValueError("targetType 'user' requires targetUserId and no targetRole")
        elif self.target_type is TargetType.ROLE:
            if not self.target_role or self.target_user_id is not None:
                raise ValueError("targetType 'role' requires targetRole and no targetUserId")
        elif self.target_user_id is not None or self.target_role is not None:
            raise ValueError("targetType 'all' takes neither targetUserId nor targetRole")
        return self

