from __future__ import annotations

from dataclasses import dataclass

from config import settings


@dataclass(frozen=True)
class Actor:
    """The user performing a request. Identity comes from the auth layer in front of this service."""

    user_id: str
    role: str = "student"

    @property
    def is_reviewer(self) -> bool:
        return self.role in settings.reviewer_role_set
