"""
Acting principal as supplied by the identity collaborator.

The workflow core trusts these values; credential verification happens
before a request reaches it (see ``ptms.middleware.identity``).
"""

from __future__ import annotations

from dataclasses import dataclass

from ptms.models.user import ADMIN_ROLES, REVIEWER_ROLES, UserRole


@dataclass(frozen=True)
class Actor:
    user_id: str
    role: UserRole

    @classmethod
    def of(cls, user_id: str, role: str | UserRole) -> "Actor":
        return cls(user_id=str(user_id), role=UserRole(str(getattr(role, "value", role)).upper()))

    @property
    def is_student(self) -> bool:
        return self.role == UserRole.STUDENT

    @property
    def is_reviewer(self) -> bool:
        return self.role in REVIEWER_ROLES

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES
