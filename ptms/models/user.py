"""
Practical Training Management System
User domain model.

Identity (credentials, tokens) is owned by an external provider; this table
only keeps the profile fields the workflow core needs: the role used for
authorization decisions and the matric number used to match enrollment
imports.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum

from ptms.models import db


class UserRole(str, Enum):
    STUDENT = "STUDENT"
    SUPERVISOR = "SUPERVISOR"
    COORDINATOR = "COORDINATOR"
    ADMIN = "ADMIN"


# Roles allowed to record review decisions on documents
REVIEWER_ROLES = frozenset({UserRole.SUPERVISOR, UserRole.COORDINATOR})

# Roles allowed to administer sessions, enrollments and overrides
ADMIN_ROLES = frozenset({UserRole.COORDINATOR, UserRole.ADMIN})


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


class User(db.Model):
    """Student, supervisor, coordinator or administrator profile."""

    __tablename__ = "users"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    email = db.Column(db.String(255), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    role = db.Column(db.Enum(UserRole, native_enum=False, length=20), nullable=False,
                     default=UserRole.STUDENT)
    matric_no = db.Column(db.String(30), nullable=True, unique=True,
                          comment="Student matriculation number; NULL for staff")
    program = db.Column(db.String(120), nullable=True)
    credits_earned = db.Column(db.Integer, nullable=True,
                               comment="Latest known credit total; NULL means unknown")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role.value if self.role else None,
            "matric_no": self.matric_no,
            "program": self.program,
            "credits_earned": self.credits_earned,
        }

    def __repr__(self):
        return f"<User {self.email} ({self.role})>"
