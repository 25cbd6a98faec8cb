"""
Practical Training Management System
Training session domain models.

Models:
    - TrainingSession:           one academic term's internship window
    - StudentSessionEnrollment:  a student's cached eligibility within a session

Architecture:
    TrainingSession ──1:N──▶ StudentSessionEnrollment ──1:N──▶ Application

Lifecycle:
    TrainingSession is soft-retired through ``is_active``; it is never hard
    deleted once enrollments exist and becomes read-only after its training
    end date has passed.
"""

import uuid
from datetime import date, datetime, timezone

from ptms.models import db


# ── Constants ────────────────────────────────────────────────────────────────

DEADLINE_KEYS = ("application_deadline", "bli03_deadline", "reporting_deadline")

ENROLLMENT_STATUSES = {"active", "completed", "withdrawn"}


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


class TrainingSession(db.Model):
    """
    Internship window for one academic term.

    Business rules:
    - ``min_credits`` drives the cached eligibility flag of every enrollment.
    - ``min_weeks <= max_weeks``; training dates, when both set, are ordered.
    - Mutated only by its coordinator; immutable once training has ended.
    """

    __tablename__ = "training_sessions"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(200), nullable=False)
    year = db.Column(db.Integer, nullable=False)
    semester = db.Column(db.Integer, nullable=False, comment="1 | 2")

    min_credits = db.Column(db.Integer, nullable=False, default=113)
    min_weeks = db.Column(db.Integer, nullable=False)
    max_weeks = db.Column(db.Integer, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    training_start_date = db.Column(db.Date, nullable=True)
    training_end_date = db.Column(db.Date, nullable=True)
    deadlines = db.Column(db.JSON, nullable=False, default=dict,
                          comment="application_deadline | bli03_deadline | reporting_deadline (ISO dates)")

    coordinator_id = db.Column(
        db.String(36), db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )

    # Coordinator digital signature (payload lives in the file store)
    coordinator_signature_ref = db.Column(db.String(500), nullable=True)
    coordinator_signature_media_type = db.Column(db.String(100), nullable=True)
    coordinator_signed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow,
                           onupdate=_utcnow)

    enrollments = db.relationship(
        "StudentSessionEnrollment", back_populates="session", lazy="dynamic",
    )

    def has_ended(self, today: date | None = None) -> bool:
        """True once the training window is in the past."""
        if self.training_end_date is None:
            return False
        return self.training_end_date < (today or date.today())

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "year": self.year,
            "semester": self.semester,
            "min_credits": self.min_credits,
            "min_weeks": self.min_weeks,
            "max_weeks": self.max_weeks,
            "is_active": self.is_active,
            "training_start_date": self.training_start_date.isoformat() if self.training_start_date else None,
            "training_end_date": self.training_end_date.isoformat() if self.training_end_date else None,
            "deadlines": self.deadlines or {},
            "coordinator_id": self.coordinator_id,
            "coordinator_signature": {
                "ref": self.coordinator_signature_ref,
                "media_type": self.coordinator_signature_media_type,
                "signed_at": self.coordinator_signed_at.isoformat() if self.coordinator_signed_at else None,
            } if self.coordinator_signature_ref else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<TrainingSession {self.name} active={self.is_active}>"


class StudentSessionEnrollment(db.Model):
    """
    Links a student to a session with a snapshot of earned credits.

    ``is_eligible`` is a cached derived value: it is recomputed through the
    eligibility evaluator whenever credits or the session threshold change,
    never joined live.
    """

    __tablename__ = "student_session_enrollments"
    __table_args__ = (
        db.UniqueConstraint("session_id", "user_id", name="uq_enrollment_session_user"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    session_id = db.Column(
        db.String(36), db.ForeignKey("training_sessions.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    credits_earned = db.Column(db.Integer, nullable=True)
    is_eligible = db.Column(db.Boolean, nullable=False, default=False)
    status = db.Column(db.String(20), nullable=False, default="active",
                       comment="active | completed | withdrawn")
    eligibility_computed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    session = db.relationship("TrainingSession", back_populates="enrollments")
    user = db.relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "session_id": self.session_id,
            "user_id": self.user_id,
            "credits_earned": self.credits_earned,
            "is_eligible": self.is_eligible,
            "status": self.status,
            "eligibility_computed_at": (
                self.eligibility_computed_at.isoformat() if self.eligibility_computed_at else None
            ),
        }

    def __repr__(self):
        return f"<Enrollment user={self.user_id} session={self.session_id} eligible={self.is_eligible}>"
