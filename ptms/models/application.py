"""
Practical Training Management System
Application & document workflow models.

Models:
    - Company:      host organisation of an internship placement
    - Application:  a student's internship-approval workflow for one session
    - Document:     one submitted BLI form; superseded, never deleted
    - Review:       immutable reviewer decision on one document

Architecture:
    StudentSessionEnrollment ──1:N──▶ Application ──1:N──▶ Document
                                      Application ──1:N──▶ Review ──N:1──▶ Document

Lifecycle states:
    Application:  DRAFT → SUBMITTED → UNDER_REVIEW ⇄ CHANGES_REQUESTED → APPROVED
                  any non-terminal → REJECTED | OFFER_REJECTED (terminal)
    Document:     PENDING_UPLOAD → SUBMITTED → UNDER_REVIEW
                  → CHANGES_REQUESTED | APPROVED → SIGNED | REJECTED

"Ongoing" and "Completed" are derived from APPROVED plus the document set
(see ``ptms.services.document_ledger``); they are never stored.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import event

from ptms.core.exceptions import InvalidTransition
from ptms.models import db


# ═════════════════════════════════════════════════════════════════════════════
# Enums
# ═════════════════════════════════════════════════════════════════════════════

class ApplicationStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    UNDER_REVIEW = "UNDER_REVIEW"
    CHANGES_REQUESTED = "CHANGES_REQUESTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    OFFER_REJECTED = "OFFER_REJECTED"


class ApplicationEvent(str, Enum):
    SUBMIT = "submit"
    OPEN_REVIEW = "open_review"
    REQUEST_CHANGES = "request_changes"
    RESUBMIT = "resubmit"
    APPROVE = "approve"
    REJECT = "reject"
    REJECT_OFFER = "reject_offer"


class DocumentType(str, Enum):
    BLI_01 = "BLI_01"
    BLI_02 = "BLI_02"
    BLI_03 = "BLI_03"
    BLI_04 = "BLI_04"
    BLI_05 = "BLI_05"
    BLI_06 = "BLI_06"
    BLI_07 = "BLI_07"


class DocumentStatus(str, Enum):
    PENDING_UPLOAD = "PENDING_UPLOAD"
    SUBMITTED = "SUBMITTED"
    UNDER_REVIEW = "UNDER_REVIEW"
    CHANGES_REQUESTED = "CHANGES_REQUESTED"
    APPROVED = "APPROVED"
    SIGNED = "SIGNED"
    REJECTED = "REJECTED"


class ReviewDecision(str, Enum):
    APPROVE = "APPROVE"
    REQUEST_CHANGES = "REQUEST_CHANGES"
    REJECT = "REJECT"


class SignerRole(str, Enum):
    STUDENT = "STUDENT"
    SUPERVISOR = "SUPERVISOR"
    COORDINATOR = "COORDINATOR"


# ═════════════════════════════════════════════════════════════════════════════
# Constants
# ═════════════════════════════════════════════════════════════════════════════

TERMINAL_STATUSES = frozenset({ApplicationStatus.REJECTED, ApplicationStatus.OFFER_REJECTED})

DOCUMENT_CATALOG = {
    DocumentType.BLI_01: {"title": "Application Form", "requires_signature": False},
    DocumentType.BLI_02: {"title": "Offer Letter", "requires_signature": False},
    DocumentType.BLI_03: {"title": "Training Agreement", "requires_signature": True},
    DocumentType.BLI_04: {"title": "Completion Report", "requires_signature": True},
    DocumentType.BLI_05: {"title": "Training Logbook", "requires_signature": False},
    DocumentType.BLI_06: {"title": "Supervisor Evaluation", "requires_signature": True},
    DocumentType.BLI_07: {"title": "Final Training Report", "requires_signature": False},
}

REQUIRED_DOCUMENT_COUNT = len(DOCUMENT_CATALOG)

SIGNATURE_DOCUMENT_TYPES = frozenset(
    t for t, meta in DOCUMENT_CATALOG.items() if meta["requires_signature"]
)

# Forms that must all be accepted before the application is approved;
# BLI_04..BLI_07 are lodged while the internship is underway.
APPROVAL_PACKET = (DocumentType.BLI_01, DocumentType.BLI_02, DocumentType.BLI_03)

COMPLETION_DOCUMENT = DocumentType.BLI_04

ACCEPTED_DOCUMENT_STATUSES = frozenset({DocumentStatus.APPROVED, DocumentStatus.SIGNED})

REVIEWABLE_DOCUMENT_STATUSES = frozenset({DocumentStatus.SUBMITTED, DocumentStatus.UNDER_REVIEW})


# ── Lifecycle Transition Table ───────────────────────────────────────────────

_S = ApplicationStatus
_E = ApplicationEvent

APPLICATION_TRANSITIONS = {
    _S.DRAFT: {
        _E.SUBMIT: _S.SUBMITTED,
        _E.REJECT: _S.REJECTED,
        _E.REJECT_OFFER: _S.OFFER_REJECTED,
    },
    _S.SUBMITTED: {
        _E.OPEN_REVIEW: _S.UNDER_REVIEW,
        _E.REJECT: _S.REJECTED,
        _E.REJECT_OFFER: _S.OFFER_REJECTED,
    },
    _S.UNDER_REVIEW: {
        _E.REQUEST_CHANGES: _S.CHANGES_REQUESTED,
        _E.APPROVE: _S.APPROVED,
        _E.REJECT: _S.REJECTED,
        _E.REJECT_OFFER: _S.OFFER_REJECTED,
    },
    _S.CHANGES_REQUESTED: {
        _E.RESUBMIT: _S.UNDER_REVIEW,
        _E.REJECT: _S.REJECTED,
        _E.REJECT_OFFER: _S.OFFER_REJECTED,
    },
    _S.APPROVED: {
        _E.REJECT: _S.REJECTED,
        _E.REJECT_OFFER: _S.OFFER_REJECTED,
    },
    _S.REJECTED: {},
    _S.OFFER_REJECTED: {},
}


def next_application_status(current, event, application_id=None) -> ApplicationStatus:
    """Return the status ``event`` leads to from ``current``.

    Raises:
        InvalidTransition: the (status, event) pair is not in the table.
    """
    current = ApplicationStatus(current)
    event = ApplicationEvent(event)
    target = APPLICATION_TRANSITIONS[current].get(event)
    if target is None:
        raise InvalidTransition("Application", application_id, current.value, event.value)
    return target


def available_events(current) -> list[str]:
    """Events legal from ``current``, in table order."""
    return [e.value for e in APPLICATION_TRANSITIONS[ApplicationStatus(current)]]


# ── Helpers ──────────────────────────────────────────────────────────────────

def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


def _val(member):
    return getattr(member, "value", member)


# ═════════════════════════════════════════════════════════════════════════════
# Company
# ═════════════════════════════════════════════════════════════════════════════

class Company(db.Model):
    """Host organisation; matched on (name, address) when placements are set."""

    __tablename__ = "companies"
    __table_args__ = (
        db.Index("ix_companies_name_address", "name", "address"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(255), nullable=False)
    address = db.Column(db.Text, nullable=False)
    contact_name = db.Column(db.String(255), nullable=True)
    contact_email = db.Column(db.String(255), nullable=True)
    contact_phone = db.Column(db.String(50), nullable=True)
    fax = db.Column(db.String(50), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "contact_name": self.contact_name,
            "contact_email": self.contact_email,
            "contact_phone": self.contact_phone,
            "fax": self.fax,
        }


# ═════════════════════════════════════════════════════════════════════════════
# Application
# ═════════════════════════════════════════════════════════════════════════════

class Application(db.Model):
    """
    Internship-approval workflow instance; the transactional aggregate root.

    Business rules:
    - At most one non-terminal application per enrollment.
    - ``status`` changes only through ``APPLICATION_TRANSITIONS``.
    - ``version`` is an optimistic-concurrency counter bumped on every UPDATE.
    """

    __tablename__ = "applications"
    __table_args__ = (
        db.Index("ix_applications_enrollment_status", "enrollment_id", "status"),
        db.Index(
            "uq_applications_open_enrollment", "enrollment_id",
            unique=True,
            sqlite_where=db.text("status NOT IN ('REJECTED', 'OFFER_REJECTED')"),
            postgresql_where=db.text("status NOT IN ('REJECTED', 'OFFER_REJECTED')"),
        ),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    enrollment_id = db.Column(
        db.String(36), db.ForeignKey("student_session_enrollments.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    session_id = db.Column(
        db.String(36), db.ForeignKey("training_sessions.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    status = db.Column(
        db.Enum(ApplicationStatus, native_enum=False, length=30),
        nullable=False, default=ApplicationStatus.DRAFT,
    )

    company_id = db.Column(
        db.String(36), db.ForeignKey("companies.id", ondelete="SET NULL"), nullable=True,
    )
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)

    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_by = db.Column(db.String(36), nullable=True)
    closed_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow,
                           onupdate=_utcnow)
    version = db.Column(db.Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    enrollment = db.relationship("StudentSessionEnrollment")
    session = db.relationship("TrainingSession")
    company = db.relationship("Company")
    documents = db.relationship(
        "Document", back_populates="application",
        order_by="Document.created_at", cascade="all, delete-orphan",
    )
    reviews = db.relationship(
        "Review", back_populates="application",
        order_by="Review.decided_at", cascade="all, delete-orphan",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def active_documents(self) -> list["Document"]:
        return [d for d in self.documents if d.is_active]

    def active_document(self, doc_type) -> "Document | None":
        doc_type = DocumentType(doc_type)
        for doc in self.documents:
            if doc.is_active and doc.type == doc_type:
                return doc
        return None

    def to_dict(self, include_documents=False):
        d = {
            "id": self.id,
            "enrollment_id": self.enrollment_id,
            "session_id": self.session_id,
            "user_id": self.user_id,
            "status": _val(self.status),
            "company": self.company.to_dict() if self.company else None,
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "submitted_at": _iso(self.submitted_at),
            "approved_at": _iso(self.approved_at),
            "closed_at": _iso(self.closed_at),
            "closed_reason": self.closed_reason,
            "version": self.version,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_documents:
            d["documents"] = [doc.to_dict() for doc in self.documents]
        return d

    def __repr__(self):
        return f"<Application {self.id} {_val(self.status)}>"


# ═════════════════════════════════════════════════════════════════════════════
# Document
# ═════════════════════════════════════════════════════════════════════════════

class Document(db.Model):
    """
    One submitted form within an application.

    Resubmission creates a new row and marks the previous active row of the
    same type superseded (``is_active=False``, ``superseded_by_id`` set) in the
    same transaction. A partial unique index backs the "one active record per
    (application, type)" rule at the storage layer.
    """

    __tablename__ = "documents"
    __table_args__ = (
        db.Index(
            "uq_documents_active_type", "application_id", "type",
            unique=True,
            sqlite_where=db.text("is_active = 1"),
            postgresql_where=db.text("is_active"),
        ),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    application_id = db.Column(
        db.String(36), db.ForeignKey("applications.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    type = db.Column(db.Enum(DocumentType, native_enum=False, length=10), nullable=False)
    status = db.Column(
        db.Enum(DocumentStatus, native_enum=False, length=30),
        nullable=False, default=DocumentStatus.SUBMITTED,
    )
    revision = db.Column(db.Integer, nullable=False, default=1,
                         comment="1 for the first upload of a type, +1 per resubmission")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    superseded_by_id = db.Column(db.String(36), nullable=True)
    superseded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Stored content is owned by the file store; only the reference lives here
    content_ref = db.Column(db.String(500), nullable=True)
    media_type = db.Column(db.String(100), nullable=True)
    original_filename = db.Column(db.String(255), nullable=True)
    submitted_by = db.Column(db.String(36), nullable=True)

    # Signature metadata
    signer_role = db.Column(db.Enum(SignerRole, native_enum=False, length=20), nullable=True)
    signer_id = db.Column(db.String(36), nullable=True)
    signature_ref = db.Column(db.String(500), nullable=True)
    signed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow,
                           onupdate=_utcnow)
    version = db.Column(db.Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    application = db.relationship("Application", back_populates="documents")

    @property
    def requires_signature(self) -> bool:
        return self.type in SIGNATURE_DOCUMENT_TYPES

    def to_dict(self):
        return {
            "id": self.id,
            "application_id": self.application_id,
            "type": _val(self.type),
            "title": DOCUMENT_CATALOG[DocumentType(self.type)]["title"],
            "status": _val(self.status),
            "revision": self.revision,
            "is_active": self.is_active,
            "superseded_by_id": self.superseded_by_id,
            "content_ref": self.content_ref,
            "media_type": self.media_type,
            "original_filename": self.original_filename,
            "signature": {
                "signer_role": _val(self.signer_role),
                "signer_id": self.signer_id,
                "signed_at": _iso(self.signed_at),
            } if self.signed_at else None,
            "version": self.version,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Document {_val(self.type)} r{self.revision} {_val(self.status)}>"


# ═════════════════════════════════════════════════════════════════════════════
# Review
# ═════════════════════════════════════════════════════════════════════════════

class Review(db.Model):
    """
    Immutable reviewer decision on one document.

    Business rules:
    - Rows are NEVER updated or deleted; the ordered list per document is the
      audit trail.
    - Status snapshots record what the decision did to the document and the
      application, so the trail is readable without replaying it.
    """

    __tablename__ = "reviews"
    __table_args__ = (
        db.Index("ix_reviews_document_decided", "document_id", "decided_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    application_id = db.Column(
        db.String(36), db.ForeignKey("applications.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    document_id = db.Column(
        db.String(36), db.ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
    )
    reviewer_id = db.Column(db.String(36), nullable=False)
    reviewer_role = db.Column(db.String(20), nullable=True)
    decision = db.Column(db.Enum(ReviewDecision, native_enum=False, length=20), nullable=False)
    comments = db.Column(db.Text, nullable=True)

    document_status_before = db.Column(db.String(30), nullable=False)
    document_status_after = db.Column(db.String(30), nullable=False)
    application_status_before = db.Column(db.String(30), nullable=False)
    application_status_after = db.Column(db.String(30), nullable=False)

    decided_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    application = db.relationship("Application", back_populates="reviews")
    document = db.relationship("Document")

    def to_dict(self):
        return {
            "id": self.id,
            "application_id": self.application_id,
            "document_id": self.document_id,
            "reviewer_id": self.reviewer_id,
            "reviewer_role": self.reviewer_role,
            "decision": _val(self.decision),
            "comments": self.comments,
            "document_status_before": self.document_status_before,
            "document_status_after": self.document_status_after,
            "application_status_before": self.application_status_before,
            "application_status_after": self.application_status_after,
            "decided_at": _iso(self.decided_at),
        }


@event.listens_for(Review, "before_update")
def _refuse_review_update(mapper, connection, target):
    raise ValueError(f"Review {target.id} is immutable")
