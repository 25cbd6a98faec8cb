"""
Document Ledger: read-side projections over an application's documents.

Pure functions: every input is a status plus an iterable of Document-like
objects exposing ``type``, ``status`` and ``is_active``. Nothing here touches
the session; writes happen in ``document_service`` and ``review_protocol``.

Progress formula:
    DRAFT / terminal                      → 0
    SUBMITTED / UNDER_REVIEW /
    CHANGES_REQUESTED                     → round(|submitted| / 7 * 100)
    APPROVED, BLI_04 not SIGNED (Ongoing) → round(|submitted| / 7 * 100)
    APPROVED, BLI_04 SIGNED (Completed)   → round(|signed| / 7 * 100)

"signed" counts types whose active record is APPROVED or SIGNED.
"""

import math

from ptms.models.application import (
    ACCEPTED_DOCUMENT_STATUSES,
    APPROVAL_PACKET,
    COMPLETION_DOCUMENT,
    DOCUMENT_CATALOG,
    REQUIRED_DOCUMENT_COUNT,
    TERMINAL_STATUSES,
    ApplicationStatus,
    DocumentStatus,
    DocumentType,
)

LABEL_NOT_STARTED = "Not Started"
LABEL_SUBMITTED = "Application Submitted"
LABEL_ONGOING = "Ongoing"
LABEL_COMPLETED = "Completed"

_IN_REVIEW_STATUSES = frozenset({
    ApplicationStatus.SUBMITTED,
    ApplicationStatus.UNDER_REVIEW,
    ApplicationStatus.CHANGES_REQUESTED,
})


def _active(documents):
    return [d for d in documents if d.is_active]


def submitted_types(documents) -> frozenset:
    """Distinct types with an active record past PENDING_UPLOAD."""
    return frozenset(
        DocumentType(d.type) for d in _active(documents)
        if DocumentStatus(d.status) != DocumentStatus.PENDING_UPLOAD
    )


def signed_types(documents) -> frozenset:
    """Subset of ``submitted_types`` whose active record is APPROVED or SIGNED."""
    return frozenset(
        DocumentType(d.type) for d in _active(documents)
        if DocumentStatus(d.status) in ACCEPTED_DOCUMENT_STATUSES
    )


def completion_signed(documents) -> bool:
    """True once the active completion document (BLI_04) carries SIGNED."""
    return any(
        DocumentType(d.type) == COMPLETION_DOCUMENT
        and DocumentStatus(d.status) == DocumentStatus.SIGNED
        for d in _active(documents)
    )


def packet_complete(accepted) -> bool:
    return all(t in accepted for t in APPROVAL_PACKET)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _percent(count: int) -> int:
    return min(100, round_half_up(count / REQUIRED_DOCUMENT_COUNT * 100))


def progress_label(status, documents) -> str:
    """Derived display status; "Ongoing" and "Completed" are never stored."""
    status = ApplicationStatus(status)
    if status == ApplicationStatus.DRAFT or status in TERMINAL_STATUSES:
        return LABEL_NOT_STARTED
    if status in _IN_REVIEW_STATUSES:
        return LABEL_SUBMITTED
    if completion_signed(documents):
        return LABEL_COMPLETED
    return LABEL_ONGOING


def progress_percent(status, documents) -> int:
    """Integer 0..100 progress for an application in ``status``."""
    label = progress_label(status, documents)
    if label == LABEL_NOT_STARTED:
        return 0
    if label == LABEL_COMPLETED:
        return _percent(len(signed_types(documents)))
    return _percent(len(submitted_types(documents)))


def ledger_entries(documents) -> list[dict]:
    """One row per catalogue type, showing the active record or PENDING_UPLOAD."""
    by_type = {DocumentType(d.type): d for d in _active(documents)}
    revisions = {}
    for d in documents:
        t = DocumentType(d.type)
        revisions[t] = revisions.get(t, 0) + 1

    rows = []
    for doc_type, meta in DOCUMENT_CATALOG.items():
        doc = by_type.get(doc_type)
        rows.append({
            "type": doc_type.value,
            "title": meta["title"],
            "requires_signature": meta["requires_signature"],
            "status": DocumentStatus(doc.status).value if doc else DocumentStatus.PENDING_UPLOAD.value,
            "document_id": doc.id if doc else None,
            "revision": doc.revision if doc else 0,
            "history_count": revisions.get(doc_type, 0),
        })
    return rows


def summarize(application) -> dict:
    """Progress report for one application."""
    documents = list(application.documents)
    return {
        "application_id": application.id,
        "status": ApplicationStatus(application.status).value,
        "label": progress_label(application.status, documents),
        "progress": progress_percent(application.status, documents),
        "submitted_types": sorted(t.value for t in submitted_types(documents)),
        "signed_types": sorted(t.value for t in signed_types(documents)),
        "required_count": REQUIRED_DOCUMENT_COUNT,
        "documents": ledger_entries(documents),
    }
