"""
Review Protocol.

``plan_review`` decides what a reviewer decision does to a document and its
application without touching storage. ``apply_review`` persists the decision:

    1. gate + role + optimistic-version checks
    2. Review row added and flushed (audit entry first)
    3. document status, then application events; application row always
       rewritten so its version guards the sibling-status read
    4. single commit; post-commit hooks

Decisions:
    APPROVE          → APPROVED, or SIGNED for signature-bearing types that
                       already carry a signature; approving the last
                       outstanding approval-packet type fires UNDER_REVIEW → APPROVED
    REQUEST_CHANGES  → CHANGES_REQUESTED (comments mandatory);
                       UNDER_REVIEW → CHANGES_REQUESTED
    REJECT           → REJECTED, record leaves the active set; application unchanged
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from ptms.core.exceptions import (
    InvalidTransition,
    MissingRequiredComment,
    PermissionDenied,
    ValidationError,
)
from ptms.models import db
from ptms.models.application import (
    REVIEWABLE_DOCUMENT_STATUSES,
    ApplicationEvent,
    ApplicationStatus,
    DocumentStatus,
    DocumentType,
    Review,
    ReviewDecision,
    next_application_status,
)
from ptms.services import document_ledger, enrollment_gate
from ptms.services.application_service import (
    apply_event,
    check_expected_version,
    get_application_or_raise,
)
from ptms.services.document_service import get_document_or_raise, parse_document_type
from ptms.services.helpers.transaction import atomic
from ptms.services.hooks import fire_transition_hooks

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReviewOutcome:
    document_status: DocumentStatus
    deactivate_document: bool
    application_events: tuple = field(default_factory=tuple)
    application_status: ApplicationStatus | None = None


def parse_decision(value) -> ReviewDecision:
    try:
        return ReviewDecision(str(getattr(value, "value", value)).upper())
    except ValueError as exc:
        raise ValidationError(
            f"Unknown review decision: {value}",
            {"field": "decision", "allowed": [d.value for d in ReviewDecision]},
        ) from exc


def _clean_comments(document_id, comments):
    """``None`` or stripped text; anything else is a malformed request."""
    if comments is None:
        return None
    if not isinstance(comments, str):
        raise ValidationError(
            "Comments must be a string",
            {"field": "comments", "document_id": document_id},
        )
    return comments.strip() or None


def plan_review(application, document, decision, comments=None) -> ReviewOutcome:
    """Pure decision function for one review.

    Raises:
        ValidationError: unknown decision or non-string comments.
        MissingRequiredComment: REQUEST_CHANGES without comments.
        InvalidTransition: document not reviewable or application not in review.
    """
    decision = parse_decision(decision)
    comments = _clean_comments(document.id, comments)
    doc_status = DocumentStatus(document.status)
    app_status = ApplicationStatus(application.status)

    if decision == ReviewDecision.REQUEST_CHANGES and not comments:
        raise MissingRequiredComment(document.id, decision.value)
    if not document.is_active or doc_status not in REVIEWABLE_DOCUMENT_STATUSES:
        raise InvalidTransition(
            "Document", document.id, doc_status.value, decision.value,
            "only active SUBMITTED or UNDER_REVIEW documents can be reviewed",
        )

    events = []
    working = app_status
    if working == ApplicationStatus.SUBMITTED:
        events.append(ApplicationEvent.OPEN_REVIEW)
        working = next_application_status(working, ApplicationEvent.OPEN_REVIEW, application.id)
    elif working not in (
        ApplicationStatus.UNDER_REVIEW,
        ApplicationStatus.CHANGES_REQUESTED,
        ApplicationStatus.APPROVED,
    ):
        raise InvalidTransition(
            "Application", application.id, app_status.value, f"review:{decision.value}",
        )

    deactivate = False
    if decision == ReviewDecision.APPROVE:
        if document.requires_signature and document.signed_at is not None:
            new_doc_status = DocumentStatus.SIGNED
        else:
            new_doc_status = DocumentStatus.APPROVED
        if working == ApplicationStatus.UNDER_REVIEW:
            others = [d for d in application.active_documents() if d.id != document.id]
            accepted = document_ledger.signed_types(others) | {DocumentType(document.type)}
            if document_ledger.packet_complete(accepted):
                events.append(ApplicationEvent.APPROVE)
    elif decision == ReviewDecision.REQUEST_CHANGES:
        new_doc_status = DocumentStatus.CHANGES_REQUESTED
        if working == ApplicationStatus.UNDER_REVIEW:
            events.append(ApplicationEvent.REQUEST_CHANGES)
    else:
        new_doc_status = DocumentStatus.REJECTED
        deactivate = True

    status = app_status
    for ev in events:
        status = next_application_status(status, ev, application.id)
    return ReviewOutcome(new_doc_status, deactivate, tuple(events), status)


def _record_review(application, document, reviewer, decision, comments):
    """Append the audit row and apply one decision. Runs inside ``atomic()``.

    Every review writes the application row, so its ``version`` check fails
    when a concurrent review changed a sibling document after this one
    planned against it.
    """
    app_before = ApplicationStatus(application.status)
    doc_before = DocumentStatus(document.status)
    outcome = plan_review(application, document, decision, comments)
    decision = parse_decision(decision)

    review = Review(
        application_id=application.id,
        document_id=document.id,
        reviewer_id=reviewer.user_id,
        reviewer_role=reviewer.role.value,
        decision=decision,
        comments=_clean_comments(document.id, comments),
        document_status_before=doc_before.value,
        document_status_after=outcome.document_status.value,
        application_status_before=app_before.value,
        application_status_after=outcome.application_status.value,
    )
    db.session.add(review)
    db.session.flush()

    document.status = outcome.document_status
    if outcome.deactivate_document:
        document.is_active = False
    for ev in outcome.application_events:
        apply_event(application, ev, actor_id=reviewer.user_id)
    application.updated_at = datetime.now(timezone.utc)
    return review, document, app_before


def _result(review, document, app_before) -> dict:
    logger.info(
        "Review %s on document %s: %s → %s (application %s → %s)",
        review.decision.value, document.id, review.document_status_before,
        review.document_status_after, review.application_status_before,
        review.application_status_after,
        extra={"application_id": review.application_id, "document_id": document.id,
               "user_id": review.reviewer_id, "event_type": "review_applied"},
    )
    return {
        "review": review.to_dict(),
        "document": document.to_dict(),
        "document_status": review.document_status_after,
        "application_status": review.application_status_after,
        "previous_application_status": app_before.value,
    }


def apply_review(
    document_id: str,
    reviewer,
    decision,
    comments: str | None = None,
    expected_version=None,
) -> dict:
    """Record a reviewer decision on a document and apply its consequences.

    Returns:
        {"review": {...}, "document_status": str, "application_status": str,
         "previous_application_status": str, "document": {...}}
    """
    if not reviewer.is_reviewer:
        raise PermissionDenied(reviewer.user_id, "apply_review", "reviewers only")
    document = get_document_or_raise(document_id)
    application = document.application
    enrollment_gate.check_application(application, "apply_review")
    check_expected_version("Document", document, expected_version)

    application_id = application.id
    owner_id = application.user_id
    with atomic("Application", application_id):
        review, document, app_before = _record_review(
            application, document, reviewer, decision, comments,
        )

    result = _result(review, document, app_before)
    fire_transition_hooks(application_id, app_before,
                          ApplicationStatus(result["application_status"]), user_id=owner_id)
    return result


def _resolve_batch_document(application, item):
    if not isinstance(item, dict):
        raise ValidationError("Each decision must be an object", {"field": "decisions"})
    if item.get("document_id") is not None:
        document = get_document_or_raise(item["document_id"])
        if document.application_id != application.id:
            raise ValidationError(
                f"Document {document.id} does not belong to application {application.id}",
                {"field": "decisions", "document_id": document.id},
            )
        return document
    if item.get("type"):
        document = application.active_document(parse_document_type(item["type"]))
        if document is not None:
            return document
    raise ValidationError("Each decision needs document_id or an active type",
                          {"field": "decisions"})


def review_application(application_id: str, reviewer, decisions: list[dict]) -> list[dict]:
    """Apply several document decisions in order as one unit of work.

    Every decision is validated against the current state before anything is
    written; the batch then commits together or not at all, and hooks fire
    once for the net application transition.
    """
    if not reviewer.is_reviewer:
        raise PermissionDenied(reviewer.user_id, "review_application", "reviewers only")
    if not decisions:
        raise ValidationError("At least one decision is required", {"field": "decisions"})
    application = get_application_or_raise(application_id)
    enrollment_gate.check_application(application, "review_application")

    planned = []
    for item in decisions:
        document = _resolve_batch_document(application, item)
        check_expected_version("Document", document, item.get("expected_version"))
        plan_review(application, document, item.get("decision"), item.get("comments"))
        planned.append((document, item))

    owner_id = application.user_id
    app_before = ApplicationStatus(application.status)
    recorded = []
    with atomic("Application", application_id):
        for document, item in planned:
            recorded.append(_record_review(
                application, document, reviewer, item.get("decision"), item.get("comments"),
            ))

    results = [_result(*entry) for entry in recorded]
    fire_transition_hooks(application_id, app_before,
                          ApplicationStatus(results[-1]["application_status"]), user_id=owner_id)
    return results
