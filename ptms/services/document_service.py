"""
Document uploads, resubmissions and signature capture.

Each upload appends a new Document row. The previous active row of the same
type is superseded inside the same transaction, and the superseding flush
happens before the new row is inserted so the partial unique index on
``(application_id, type) WHERE is_active`` never sees two active rows.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from ptms.core.exceptions import (
    DuplicateActiveDocument,
    InvalidTransition,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from ptms.models import db
from ptms.models.application import (
    Application,
    ApplicationEvent,
    ApplicationStatus,
    Document,
    DocumentStatus,
    DocumentType,
    SignerRole,
)
from ptms.models.user import UserRole
from ptms.services import enrollment_gate
from ptms.services.application_service import (
    apply_event,
    check_expected_version,
    get_application_or_raise,
    get_readable_application,
)
from ptms.services.file_store import validate_upload
from ptms.services.helpers.transaction import atomic
from ptms.services.hooks import fire_transition_hooks

logger = logging.getLogger(__name__)

_SIGNER_FOR_ROLE = {
    UserRole.STUDENT: SignerRole.STUDENT,
    UserRole.SUPERVISOR: SignerRole.SUPERVISOR,
    UserRole.COORDINATOR: SignerRole.COORDINATOR,
}

# Signatures that complete a document's countersignature
_COUNTERSIGNERS = frozenset({SignerRole.SUPERVISOR, SignerRole.COORDINATOR})


def parse_document_type(value) -> DocumentType:
    try:
        return DocumentType(str(getattr(value, "value", value)).upper())
    except ValueError as exc:
        raise ValidationError(
            f"Unknown document type: {value}",
            {"field": "type", "allowed": [t.value for t in DocumentType]},
        ) from exc


def get_document_or_raise(document_id: str) -> Document:
    document = db.session.get(Document, document_id)
    if document is None:
        raise NotFoundError("Document", document_id)
    return document


def _next_revision(application: Application, doc_type: DocumentType) -> int:
    revisions = [d.revision for d in application.documents if d.type == doc_type]
    return max(revisions, default=0) + 1


def upload_document(
    application_id: str,
    actor,
    doc_type,
    payload: bytes,
    *,
    filename: str | None,
    media_type: str | None,
    file_store,
) -> dict:
    """Upload (or resubmit) the document of ``doc_type`` for an application.

    Returns:
        {"document": {...}, "superseded_document_id": str|None,
         "application_status": str, "previous_application_status": str}
    """
    doc_type = parse_document_type(doc_type)
    application = get_application_or_raise(application_id)
    enrollment_gate.authorize_actor(actor, application, "upload_document")
    if application.is_terminal:
        raise InvalidTransition(
            "Application", application_id, application.status.value, "upload_document",
        )
    validate_upload(payload, media_type)

    # Stored before the transaction; only the reference is persisted below
    content_ref = file_store.save(payload, filename, media_type)

    try:
        with atomic("Application", application_id):
            previous_status = ApplicationStatus(application.status)
            current_status = previous_status
            prior = application.active_document(doc_type)
            prior_status = DocumentStatus(prior.status) if prior else None
            now = datetime.now(timezone.utc)

            if prior is not None:
                prior.is_active = False
                prior.superseded_at = now
                db.session.flush()

            document = Document(
                application=application,
                type=doc_type,
                status=DocumentStatus.SUBMITTED,
                revision=_next_revision(application, doc_type),
                is_active=True,
                content_ref=content_ref,
                media_type=media_type,
                original_filename=filename,
                submitted_by=actor.user_id,
            )
            db.session.add(document)
            db.session.flush()
            if prior is not None:
                prior.superseded_by_id = document.id

            if (
                previous_status == ApplicationStatus.CHANGES_REQUESTED
                and prior_status == DocumentStatus.CHANGES_REQUESTED
                and not any(
                    d.status == DocumentStatus.CHANGES_REQUESTED
                    for d in application.active_documents()
                )
            ):
                _, current_status = apply_event(
                    application, ApplicationEvent.RESUBMIT, actor_id=actor.user_id,
                )
    except IntegrityError as exc:
        raise DuplicateActiveDocument(application_id, doc_type.value) from exc

    logger.info(
        "Document %s %s r%d uploaded", doc_type.value, document.id, document.revision,
        extra={"application_id": application_id, "document_id": document.id,
               "user_id": actor.user_id, "event_type": "document_uploaded"},
    )
    fire_transition_hooks(application_id, previous_status, current_status,
                          user_id=application.user_id)
    return {
        "document": document.to_dict(),
        "superseded_document_id": prior.id if prior is not None else None,
        "application_status": current_status.value,
        "previous_application_status": previous_status.value,
    }


def sign_document(
    document_id: str,
    actor,
    payload: bytes,
    *,
    media_type: str | None,
    file_store,
    expected_version=None,
) -> dict:
    """Attach the actor's signature to an active document.

    A supervisor or coordinator signature on an APPROVED document of a
    signature-bearing type moves it to SIGNED.
    """
    document = get_document_or_raise(document_id)
    application = document.application
    signer_role = _SIGNER_FOR_ROLE.get(actor.role)
    if signer_role is None:
        raise PermissionDenied(actor.user_id, "sign_document", "role cannot sign documents")
    enrollment_gate.authorize_actor(actor, application, "sign_document")
    check_expected_version("Document", document, expected_version)

    status = DocumentStatus(document.status)
    if not document.is_active or status in (DocumentStatus.SIGNED, DocumentStatus.REJECTED):
        raise InvalidTransition(
            "Document", document_id, status.value, "sign",
            "document is superseded" if not document.is_active else None,
        )
    if application.is_terminal:
        raise InvalidTransition("Application", application.id, application.status.value, "sign")
    validate_upload(payload, media_type)

    signature_ref = file_store.save(payload, f"{document.type.value}_signature", media_type,
                                    namespace="signatures")

    with atomic("Document", document_id):
        document.signer_role = signer_role
        document.signer_id = actor.user_id
        document.signature_ref = signature_ref
        document.signed_at = datetime.now(timezone.utc)
        if (
            status == DocumentStatus.APPROVED
            and document.requires_signature
            and signer_role in _COUNTERSIGNERS
        ):
            document.status = DocumentStatus.SIGNED

    logger.info(
        "Document %s signed by %s", document_id, signer_role.value,
        extra={"document_id": document_id, "application_id": application.id,
               "user_id": actor.user_id, "event_type": "document_signed"},
    )
    return document.to_dict()


def list_document_history(application_id: str, actor, doc_type) -> list[dict]:
    """Every revision of one type, newest first (superseded records included)."""
    doc_type = parse_document_type(doc_type)
    get_readable_application(application_id, actor, "list_document_history")
    docs = (
        Document.query
        .filter_by(application_id=application_id, type=doc_type)
        .order_by(Document.revision.desc())
        .all()
    )
    return [d.to_dict() for d in docs]
