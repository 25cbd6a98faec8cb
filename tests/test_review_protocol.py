"""
Tests for the Review Protocol: decision effects on documents and
applications, comment requirement, approval-packet completion and the
immutable review audit trail.
"""

import pytest

from conftest import actor_for
from ptms.core.exceptions import (
    InvalidTransition,
    MissingRequiredComment,
    PermissionDenied,
    SessionInactive,
    ValidationError,
)
from ptms.models import db
from ptms.models.application import (
    Application,
    ApplicationEvent,
    ApplicationStatus,
    Document,
    DocumentStatus,
    Review,
)
from ptms.models.notification import Notification
from ptms.services.review_protocol import (
    apply_review,
    parse_decision,
    plan_review,
    review_application,
)

S = ApplicationStatus
D = DocumentStatus


@pytest.fixture()
def in_review(student_setup, make_application, make_document):
    """UNDER_REVIEW application with BLI_01/02 approved and BLI_03 awaiting review."""
    app_ = make_application(student_setup["enrollment"], status=S.UNDER_REVIEW)
    make_document(app_, "BLI_01", status=D.APPROVED)
    make_document(app_, "BLI_02", status=D.APPROVED)
    bli03 = make_document(app_, "BLI_03", status=D.UNDER_REVIEW)
    return {**student_setup, "application": app_, "bli03": bli03}


# ═════════════════════════════════════════════════════════════════════════════
# plan_review (no storage writes)
# ═════════════════════════════════════════════════════════════════════════════


class TestPlanReview:
    def test_last_packet_form_approves_application(self, in_review):
        outcome = plan_review(in_review["application"], in_review["bli03"], "APPROVE")
        assert outcome.document_status == D.APPROVED
        assert outcome.application_events == (ApplicationEvent.APPROVE,)
        assert outcome.application_status == S.APPROVED
        assert not outcome.deactivate_document

    def test_signed_signature_form_becomes_signed(self, student_setup, make_application, make_document):
        app_ = make_application(student_setup["enrollment"], status=S.UNDER_REVIEW)
        doc = make_document(app_, "BLI_03", status=D.UNDER_REVIEW, signed=True)
        outcome = plan_review(app_, doc, "approve")
        assert outcome.document_status == D.SIGNED
        assert outcome.application_status == S.UNDER_REVIEW

    def test_signature_ignored_for_plain_form(self, student_setup, make_application, make_document):
        app_ = make_application(student_setup["enrollment"], status=S.UNDER_REVIEW)
        doc = make_document(app_, "BLI_01", status=D.UNDER_REVIEW, signed=True)
        assert plan_review(app_, doc, "APPROVE").document_status == D.APPROVED

    def test_incomplete_packet_keeps_application_in_review(self, student_setup, make_application, make_document):
        app_ = make_application(student_setup["enrollment"], status=S.UNDER_REVIEW)
        doc = make_document(app_, "BLI_01", status=D.UNDER_REVIEW)
        outcome = plan_review(app_, doc, "APPROVE")
        assert outcome.application_events == ()
        assert outcome.application_status == S.UNDER_REVIEW

    @pytest.mark.parametrize("comments", [None, "", "   "])
    def test_request_changes_requires_comments(self, in_review, comments):
        with pytest.raises(MissingRequiredComment):
            plan_review(in_review["application"], in_review["bli03"], "REQUEST_CHANGES", comments)

    def test_request_changes_moves_application(self, in_review):
        outcome = plan_review(in_review["application"], in_review["bli03"], "REQUEST_CHANGES", "Sign page 2")
        assert outcome.document_status == D.CHANGES_REQUESTED
        assert outcome.application_status == S.CHANGES_REQUESTED

    def test_reject_leaves_application_alone(self, in_review):
        outcome = plan_review(in_review["application"], in_review["bli03"], "REJECT")
        assert outcome.document_status == D.REJECTED
        assert outcome.deactivate_document
        assert outcome.application_status == S.UNDER_REVIEW

    def test_submitted_application_opens_review_implicitly(self, student_setup, make_application, make_document):
        app_ = make_application(student_setup["enrollment"], status=S.SUBMITTED)
        doc = make_document(app_, "BLI_01")
        outcome = plan_review(app_, doc, "REQUEST_CHANGES", "Missing matric number")
        assert outcome.application_events == (
            ApplicationEvent.OPEN_REVIEW, ApplicationEvent.REQUEST_CHANGES,
        )
        assert outcome.application_status == S.CHANGES_REQUESTED

    @pytest.mark.parametrize("status", [D.PENDING_UPLOAD, D.CHANGES_REQUESTED, D.APPROVED, D.SIGNED, D.REJECTED])
    def test_document_not_reviewable(self, student_setup, make_application, make_document, status):
        app_ = make_application(student_setup["enrollment"], status=S.UNDER_REVIEW)
        doc = make_document(app_, "BLI_02", status=status)
        with pytest.raises(InvalidTransition) as exc_info:
            plan_review(app_, doc, "APPROVE")
        assert exc_info.value.entity == "Document"

    def test_superseded_document_not_reviewable(self, student_setup, make_application, make_document):
        app_ = make_application(student_setup["enrollment"], status=S.UNDER_REVIEW)
        doc = make_document(app_, "BLI_02", is_active=False)
        with pytest.raises(InvalidTransition):
            plan_review(app_, doc, "APPROVE")

    @pytest.mark.parametrize("status", [S.DRAFT, S.REJECTED, S.OFFER_REJECTED])
    def test_application_not_reviewable(self, student_setup, make_application, make_document, status):
        app_ = make_application(student_setup["enrollment"], status=status)
        doc = make_document(app_, "BLI_01")
        with pytest.raises(InvalidTransition) as exc_info:
            plan_review(app_, doc, "APPROVE")
        assert exc_info.value.entity == "Application"

    def test_unknown_decision(self):
        with pytest.raises(ValidationError):
            parse_decision("MAYBE")

    @pytest.mark.parametrize("comments", [["Needs stamp"], {"text": "Needs stamp"}, 42])
    def test_comments_must_be_text(self, in_review, comments):
        with pytest.raises(ValidationError) as exc_info:
            plan_review(in_review["application"], in_review["bli03"], "REQUEST_CHANGES", comments)
        assert exc_info.value.details["field"] == "comments"


# ═════════════════════════════════════════════════════════════════════════════
# apply_review (persisted)
# ═════════════════════════════════════════════════════════════════════════════


class TestApplyReview:
    def test_packet_approval_persists_both_transitions(self, in_review):
        result = apply_review(in_review["bli03"].id, actor_for(in_review["supervisor"]), "APPROVE")
        assert result["document_status"] == "APPROVED"
        assert result["application_status"] == "APPROVED"
        assert result["previous_application_status"] == "UNDER_REVIEW"
        assert in_review["application"].status == S.APPROVED
        assert in_review["application"].approved_at is not None

    def test_review_row_snapshots(self, in_review):
        result = apply_review(
            in_review["bli03"].id, actor_for(in_review["coordinator"]),
            "REQUEST_CHANGES", comments="  Needs company stamp  ",
        )
        review = result["review"]
        assert review["decision"] == "REQUEST_CHANGES"
        assert review["comments"] == "Needs company stamp"
        assert review["reviewer_role"] == "COORDINATOR"
        assert review["document_status_before"] == "UNDER_REVIEW"
        assert review["document_status_after"] == "CHANGES_REQUESTED"
        assert review["application_status_before"] == "UNDER_REVIEW"
        assert review["application_status_after"] == "CHANGES_REQUESTED"

    def test_missing_comment_writes_nothing(self, in_review):
        with pytest.raises(MissingRequiredComment):
            apply_review(in_review["bli03"].id, actor_for(in_review["supervisor"]), "REQUEST_CHANGES")
        assert Review.query.count() == 0
        assert in_review["bli03"].status == D.UNDER_REVIEW

    def test_non_text_comments_write_nothing(self, in_review):
        with pytest.raises(ValidationError):
            apply_review(in_review["bli03"].id, actor_for(in_review["supervisor"]), "APPROVE", ["ok"])
        assert Review.query.count() == 0

    def test_reject_supersedes_nothing_but_leaves_active_set(self, in_review):
        apply_review(in_review["bli03"].id, actor_for(in_review["supervisor"]), "REJECT", "Wrong form")
        bli03 = in_review["bli03"]
        assert bli03.status == D.REJECTED
        assert bli03.is_active is False
        assert in_review["application"].status == S.UNDER_REVIEW
        assert in_review["application"].active_document("BLI_03") is None

    def test_review_after_approval_keeps_application_approved(
        self, student_setup, make_application, make_document,
    ):
        app_ = make_application(student_setup["enrollment"], status=S.APPROVED)
        logbook = make_document(app_, "BLI_05")
        result = apply_review(logbook.id, actor_for(student_setup["supervisor"]), "APPROVE")
        assert result["document_status"] == "APPROVED"
        assert result["application_status"] == "APPROVED"

    def test_submitted_documents_follow_implicit_open(
        self, student_setup, make_application, make_document,
    ):
        app_ = make_application(student_setup["enrollment"], status=S.SUBMITTED)
        bli01 = make_document(app_, "BLI_01")
        bli02 = make_document(app_, "BLI_02")
        result = apply_review(bli01.id, actor_for(student_setup["supervisor"]), "APPROVE")
        assert result["application_status"] == "UNDER_REVIEW"
        assert bli01.status == D.APPROVED
        assert bli02.status == D.UNDER_REVIEW

    def test_students_cannot_review(self, in_review):
        with pytest.raises(PermissionDenied):
            apply_review(in_review["bli03"].id, actor_for(in_review["student"]), "APPROVE")

    def test_inactive_session_blocks_review(self, in_review):
        in_review["session"].is_active = False
        db.session.commit()
        with pytest.raises(SessionInactive):
            apply_review(in_review["bli03"].id, actor_for(in_review["supervisor"]), "APPROVE")
        assert Review.query.count() == 0

    def test_reviews_are_immutable(self, in_review):
        result = apply_review(in_review["bli03"].id, actor_for(in_review["supervisor"]), "APPROVE")
        review = db.session.get(Review, result["review"]["id"])
        review.comments = "edited later"
        with pytest.raises(ValueError, match="immutable"):
            db.session.commit()
        db.session.rollback()
        assert db.session.get(Review, review.id).comments is None

    def test_trail_records_decision(self, in_review):
        supervisor = actor_for(in_review["supervisor"])
        apply_review(in_review["bli03"].id, supervisor, "REQUEST_CHANGES", "Unsigned")
        reviews = Review.query.filter_by(document_id=in_review["bli03"].id).all()
        assert [r.decision.value for r in reviews] == ["REQUEST_CHANGES"]


class TestReviewApplication:
    def test_decisions_by_type(self, student_setup, make_application, make_document):
        app_ = make_application(student_setup["enrollment"], status=S.SUBMITTED)
        for t in ("BLI_01", "BLI_02", "BLI_03"):
            make_document(app_, t)
        results = review_application(app_.id, actor_for(student_setup["coordinator"]), [
            {"type": "BLI_01", "decision": "APPROVE"},
            {"type": "bli_02", "decision": "APPROVE"},
            {"type": "BLI_03", "decision": "APPROVE"},
        ])
        assert [r["application_status"] for r in results] == ["UNDER_REVIEW", "UNDER_REVIEW", "APPROVED"]
        assert app_.status == S.APPROVED

    def test_decision_without_target(self, student_setup, make_application):
        app_ = make_application(student_setup["enrollment"], status=S.SUBMITTED)
        with pytest.raises(ValidationError):
            review_application(app_.id, actor_for(student_setup["coordinator"]), [
                {"type": "BLI_01", "decision": "APPROVE"},
            ])

    def test_failing_decision_discards_whole_batch(self, student_setup, make_application, make_document):
        app_ = make_application(student_setup["enrollment"], status=S.UNDER_REVIEW)
        bli01 = make_document(app_, "BLI_01", status=D.UNDER_REVIEW)
        make_document(app_, "BLI_02", status=D.UNDER_REVIEW)
        with pytest.raises(MissingRequiredComment):
            review_application(app_.id, actor_for(student_setup["coordinator"]), [
                {"type": "BLI_01", "decision": "APPROVE"},
                {"type": "BLI_02", "decision": "REQUEST_CHANGES"},
            ])
        assert Review.query.count() == 0
        assert db.session.get(Document, bli01.id).status == D.UNDER_REVIEW

    def test_decision_invalidated_by_earlier_one_rolls_back(
        self, student_setup, make_application, make_document,
    ):
        app_ = make_application(student_setup["enrollment"], status=S.UNDER_REVIEW)
        bli01 = make_document(app_, "BLI_01", status=D.UNDER_REVIEW)
        with pytest.raises(InvalidTransition):
            review_application(app_.id, actor_for(student_setup["coordinator"]), [
                {"document_id": bli01.id, "decision": "APPROVE"},
                {"document_id": bli01.id, "decision": "REJECT", "comments": "Changed my mind"},
            ])
        assert Review.query.count() == 0
        assert db.session.get(Document, bli01.id).status == D.UNDER_REVIEW
        assert db.session.get(Application, app_.id).status == S.UNDER_REVIEW

    def test_document_of_other_application_refused(
        self, student_setup, make_application, make_document, make_user, make_enrollment,
    ):
        app_ = make_application(student_setup["enrollment"], status=S.UNDER_REVIEW)
        make_document(app_, "BLI_01", status=D.UNDER_REVIEW)
        other_enrollment = make_enrollment(student_setup["session"], make_user(), credits_earned=130)
        foreign = make_document(make_application(other_enrollment, status=S.UNDER_REVIEW), "BLI_01",
                                status=D.UNDER_REVIEW)
        with pytest.raises(ValidationError):
            review_application(app_.id, actor_for(student_setup["coordinator"]), [
                {"document_id": foreign.id, "decision": "APPROVE"},
            ])
        assert Review.query.count() == 0

    def test_batch_notifies_once_for_net_transition(self, student_setup, make_application, make_document):
        app_ = make_application(student_setup["enrollment"], status=S.SUBMITTED)
        for t in ("BLI_01", "BLI_02", "BLI_03"):
            make_document(app_, t)
        review_application(app_.id, actor_for(student_setup["coordinator"]), [
            {"type": t, "decision": "APPROVE"} for t in ("BLI_01", "BLI_02", "BLI_03")
        ])
        notes = Notification.query.filter_by(recipient_id=student_setup["student"].id).all()
        assert len(notes) == 1
        assert "SUBMITTED to APPROVED" in notes[0].message

    def test_students_cannot_review_batches(self, in_review):
        with pytest.raises(PermissionDenied):
            review_application(in_review["application"].id, actor_for(in_review["student"]), [
                {"type": "BLI_03", "decision": "APPROVE"},
            ])
