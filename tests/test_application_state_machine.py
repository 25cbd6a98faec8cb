"""
Exhaustive state-machine transition tests for Application.

APPLICATION_TRANSITIONS -- 7 states, 7 events, 15 valid edges
    - DRAFT -> SUBMITTED (submit)
    - SUBMITTED -> UNDER_REVIEW (open_review)
    - UNDER_REVIEW -> CHANGES_REQUESTED (request_changes) | APPROVED (approve)
    - CHANGES_REQUESTED -> UNDER_REVIEW (resubmit)
    - every non-terminal -> REJECTED (reject) | OFFER_REJECTED (reject_offer)
    - REJECTED, OFFER_REJECTED -> (terminal)

Every (state, event) pair outside the table raises InvalidTransition naming
the current status and the requested event. Service-level tests cover the
side effects of each operation.
"""

import pytest

from conftest import actor_for
from ptms.core.exceptions import (
    ConflictError,
    InvalidTransition,
    NotEligible,
    PermissionDenied,
    ValidationError,
)
from ptms.models.application import (
    APPLICATION_TRANSITIONS,
    TERMINAL_STATUSES,
    ApplicationEvent,
    ApplicationStatus,
    DocumentStatus,
    available_events,
    next_application_status,
)
from ptms.services import application_service

S = ApplicationStatus
E = ApplicationEvent

EXPECTED_EDGES = {
    (S.DRAFT, E.SUBMIT): S.SUBMITTED,
    (S.SUBMITTED, E.OPEN_REVIEW): S.UNDER_REVIEW,
    (S.UNDER_REVIEW, E.REQUEST_CHANGES): S.CHANGES_REQUESTED,
    (S.UNDER_REVIEW, E.APPROVE): S.APPROVED,
    (S.CHANGES_REQUESTED, E.RESUBMIT): S.UNDER_REVIEW,
}
for _status in S:
    if _status not in TERMINAL_STATUSES:
        EXPECTED_EDGES[(_status, E.REJECT)] = S.REJECTED
        EXPECTED_EDGES[(_status, E.REJECT_OFFER)] = S.OFFER_REJECTED


def _valid_transitions():
    return [(s, e, t) for (s, e), t in EXPECTED_EDGES.items()]


def _invalid_transitions():
    return [(s, e) for s in S for e in E if (s, e) not in EXPECTED_EDGES]


# ═════════════════════════════════════════════════════════════════════════════
# Transition table
# ═════════════════════════════════════════════════════════════════════════════


def test_table_matches_documented_edges():
    table_edges = {
        (s, e): t for s, events in APPLICATION_TRANSITIONS.items() for e, t in events.items()
    }
    assert table_edges == EXPECTED_EDGES
    assert len(EXPECTED_EDGES) == 15


def test_table_covers_every_status():
    assert set(APPLICATION_TRANSITIONS) == set(S)


@pytest.mark.parametrize("current,event,target", _valid_transitions())
def test_valid_transition(current, event, target):
    assert next_application_status(current, event) == target
    assert next_application_status(current.value, event.value) == target


@pytest.mark.parametrize("current,event", _invalid_transitions())
def test_invalid_transition_raises(current, event):
    with pytest.raises(InvalidTransition) as exc_info:
        next_application_status(current, event, application_id="app-1")
    err = exc_info.value
    assert err.current_status == current.value
    assert err.requested == event.value
    assert err.details["entity_id"] == "app-1"
    assert err.http_status == 409


@pytest.mark.parametrize("terminal", sorted(TERMINAL_STATUSES))
def test_terminal_statuses_have_no_exits(terminal):
    assert available_events(terminal) == []


def test_available_events_in_table_order():
    assert available_events(S.UNDER_REVIEW) == ["request_changes", "approve", "reject", "reject_offer"]


# ═════════════════════════════════════════════════════════════════════════════
# Service operations
# ═════════════════════════════════════════════════════════════════════════════


class TestCreate:
    def test_creates_draft_for_active_enrollment(self, student_setup):
        result = application_service.create_application(actor_for(student_setup["student"]))
        assert result["status"] == "DRAFT"
        assert result["enrollment_id"] == student_setup["enrollment"].id
        assert result["session_id"] == student_setup["session"].id
        assert result["version"] == 1

    def test_second_open_application_conflicts(self, student_setup):
        actor = actor_for(student_setup["student"])
        application_service.create_application(actor)
        with pytest.raises(ConflictError):
            application_service.create_application(actor)

    def test_new_application_allowed_after_terminal(self, student_setup, make_application):
        make_application(student_setup["enrollment"], status=S.OFFER_REJECTED)
        result = application_service.create_application(actor_for(student_setup["student"]))
        assert result["status"] == "DRAFT"

    def test_staff_cannot_create(self, student_setup):
        with pytest.raises(PermissionDenied):
            application_service.create_application(actor_for(student_setup["coordinator"]))


class TestSubmit:
    def test_draft_to_submitted_sets_timestamp(self, student_setup, make_application):
        app_ = make_application(student_setup["enrollment"])
        result = application_service.submit_application(app_.id, actor_for(student_setup["student"]))
        assert result["status"] == "SUBMITTED"
        assert result["submitted_at"] is not None
        assert result["version"] == 2

    def test_submit_twice_is_invalid(self, student_setup, make_application):
        app_ = make_application(student_setup["enrollment"], status=S.SUBMITTED)
        with pytest.raises(InvalidTransition) as exc_info:
            application_service.submit_application(app_.id, actor_for(student_setup["student"]))
        assert exc_info.value.current_status == "SUBMITTED"
        assert exc_info.value.requested == "submit"

    def test_other_student_cannot_submit(self, student_setup, make_application, make_user):
        app_ = make_application(student_setup["enrollment"])
        with pytest.raises(PermissionDenied):
            application_service.submit_application(app_.id, actor_for(make_user(credits_earned=150)))

    def test_ineligible_enrollment_blocks_submit(self, student_setup, make_application):
        app_ = make_application(student_setup["enrollment"])
        student_setup["enrollment"].is_eligible = False
        with pytest.raises(NotEligible):
            application_service.submit_application(app_.id, actor_for(student_setup["student"]))
        assert app_.status == S.DRAFT


class TestStartReview:
    def test_opens_review_and_moves_submitted_documents(self, student_setup, make_application, make_document):
        app_ = make_application(student_setup["enrollment"], status=S.SUBMITTED)
        doc = make_document(app_, "BLI_01")
        result = application_service.start_review(app_.id, actor_for(student_setup["supervisor"]))
        assert result["status"] == "UNDER_REVIEW"
        assert doc.status == DocumentStatus.UNDER_REVIEW

    def test_students_cannot_open_review(self, student_setup, make_application):
        app_ = make_application(student_setup["enrollment"], status=S.SUBMITTED)
        with pytest.raises(PermissionDenied):
            application_service.start_review(app_.id, actor_for(student_setup["student"]))

    def test_cannot_open_draft(self, student_setup, make_application):
        app_ = make_application(student_setup["enrollment"])
        with pytest.raises(InvalidTransition):
            application_service.start_review(app_.id, actor_for(student_setup["coordinator"]))


class TestReject:
    @pytest.mark.parametrize("status", [s for s in S if s not in TERMINAL_STATUSES])
    def test_override_from_every_non_terminal(self, student_setup, make_application, status):
        app_ = make_application(student_setup["enrollment"], status=status)
        result = application_service.reject_application(
            app_.id, actor_for(student_setup["coordinator"]), "REJECTED", reason="placement withdrawn",
        )
        assert result["status"] == "REJECTED"
        assert result["closed_reason"] == "placement withdrawn"
        assert result["closed_at"] is not None

    def test_override_skips_eligibility_gate(self, student_setup, make_application):
        app_ = make_application(student_setup["enrollment"], status=S.UNDER_REVIEW)
        student_setup["enrollment"].is_eligible = False
        student_setup["session"].is_active = False
        result = application_service.reject_application(app_.id, actor_for(student_setup["coordinator"]))
        assert result["status"] == "REJECTED"

    def test_terminal_is_never_reversible(self, student_setup, make_application):
        app_ = make_application(student_setup["enrollment"], status=S.REJECTED)
        with pytest.raises(InvalidTransition):
            application_service.reject_application(
                app_.id, actor_for(student_setup["coordinator"]), "OFFER_REJECTED",
            )

    def test_student_may_decline_own_offer(self, student_setup, make_application):
        app_ = make_application(student_setup["enrollment"], status=S.APPROVED)
        result = application_service.reject_application(
            app_.id, actor_for(student_setup["student"]), "OFFER_REJECTED",
        )
        assert result["status"] == "OFFER_REJECTED"

    def test_student_may_not_reject(self, student_setup, make_application):
        app_ = make_application(student_setup["enrollment"])
        with pytest.raises(PermissionDenied):
            application_service.reject_application(app_.id, actor_for(student_setup["student"]), "REJECTED")

    def test_supervisor_may_not_override(self, student_setup, make_application):
        app_ = make_application(student_setup["enrollment"])
        with pytest.raises(PermissionDenied):
            application_service.reject_application(app_.id, actor_for(student_setup["supervisor"]))

    def test_unknown_outcome(self, student_setup, make_application):
        app_ = make_application(student_setup["enrollment"])
        with pytest.raises(ValidationError):
            application_service.reject_application(
                app_.id, actor_for(student_setup["coordinator"]), "APPROVED",
            )


class TestPlacement:
    def _data(self, weeks=12, email="hr@acme.com.my"):
        from datetime import date, timedelta
        start = date(2026, 7, 1)
        return {
            "company": {"name": "Acme Sdn Bhd", "address": "1 Jalan Test", "contact_email": email},
            "start_date": start,
            "end_date": start + timedelta(weeks=weeks),
        }

    def test_sets_company_and_dates(self, student_setup, make_application):
        app_ = make_application(student_setup["enrollment"])
        result = application_service.set_placement(app_.id, actor_for(student_setup["student"]), self._data())
        assert result["company"]["name"] == "Acme Sdn Bhd"
        assert result["company"]["contact_email"] == "hr@acme.com.my"
        assert result["start_date"] == "2026-07-01"

    def test_company_reused_by_name_and_address(self, student_setup, make_application):
        app_ = make_application(student_setup["enrollment"])
        actor = actor_for(student_setup["student"])
        first = application_service.set_placement(app_.id, actor, self._data())
        second = application_service.set_placement(app_.id, actor, self._data(weeks=10))
        assert first["company"]["id"] == second["company"]["id"]

    @pytest.mark.parametrize("weeks", [4, 30])
    def test_duration_outside_session_window(self, student_setup, make_application, weeks):
        app_ = make_application(student_setup["enrollment"])
        with pytest.raises(ValidationError) as exc_info:
            application_service.set_placement(app_.id, actor_for(student_setup["student"]), self._data(weeks))
        assert exc_info.value.details["min_weeks"] == 8

    def test_invalid_contact_email(self, student_setup, make_application):
        app_ = make_application(student_setup["enrollment"])
        with pytest.raises(ValidationError):
            application_service.set_placement(
                app_.id, actor_for(student_setup["student"]), self._data(email="not-an-email"),
            )

    def test_locked_after_approval(self, student_setup, make_application):
        app_ = make_application(student_setup["enrollment"], status=S.APPROVED)
        with pytest.raises(InvalidTransition):
            application_service.set_placement(app_.id, actor_for(student_setup["student"]), self._data())
