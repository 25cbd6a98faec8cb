"""
Tests: Eligibility Evaluator and cached-flag maintenance.

    - evaluate(c, m) == (c >= m); missing credits are ineligible
    - credit edits and threshold edits re-invoke the evaluator and persist
      the flag; threshold edits recompute every enrollment of the session
"""

import pytest

from conftest import actor_for
from ptms.core.exceptions import PermissionDenied, ValidationError
from ptms.models.user import UserRole
from ptms.services import session_service
from ptms.services.eligibility import evaluate, refresh_enrollment


@pytest.mark.parametrize("credits_earned,min_credits,expected", [
    (113, 113, True),
    (114, 113, True),
    (112, 113, False),
    (0, 0, True),
    (80, 100, False),
    (100, 100, True),
])
def test_evaluate_compares_credits_to_threshold(credits_earned, min_credits, expected):
    assert evaluate(credits_earned, min_credits) is expected


@pytest.mark.parametrize("min_credits", [0, 1, 113, 500])
def test_evaluate_missing_credits_fails_closed(min_credits):
    assert evaluate(None, min_credits) is False


def test_evaluate_missing_threshold_fails_closed():
    assert evaluate(120, None) is False


def test_refresh_enrollment_reports_change(make_user, make_session, make_enrollment):
    student = make_user(credits_earned=90)
    sess = make_session(min_credits=100)
    enrollment = make_enrollment(sess, student, credits_earned=90)
    assert enrollment.is_eligible is False

    enrollment.credits_earned = 105
    assert refresh_enrollment(enrollment, sess) is True
    assert enrollment.is_eligible is True
    assert enrollment.eligibility_computed_at is not None
    assert refresh_enrollment(enrollment, sess) is False


class TestThresholdUpdate:
    def test_threshold_edit_recomputes_every_enrollment(self, make_user, make_session, make_enrollment):
        coordinator = make_user(role=UserRole.COORDINATOR)
        sess = make_session(min_credits=100, coordinator=coordinator)
        low = make_enrollment(sess, make_user(), credits_earned=95)
        mid = make_enrollment(sess, make_user(), credits_earned=105)
        high = make_enrollment(sess, make_user(), credits_earned=130)
        unknown = make_enrollment(sess, make_user(), credits_earned=None)

        result = session_service.update_eligibility_threshold(sess.id, actor_for(coordinator), 110)

        assert result["previous_min_credits"] == 100
        assert result["min_credits"] == 110
        assert result["recomputed"] == 4
        assert result["changed"] == 1
        assert result["now_ineligible"] == 1
        assert low.is_eligible is False
        assert mid.is_eligible is False
        assert high.is_eligible is True
        assert unknown.is_eligible is False

    def test_lowering_threshold_makes_students_eligible(self, make_user, make_session, make_enrollment):
        coordinator = make_user(role=UserRole.COORDINATOR)
        sess = make_session(min_credits=100, coordinator=coordinator)
        e = make_enrollment(sess, make_user(), credits_earned=80)

        result = session_service.update_eligibility_threshold(sess.id, actor_for(coordinator), 80)

        assert result["now_eligible"] == 1
        assert e.is_eligible is True

    def test_only_the_session_coordinator_may_edit(self, make_user, make_session):
        owner = make_user(role=UserRole.COORDINATOR)
        other = make_user(role=UserRole.COORDINATOR)
        sess = make_session(coordinator=owner)
        with pytest.raises(PermissionDenied):
            session_service.update_eligibility_threshold(sess.id, actor_for(other), 90)

    def test_students_cannot_edit_threshold(self, make_user, make_session):
        sess = make_session()
        with pytest.raises(PermissionDenied):
            session_service.update_eligibility_threshold(sess.id, actor_for(make_user()), 10)

    def test_negative_threshold_rejected(self, make_user, make_session):
        coordinator = make_user(role=UserRole.COORDINATOR)
        sess = make_session(coordinator=coordinator)
        with pytest.raises(ValidationError):
            session_service.update_eligibility_threshold(sess.id, actor_for(coordinator), -1)


def test_credit_edit_recomputes_flag(make_user, make_session, make_enrollment):
    coordinator = make_user(role=UserRole.COORDINATOR)
    sess = make_session(min_credits=100, coordinator=coordinator)
    student = make_user(credits_earned=80)
    e = make_enrollment(sess, student, credits_earned=80)

    result = session_service.update_enrollment_credits(e.id, actor_for(coordinator), 101)
    assert result["is_eligible"] is True
    assert result["eligibility_changed"] is True
    assert student.credits_earned == 101

    result = session_service.update_enrollment_credits(e.id, actor_for(coordinator), None)
    assert result["is_eligible"] is False
