"""
Tests for the Session Enrollment Gate: error precedence, cached-flag
semantics and the ownership check for student operations.
"""

import pytest

from conftest import actor_for
from ptms.core.exceptions import NotEligible, NotEnrolled, PermissionDenied, SessionInactive
from ptms.models import db
from ptms.models.user import UserRole
from ptms.services import enrollment_gate


class TestAuthorize:
    def test_returns_active_enrollment(self, student_setup):
        enrollment = enrollment_gate.authorize(student_setup["student"].id, "submit_application")
        assert enrollment.id == student_setup["enrollment"].id

    def test_no_active_session_at_all(self, make_user, make_session, make_enrollment):
        student = make_user(credits_earned=120)
        make_enrollment(make_session(is_active=False), student, credits_earned=120)
        with pytest.raises(SessionInactive) as exc_info:
            enrollment_gate.authorize(student.id, "create_application")
        assert exc_info.value.details["session_id"] is None

    def test_not_enrolled_in_active_session(self, student_setup, make_user):
        outsider = make_user(credits_earned=150)
        with pytest.raises(NotEnrolled) as exc_info:
            enrollment_gate.authorize(outsider.id, "create_application")
        assert exc_info.value.details["operation"] == "create_application"
        assert exc_info.value.http_status == 403

    def test_enrollment_only_in_retired_session(self, student_setup, make_user, make_session, make_enrollment):
        student = make_user(credits_earned=120)
        make_enrollment(make_session(is_active=False), student, credits_earned=120)
        with pytest.raises(NotEnrolled):
            enrollment_gate.authorize(student.id, "create_application")

    def test_not_eligible_carries_credit_details(self, make_user, make_session, make_enrollment):
        student = make_user(credits_earned=90)
        sess = make_session(min_credits=113)
        make_enrollment(sess, student, credits_earned=90)
        with pytest.raises(NotEligible) as exc_info:
            enrollment_gate.authorize(student.id, "submit_application")
        details = exc_info.value.details
        assert details["credits_earned"] == 90
        assert details["min_credits"] == 113
        assert details["session_id"] == sess.id

    def test_reads_cached_flag_without_recomputing(self, student_setup):
        # Flag says ineligible although the credits would pass
        student_setup["enrollment"].is_eligible = False
        db.session.commit()
        with pytest.raises(NotEligible):
            enrollment_gate.authorize(student_setup["student"].id, "submit_application")
        assert student_setup["enrollment"].is_eligible is False

    def test_unknown_credits_are_ineligible(self, make_user, make_session, make_enrollment):
        student = make_user()
        make_enrollment(make_session(), student, credits_earned=None)
        with pytest.raises(NotEligible):
            enrollment_gate.authorize(student.id, "create_application")


class TestCheckApplication:
    def test_passes_for_active_eligible(self, student_setup, make_application):
        app_ = make_application(student_setup["enrollment"])
        assert enrollment_gate.check_application(app_, "apply_review").id == student_setup["enrollment"].id

    def test_session_inactive_wins_over_ineligible(self, student_setup, make_application):
        app_ = make_application(student_setup["enrollment"])
        student_setup["session"].is_active = False
        student_setup["enrollment"].is_eligible = False
        db.session.commit()
        with pytest.raises(SessionInactive) as exc_info:
            enrollment_gate.check_application(app_, "apply_review")
        assert exc_info.value.details["session_id"] == student_setup["session"].id

    def test_ineligible_owner(self, student_setup, make_application):
        app_ = make_application(student_setup["enrollment"])
        student_setup["enrollment"].is_eligible = False
        db.session.commit()
        with pytest.raises(NotEligible):
            enrollment_gate.check_application(app_, "apply_review")


class TestAuthorizeActor:
    def test_student_must_own_application(self, student_setup, make_application, make_user):
        app_ = make_application(student_setup["enrollment"])
        other = make_user(credits_earned=130)
        with pytest.raises(PermissionDenied):
            enrollment_gate.authorize_actor(actor_for(other), app_, "upload_document")

    def test_student_application_from_previous_session(
        self, student_setup, make_application, make_session, make_enrollment,
    ):
        app_ = make_application(student_setup["enrollment"])
        student_setup["session"].is_active = False
        db.session.commit()
        make_enrollment(make_session(), student_setup["student"], credits_earned=120)
        with pytest.raises(SessionInactive):
            enrollment_gate.authorize_actor(actor_for(student_setup["student"]), app_, "upload_document")

    @pytest.mark.parametrize("role_key", ["supervisor", "coordinator"])
    def test_staff_routed_to_application_check(self, student_setup, make_application, role_key):
        app_ = make_application(student_setup["enrollment"])
        enrollment = enrollment_gate.authorize_actor(actor_for(student_setup[role_key]), app_, "sign_document")
        assert enrollment.id == student_setup["enrollment"].id

    def test_admin_routed_to_application_check(self, student_setup, make_application, make_user):
        app_ = make_application(student_setup["enrollment"])
        admin = make_user(role=UserRole.ADMIN)
        assert enrollment_gate.authorize_actor(actor_for(admin), app_, "upload_document") is not None
