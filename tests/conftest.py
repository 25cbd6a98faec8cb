"""
Shared pytest fixtures for the PTMS test suite.

Provides:
    - app: Flask application (session-scoped), file store under a temp dir
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - ORM factories: make_user, make_session, make_enrollment,
      make_application, make_document
    - headers_for: identity headers accepted under TRUST_IDENTITY_HEADERS
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from ptms import create_app
from ptms.core.actor import Actor
from ptms.models import db as _db
from ptms.models.application import (
    Application,
    ApplicationStatus,
    Document,
    DocumentStatus,
    DocumentType,
    SignerRole,
)
from ptms.models.session import StudentSessionEnrollment, TrainingSession
from ptms.models.user import User, UserRole
from ptms.services.eligibility import evaluate
from ptms.services.file_store import LocalFileStore


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app(tmp_path_factory):
    """Create the Flask application once per test session."""
    application = create_app("testing")
    upload_root = tmp_path_factory.mktemp("uploads")
    application.config["UPLOAD_FOLDER"] = str(upload_root)
    application.extensions["file_store"] = LocalFileStore(str(upload_root))
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def file_store(app):
    return app.extensions["file_store"]


# ── Identity helpers ─────────────────────────────────────────────────────


def actor_for(user: User) -> Actor:
    return Actor.of(user.id, user.role)


def headers_for(user: User) -> dict:
    return {"X-User-Id": user.id, "X-User-Role": user.role.value}


# ── ORM factories (bypass services to set arbitrary starting states) ─────


_counter = {"n": 0}


def _next():
    _counter["n"] += 1
    return _counter["n"]


@pytest.fixture()
def make_user():
    def _make(role=UserRole.STUDENT, credits_earned=None, matric_no=None, name=None):
        n = _next()
        user = User(
            email=f"user{n}@uni.test",
            name=name or f"User {n}",
            role=role,
            credits_earned=credits_earned,
            matric_no=matric_no or (f"A{n:06d}" if role == UserRole.STUDENT else None),
        )
        _db.session.add(user)
        _db.session.commit()
        return user
    return _make


@pytest.fixture()
def make_session():
    def _make(min_credits=100, is_active=True, coordinator=None, min_weeks=8, max_weeks=24,
              training_end_date=None, name=None):
        s = TrainingSession(
            name=name or f"Session {_next()}",
            year=2026,
            semester=1,
            min_credits=min_credits,
            min_weeks=min_weeks,
            max_weeks=max_weeks,
            is_active=is_active,
            training_start_date=date.today() + timedelta(days=30),
            training_end_date=training_end_date or date.today() + timedelta(days=200),
            deadlines={},
            coordinator_id=coordinator.id if coordinator else None,
        )
        _db.session.add(s)
        _db.session.commit()
        return s
    return _make


@pytest.fixture()
def make_enrollment():
    def _make(session, user, credits_earned=None):
        e = StudentSessionEnrollment(
            session_id=session.id,
            user_id=user.id,
            credits_earned=credits_earned,
            is_eligible=evaluate(credits_earned, session.min_credits),
        )
        _db.session.add(e)
        _db.session.commit()
        return e
    return _make


@pytest.fixture()
def make_application():
    def _make(enrollment, status=ApplicationStatus.DRAFT):
        a = Application(
            enrollment_id=enrollment.id,
            session_id=enrollment.session_id,
            user_id=enrollment.user_id,
            status=status,
        )
        _db.session.add(a)
        _db.session.commit()
        return a
    return _make


@pytest.fixture()
def make_document():
    def _make(application, doc_type, status=DocumentStatus.SUBMITTED, is_active=True, signed=False):
        d = Document(
            application_id=application.id,
            type=DocumentType(doc_type),
            status=status,
            is_active=is_active,
            content_ref=f"documents/{doc_type}.pdf",
            media_type="application/pdf",
        )
        if signed:
            d.signer_role = SignerRole.SUPERVISOR
            d.signer_id = "supervisor"
            d.signature_ref = f"signatures/{doc_type}.png"
            d.signed_at = datetime.now(timezone.utc)
        _db.session.add(d)
        _db.session.commit()
        return d
    return _make


@pytest.fixture()
def student_setup(make_user, make_session, make_enrollment):
    """Eligible student enrolled in an active session, plus a coordinator and supervisor."""
    coordinator = make_user(role=UserRole.COORDINATOR)
    supervisor = make_user(role=UserRole.SUPERVISOR)
    student = make_user(credits_earned=120)
    sess = make_session(min_credits=100, coordinator=coordinator)
    enrollment = make_enrollment(sess, student, credits_earned=120)
    return {
        "student": student,
        "coordinator": coordinator,
        "supervisor": supervisor,
        "session": sess,
        "enrollment": enrollment,
    }
