"""
Eligibility Evaluator.

``evaluate`` is a pure function; the helpers below re-invoke it and persist
the cached ``StudentSessionEnrollment.is_eligible`` flag. Callers own the
transaction.
"""

from datetime import datetime, timezone

from ptms.models.session import StudentSessionEnrollment, TrainingSession


def evaluate(credits_earned: int | None, min_credits: int | None) -> bool:
    """Eligible iff ``credits_earned >= min_credits``; missing data is ineligible."""
    if credits_earned is None or min_credits is None:
        return False
    return credits_earned >= min_credits


def refresh_enrollment(
    enrollment: StudentSessionEnrollment,
    session: TrainingSession | None = None,
) -> bool:
    """Recompute and store the cached flag. Returns True if it changed."""
    session = session or enrollment.session
    eligible = evaluate(enrollment.credits_earned, session.min_credits)
    changed = eligible != enrollment.is_eligible
    enrollment.is_eligible = eligible
    enrollment.eligibility_computed_at = datetime.now(timezone.utc)
    return changed


def refresh_session(session: TrainingSession) -> dict:
    """Recompute every enrollment flag of a session (threshold edits).

    Returns:
        {"recomputed": int, "changed": int, "now_eligible": int, "now_ineligible": int}
    """
    result = {"recomputed": 0, "changed": 0, "now_eligible": 0, "now_ineligible": 0}
    for enrollment in session.enrollments:
        result["recomputed"] += 1
        if refresh_enrollment(enrollment, session):
            result["changed"] += 1
            if enrollment.is_eligible:
                result["now_eligible"] += 1
            else:
                result["now_ineligible"] += 1
    return result
