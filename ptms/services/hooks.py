"""
Post-commit transition hooks.

Side effects that follow an application status change (notifications,
generated documents) register here and run only after the transition has
committed. A failing hook is logged and never undoes the transition.

Usage:
    @register_transition_hook
    def notify(application_id, previous, current, *, user_id):
        ...
"""

from __future__ import annotations

import logging
from typing import Callable

from ptms.models import db

logger = logging.getLogger(__name__)

_transition_hooks: list[Callable] = []


def register_transition_hook(fn: Callable) -> Callable:
    if fn not in _transition_hooks:
        _transition_hooks.append(fn)
    return fn


def unregister_transition_hook(fn: Callable) -> None:
    if fn in _transition_hooks:
        _transition_hooks.remove(fn)


def get_transition_hooks() -> list[Callable]:
    return list(_transition_hooks)


def fire_transition_hooks(application_id: str, previous, current, *, user_id: str) -> int:
    """Run every hook for one committed transition. Returns the failure count."""
    if previous == current:
        return 0
    failures = 0
    for hook in list(_transition_hooks):
        try:
            hook(application_id, previous, current, user_id=user_id)
        except Exception:
            failures += 1
            db.session.rollback()
            logger.exception(
                "Transition hook %s failed for application %s",
                getattr(hook, "__name__", hook), application_id,
                extra={"application_id": application_id, "event_type": "hook_failed"},
            )
    return failures
