"""
Unit-of-work helper for workflow operations.

Every workflow mutation (gate check, state transition, ledger change, audit
append) runs inside one ``atomic()`` block and is committed exactly once.

Usage:
    with atomic("Document", document.id):
        db.session.add(review)
        document.status = DocumentStatus.APPROVED

StaleDataError (optimistic ``version_id_col`` mismatch) → StorageConflict.
Any other exception → rollback, re-raised unchanged.
"""

import logging
from contextlib import contextmanager

from sqlalchemy.orm.exc import StaleDataError

from ptms.core.exceptions import StorageConflict
from ptms.models import db

logger = logging.getLogger(__name__)


@contextmanager
def atomic(entity: str, entity_id: str | None = None):
    """Commit the enclosed block as one transaction or roll it back entirely."""
    try:
        yield db.session
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        logger.warning(
            "Optimistic concurrency conflict on %s %s", entity, entity_id,
            extra={"event_type": "storage_conflict"},
        )
        raise StorageConflict(entity, entity_id) from exc
    except Exception:
        db.session.rollback()
        raise
