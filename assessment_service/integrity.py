import logging

from sqlalchemy import update
from sqlalchemy.orm import Session

from .attempt_models import ATTEMPT_IN_PROGRESS, Attempt, IntegrityEvent
from .crud import require_assessment, utcnow
from .errors import PolicyViolation, Unauthorized
from .policy import policy_for
from .schemas import IntegrityEventOut

logger = logging.getLogger(__name__)


def log_event(db: Session, attempt: Attempt, user_id: int, kind: str = "tab_switch") -> IntegrityEventOut:
    """Record a focus-loss signal. Signals are for the exam owner's report only and never block grading."""
    if attempt.user_id != user_id:
        raise Unauthorized("Not your attempt")
    if not policy_for(require_assessment(db, attempt.assessment_id)).tracks_integrity:
        raise PolicyViolation("Integrity events are only tracked for exams", "integrity_not_tracked")

    # increment in SQL; a submitted attempt matches no row and stays untouched
    bumped = db.execute(
        update(Attempt)
        .where(Attempt.id == attempt.id, Attempt.status == ATTEMPT_IN_PROGRESS)
        .values(tab_switch_count=Attempt.tab_switch_count + 1)
    )
    if bumped.rowcount == 0:
        db.rollback()
        raise PolicyViolation("Attempt is not in progress", "attempt_not_in_progress")

    db.add(IntegrityEvent(attempt_id=attempt.id, kind=kind, occurred_at=utcnow()))
    db.commit()
    db.refresh(attempt)

    logger.warning(
        "Integrity event %s on attempt %s (user %s), count=%s",
        kind, attempt.id, user_id, attempt.tab_switch_count,
    )
    return IntegrityEventOut(
        attempt_id=attempt.id,
        tab_switch_count=attempt.tab_switch_count,
        message=f"Warning: leaving the exam window has been recorded ({attempt.tab_switch_count} so far)",
    )
