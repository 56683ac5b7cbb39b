import logging

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from .attempt_models import ATTEMPT_SUBMITTED, Attempt
from .grading import round_half_up
from .models import Assessment
from .schemas import StatsOut

logger = logging.getLogger(__name__)


def _submitted(assessment_id: int):
    return (Attempt.assessment_id == assessment_id, Attempt.status == ATTEMPT_SUBMITTED)


def refresh_assessment_stats(db: Session, a: Assessment) -> None:
    """Recount from scratch; the caller's pending changes must already be flushed."""
    count, avg = db.execute(
        select(func.count(Attempt.id), func.avg(Attempt.score)).where(*_submitted(a.id))
    ).one()
    a.attempt_count = int(count or 0)
    a.average_score = float(avg or 0)


def percentile_for(db: Session, assessment_id: int, score: float) -> int:
    """
    Share of submitted attempts scoring strictly below `score`, 0-100.
    Taken at submission time and never revised.
    """
    total = db.scalar(select(func.count(Attempt.id)).where(*_submitted(assessment_id))) or 0
    if total == 0:
        return 0
    lower = db.scalar(
        select(func.count(Attempt.id)).where(*_submitted(assessment_id), Attempt.score < score)
    ) or 0
    return round_half_up(100 * lower / total)


def summary(db: Session, a: Assessment) -> StatsOut:
    count, avg, high, low, passed = db.execute(
        select(
            func.count(Attempt.id),
            func.avg(Attempt.score),
            func.max(Attempt.score),
            func.min(Attempt.score),
            func.sum(case((Attempt.is_passed.is_(True), 1), else_=0)),
        ).where(*_submitted(a.id))
    ).one()

    count = int(count or 0)
    return StatsOut(
        assessment_id=a.id,
        attempt_count=count,
        average_score=round(float(avg or 0), 2),
        pass_rate=round(100 * int(passed or 0) / count, 2) if count else 0.0,
        highest_score=high,
        lowest_score=low,
    )
