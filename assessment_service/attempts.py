import logging
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from . import crud
from .attempt_models import (
    ATTEMPT_CLASSES,
    ATTEMPT_IN_PROGRESS,
    ATTEMPT_SUBMITTED,
    Attempt,
    AttemptAnswer,
)
from .delivery import build_review, is_owner, safe_view
from .errors import CollaboratorUnavailable, NotFound, PolicyViolation, Unauthorized
from .grading import grade_submission
from .models import KIND_LESSON_QUIZ, Assessment
from .policy import (
    Eligibility,
    can_retake_after,
    policy_for,
    require_enrollment,
    require_startable,
)
from .schemas import (
    AssessmentListItemOut,
    AttemptReportOut,
    AttemptStartOut,
    AttemptSummaryOut,
    IntegrityEventItem,
    SubmitAttemptIn,
    SubmitAttemptOut,
)
from .stats import percentile_for, refresh_assessment_stats

logger = logging.getLogger(__name__)


def count_attempts(db: Session, user_id: int, assessment_id: int) -> int:
    stmt = select(func.count(Attempt.id)).where(
        Attempt.user_id == user_id, Attempt.assessment_id == assessment_id
    )
    return db.scalar(stmt) or 0


def get_attempt(db: Session, attempt_id: int) -> Attempt:
    at = db.get(Attempt, attempt_id)
    if not at:
        raise NotFound("Attempt not found")
    return at


def list_user_attempts(db: Session, user_id: int, assessment_id: int) -> list[Attempt]:
    stmt = (
        select(Attempt)
        .where(Attempt.user_id == user_id, Attempt.assessment_id == assessment_id)
        .order_by(Attempt.attempt_number)
    )
    return list(db.scalars(stmt))


def attempt_summary(at: Attempt) -> AttemptSummaryOut:
    return AttemptSummaryOut(
        attempt_id=at.id,
        user_id=at.user_id,
        attempt_number=at.attempt_number,
        status=at.status,
        score=at.score or 0,
        percentage=at.percentage or 0,
        is_passed=bool(at.is_passed),
        percentile=at.percentile,
        started_at=at.started_at,
        submitted_at=at.submitted_at,
        tab_switch_count=at.tab_switch_count or 0,
    )


# -------------------------
# Eligibility & start
# -------------------------

def check_eligibility(db: Session, a: Assessment, user_id: int) -> Eligibility:
    existing = count_attempts(db, user_id, a.id)
    try:
        require_startable(a, existing, crud.utcnow())
    except PolicyViolation as e:
        return Eligibility(
            can_attempt=False,
            existing_attempts=existing,
            max_attempts=a.max_attempts,
            reason=e.reason,
            message=e.detail,
        )
    return Eligibility(can_attempt=True, existing_attempts=existing, max_attempts=a.max_attempts)


def start_attempt(db: Session, courses, a: Assessment, user_id: int) -> AttemptStartOut:
    existing = count_attempts(db, user_id, a.id)
    require_startable(a, existing, crud.utcnow())
    require_enrollment(courses, a, user_id)

    attempt_cls = ATTEMPT_CLASSES[a.kind]
    attempt = attempt_cls(
        user_id=user_id,
        assessment_id=a.id,
        course_id=a.course_id,
        lesson_id=a.lesson_id,
        attempt_number=existing + 1,
        status=ATTEMPT_IN_PROGRESS,
        started_at=crud.utcnow(),
    )
    db.add(attempt)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.warning(
            "Concurrent start for assessment %s by user %s (attempt #%s)", a.id, user_id, existing + 1
        )
        raise PolicyViolation("Another attempt was started at the same time", "concurrent_attempt")
    db.refresh(attempt)
    logger.info("User %s started attempt #%s on %s %s", user_id, attempt.attempt_number, a.kind, a.id)

    out = AttemptStartOut(
        attempt_id=attempt.id,
        attempt_number=attempt.attempt_number,
        started_at=attempt.started_at,
    )
    if a.kind == KIND_LESSON_QUIZ:
        out.assessment = safe_view(a, attempts_used=existing + 1)
    return out


# -------------------------
# Submit
# -------------------------

def _record_lesson_progress(courses, a: Assessment, attempt: Attempt) -> None:
    """Mark the lesson completed in course-service. The grade is already committed, so a failure is only logged."""
    try:
        courses.mark_lesson_passed(attempt.user_id, a.course_id, a.lesson_id, attempt.percentage)
    except CollaboratorUnavailable as e:
        logger.error(
            "Could not record lesson %s progress for user %s: %s", a.lesson_id, attempt.user_id, e.detail
        )


def submit_attempt(
    db: Session, courses, attempt: Attempt, user_id: int, payload: SubmitAttemptIn
) -> SubmitAttemptOut:
    if attempt.user_id != user_id:
        raise Unauthorized("Not your attempt")
    if attempt.status != ATTEMPT_IN_PROGRESS:
        raise PolicyViolation("Attempt already submitted", "already_submitted")

    a = crud.require_assessment(db, attempt.assessment_id)
    policy = policy_for(a)
    now = crud.utcnow()

    # claim the attempt; a racing submit finds no in-progress row and stops here
    claimed = db.execute(
        update(Attempt)
        .where(Attempt.id == attempt.id, Attempt.status == ATTEMPT_IN_PROGRESS)
        .values(status=ATTEMPT_SUBMITTED, submitted_at=now)
    )
    if claimed.rowcount == 0:
        db.rollback()
        logger.warning("Duplicate submit for attempt %s", attempt.id)
        raise PolicyViolation("Attempt already submitted", "already_submitted")

    result = grade_submission(
        a.questions,
        payload.answers,
        a.total_marks,
        negative_marking=a.negative_marking,
        snapshot=policy.snapshots_questions,
    )

    try:
        for pos, g in enumerate(result.answers):
            attempt.answers.append(
                AttemptAnswer(
                    position=pos,
                    question_id=g.question_id,
                    selected_option=g.selected_option,
                    selected_option_id=g.selected_option_id,
                    is_correct=g.is_correct,
                    points_earned=g.points_earned,
                    time_taken=g.time_taken,
                    question_snapshot=g.snapshot,
                )
            )
        attempt.score = result.score
        attempt.percentage = result.percentage
        attempt.is_passed = policy.is_passed(a, result.score, result.percentage)
        attempt.correct_count = result.correct_count
        attempt.incorrect_count = result.incorrect_count
        attempt.unanswered_count = result.unanswered_count
        attempt.time_spent = payload.time_spent
        db.flush()

        if policy.tracks_percentile:
            attempt.percentile = percentile_for(db, a.id, result.score)
        refresh_assessment_stats(db, a)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to record submission for attempt %s", attempt.id)
        raise

    db.refresh(attempt)
    logger.info(
        "User %s submitted attempt %s on %s: score=%s percentage=%s passed=%s",
        user_id, attempt.id, a.id, attempt.score, attempt.percentage, attempt.is_passed,
    )
    if attempt.is_passed and policy.records_lesson_progress:
        _record_lesson_progress(courses, a, attempt)

    used = count_attempts(db, user_id, a.id)
    review = build_review(a, attempt.answers, reveal=True) if policy.review_on_submit(a) else None
    return SubmitAttemptOut(
        attempt_id=attempt.id,
        attempt_number=attempt.attempt_number,
        score=attempt.score,
        percentage=attempt.percentage,
        is_passed=attempt.is_passed,
        total_marks=a.total_marks,
        passing_marks=a.passing_marks,
        passing_percentage=a.passing_percentage,
        correct_count=attempt.correct_count,
        incorrect_count=attempt.incorrect_count,
        unanswered_count=attempt.unanswered_count,
        percentile=attempt.percentile,
        review=review,
        can_retake=can_retake_after(a, used),
    )


# -------------------------
# Reads
# -------------------------

def list_attempts(db: Session, a: Assessment, user_id: int) -> list[AttemptSummaryOut]:
    if is_owner(a, user_id):
        stmt = select(Attempt).where(Attempt.assessment_id == a.id).order_by(Attempt.id.desc())
        attempts = list(db.scalars(stmt))
    else:
        attempts = list_user_attempts(db, user_id, a.id)
    return [attempt_summary(at) for at in attempts]


def attempt_report(db: Session, attempt: Attempt, user_id: int) -> AttemptReportOut:
    a = crud.require_assessment(db, attempt.assessment_id)
    owner = is_owner(a, user_id)
    if not owner and attempt.user_id != user_id:
        raise Unauthorized("Not authorized to view this attempt")

    review: Optional[list] = None
    if attempt.is_submitted:
        review = build_review(a, attempt.answers, reveal=owner or a.show_correct_answers)

    report = AttemptReportOut(
        attempt_id=attempt.id,
        assessment_id=a.id,
        kind=attempt.kind,
        title=a.title,
        user_id=attempt.user_id,
        attempt_number=attempt.attempt_number,
        status=attempt.status,
        score=attempt.score or 0,
        percentage=attempt.percentage or 0,
        is_passed=bool(attempt.is_passed),
        total_marks=a.total_marks,
        passing_percentage=a.passing_percentage,
        total_questions=a.total_questions,
        correct_count=attempt.correct_count or 0,
        incorrect_count=attempt.incorrect_count or 0,
        unanswered_count=attempt.unanswered_count or 0,
        time_spent=attempt.time_spent or 0,
        started_at=attempt.started_at,
        submitted_at=attempt.submitted_at,
        percentile=attempt.percentile,
        review=review,
    )
    if owner:
        report.tab_switch_count = attempt.tab_switch_count or 0
        report.integrity_events = [
            IntegrityEventItem(kind=e.kind, occurred_at=e.occurred_at) for e in attempt.integrity_events
        ]
    return report


def catalog(db: Session, assessments: list[Assessment], user_id: int) -> list[AssessmentListItemOut]:
    """List items with the requester's own attempt history attached."""
    out: list[AssessmentListItemOut] = []
    for a in assessments:
        mine = list_user_attempts(db, user_id, a.id)
        out.append(
            AssessmentListItemOut(
                id=a.id,
                kind=a.kind,
                course_id=a.course_id,
                title=a.title,
                status=a.status,
                duration=a.duration,
                total_questions=a.total_questions,
                start_date=a.start_date,
                end_date=a.end_date,
                is_scheduled=a.is_scheduled,
                attempt_count=len(mine),
                last_attempt=attempt_summary(mine[-1]) if mine else None,
                # completed means the latest attempt passed
                is_completed=bool(mine and mine[-1].is_submitted and mine[-1].is_passed),
            )
        )
    return out


# -------------------------
# Deletion
# -------------------------

def delete_assessment(db: Session, a: Assessment) -> None:
    """Remove every attempt of the assessment, then the definition, in one commit."""
    attempts = list(db.scalars(select(Attempt).where(Attempt.assessment_id == a.id)))
    for at in attempts:
        db.delete(at)
    db.flush()
    crud.delete_assessment(db, a)
    db.commit()
    logger.info("Deleted assessment %s and %s attempts", a.id, len(attempts))
