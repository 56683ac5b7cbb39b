import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import InvalidDefinition, NotFound, PolicyViolation
from .grading import round_half_up
from .models import (
    KIND_EXAM,
    KIND_LESSON_QUIZ,
    STATUS_ARCHIVED,
    STATUS_DRAFT,
    STATUS_PUBLISHED,
    AnswerOption,
    Assessment,
    Question,
)
from .schemas import AssessmentIn, AssessmentUpdateIn, QuestionIn

logger = logging.getLogger(__name__)

DEFAULT_QUIZ_PASSING_PERCENTAGE = 70

# plain settings copied verbatim from the request on create/update
_SETTING_FIELDS = (
    "title", "description", "instructions", "exam_type", "duration", "passing_marks",
    "shuffle_questions", "shuffle_options", "show_result_immediately", "show_correct_answers",
    "allow_retake", "max_attempts", "negative_marking", "is_free",
)


def utcnow() -> datetime:
    """Naive UTC; every timestamp column stores naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


# -------------------------
# Question bank
# -------------------------

def _sync_options(q: Question, options_in) -> None:
    existing = {o.id: o for o in q.options if o.id is not None}
    kept: list[AnswerOption] = []
    for pos, o_in in enumerate(options_in):
        opt = existing.get(o_in.id) if o_in.id is not None else None
        if opt is None:
            opt = AnswerOption()
        opt.position = pos
        opt.text = o_in.text
        opt.is_correct = o_in.is_correct
        kept.append(opt)
    q.options = kept


def _fill_question(q: Question, q_in: QuestionIn, position: int) -> Question:
    q.position = position
    q.text = q_in.text
    q.explanation = q_in.explanation
    q.points = q_in.points
    q.difficulty = q_in.difficulty
    q.tags = list(q_in.tags)
    _sync_options(q, q_in.options)
    return q


def _sync_questions(a: Assessment, questions_in: list[QuestionIn]) -> None:
    """Replace the question list, updating rows in place where ids match so ids stay stable."""
    existing = {q.id: q for q in a.questions if q.id is not None}
    kept: list[Question] = []
    for pos, q_in in enumerate(questions_in):
        q = existing.get(q_in.id) if q_in.id is not None else None
        kept.append(_fill_question(q or Question(), q_in, pos))
    a.questions = kept


def get_question(a: Assessment, question_id: int) -> Question:
    for q in a.questions:
        if q.id == question_id:
            return q
    raise NotFound("Question not found")


def add_question(db: Session, a: Assessment, q_in: QuestionIn) -> Question:
    _require_editable(a, questions_changed=True)
    q = _fill_question(Question(), q_in, len(a.questions))
    a.questions.append(q)
    _save(db, a)
    return q


def update_question(db: Session, a: Assessment, question_id: int, q_in: QuestionIn) -> Question:
    _require_editable(a, questions_changed=True)
    q = get_question(a, question_id)
    _fill_question(q, q_in, q.position)
    _save(db, a)
    return q


def remove_question(db: Session, a: Assessment, question_id: int) -> None:
    _require_editable(a, questions_changed=True)
    q = get_question(a, question_id)
    if len(a.questions) == 1:
        raise InvalidDefinition("An assessment needs at least one question")
    a.questions.remove(q)
    for pos, other in enumerate(a.questions):
        other.position = pos
    _save(db, a)


# -------------------------
# Derived fields & validation
# -------------------------

def recompute_derived(a: Assessment) -> None:
    """Totals and pass thresholds always come from the current question list."""
    a.total_questions = len(a.questions)
    a.total_marks = float(sum((q.points or 1) for q in a.questions))

    if a.kind == KIND_EXAM:
        if a.total_marks:
            a.passing_percentage = round_half_up(a.passing_marks / a.total_marks * 100)
        else:
            a.passing_percentage = 0
    else:
        a.passing_marks = a.total_marks * a.passing_percentage / 100


def _validate(a: Assessment) -> None:
    if not a.duration or a.duration <= 0:
        raise InvalidDefinition("Duration must be a positive number of minutes")
    if not a.questions:
        raise InvalidDefinition("At least one question is required")
    if a.kind == KIND_LESSON_QUIZ and a.lesson_id is None:
        raise InvalidDefinition("Lesson quizzes need a lesson_id")
    if a.start_date and a.end_date and a.start_date >= a.end_date:
        raise InvalidDefinition("start_date must be before end_date")
    if a.kind == KIND_EXAM and not a.passing_marks:
        raise InvalidDefinition("Exams need passing_marks greater than zero")
    if a.kind == KIND_EXAM and a.passing_marks > a.total_marks:
        raise InvalidDefinition("passing_marks cannot exceed total marks")


def _require_editable(a: Assessment, questions_changed: bool) -> None:
    if a.status == STATUS_ARCHIVED:
        raise PolicyViolation("Archived assessments cannot be edited", "not_editable")
    if questions_changed and a.status != STATUS_DRAFT:
        raise PolicyViolation(
            "Questions can only be edited while the assessment is a draft; unpublish it first",
            "not_editable",
        )


def _save(db: Session, a: Assessment) -> None:
    recompute_derived(a)
    _validate(a)
    a.updated_at = utcnow()
    db.commit()
    db.refresh(a)


# -------------------------
# Assessment definition
# -------------------------

def get_assessment(db: Session, assessment_id: int) -> Optional[Assessment]:
    return db.get(Assessment, assessment_id)


def require_assessment(db: Session, assessment_id: int) -> Assessment:
    a = get_assessment(db, assessment_id)
    if not a:
        raise NotFound("Assessment not found")
    return a


def get_lesson_quiz(db: Session, lesson_id: int) -> Optional[Assessment]:
    stmt = select(Assessment).where(
        Assessment.kind == KIND_LESSON_QUIZ, Assessment.lesson_id == lesson_id
    )
    return db.scalars(stmt).first()


def list_by_course(db: Session, course_id: int, include_unpublished: bool) -> list[Assessment]:
    stmt = select(Assessment).where(Assessment.course_id == course_id)
    if not include_unpublished:
        stmt = stmt.where(Assessment.status == STATUS_PUBLISHED)
    return list(db.scalars(stmt.order_by(Assessment.id.desc())))


def list_published(db: Session) -> list[Assessment]:
    stmt = select(Assessment).where(Assessment.status == STATUS_PUBLISHED)
    return list(db.scalars(stmt.order_by(Assessment.id.desc())))


def create_assessment(db: Session, owner_id: int, payload: AssessmentIn) -> Assessment:
    if payload.kind == KIND_LESSON_QUIZ and payload.lesson_id is not None:
        if get_lesson_quiz(db, payload.lesson_id):
            raise InvalidDefinition("This lesson already has a quiz")

    now = utcnow()
    a = Assessment(
        kind=payload.kind,
        course_id=payload.course_id,
        lesson_id=payload.lesson_id,
        owner_id=owner_id,
        status=STATUS_DRAFT,
        attempt_count=0,
        average_score=0.0,
        is_ai_generated=payload.is_ai_generated,
        ai_prompt=payload.ai_prompt,
        created_at=now,
        updated_at=now,
    )
    for field in _SETTING_FIELDS:
        setattr(a, field, getattr(payload, field))

    if payload.kind == KIND_EXAM:
        a.start_date = to_naive_utc(payload.start_date)
        a.end_date = to_naive_utc(payload.end_date)
    a.passing_percentage = (
        payload.passing_percentage
        if payload.passing_percentage is not None
        else DEFAULT_QUIZ_PASSING_PERCENTAGE
    )

    _sync_questions(a, payload.questions)
    recompute_derived(a)
    _validate(a)

    db.add(a)
    db.commit()
    db.refresh(a)
    logger.info("Created %s %s for course %s (%s questions)", a.kind, a.id, a.course_id, a.total_questions)
    return a


def update_assessment(db: Session, a: Assessment, payload: AssessmentUpdateIn) -> Assessment:
    data = payload.model_dump(exclude_unset=True)
    data.pop("total_marks", None)

    questions = data.pop("questions", None)
    _require_editable(a, questions_changed=questions is not None)

    for field in _SETTING_FIELDS:
        if field in data and data[field] is not None:
            setattr(a, field, data[field])
    # max_attempts may be explicitly cleared to mean unlimited
    if "max_attempts" in data:
        a.max_attempts = data["max_attempts"]

    if a.kind == KIND_EXAM:
        if "start_date" in data:
            a.start_date = to_naive_utc(data["start_date"])
        if "end_date" in data:
            a.end_date = to_naive_utc(data["end_date"])
    elif data.get("passing_percentage") is not None:
        a.passing_percentage = data["passing_percentage"]

    if questions is not None:
        _sync_questions(a, payload.questions)

    _save(db, a)
    logger.info("Updated assessment %s", a.id)
    return a


def set_status(db: Session, a: Assessment, target: str) -> Assessment:
    allowed = {
        STATUS_PUBLISHED: {STATUS_DRAFT},
        STATUS_DRAFT: {STATUS_PUBLISHED},
        STATUS_ARCHIVED: {STATUS_DRAFT, STATUS_PUBLISHED},
    }
    if a.status == target:
        return a
    if a.status not in allowed[target]:
        raise PolicyViolation(f"Cannot move assessment from {a.status} to {target}", "invalid_transition")

    if target == STATUS_PUBLISHED:
        if not a.questions:
            raise InvalidDefinition("Cannot publish an assessment without questions")
        if a.kind == KIND_EXAM and a.end_date is not None and a.end_date <= utcnow():
            raise PolicyViolation("Scheduling window has already closed", "window_closed")

    a.status = target
    a.updated_at = utcnow()
    db.commit()
    db.refresh(a)
    logger.info("Assessment %s is now %s", a.id, a.status)
    return a


def delete_assessment(db: Session, a: Assessment) -> None:
    """Stage the definition's deletion; the caller commits."""
    db.delete(a)
