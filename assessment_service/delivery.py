"""Building what a requester is allowed to see of an assessment.

Owners get the full definition. Everyone else gets the safe view: option
objects reduced to ``id`` and ``text``, no explanations, optionally shuffled.
"""

import random
from typing import Optional

from .grading import question_snapshot
from .models import Assessment, Question
from .schemas import (
    AssessmentOut,
    OptionOut,
    QuestionOut,
    ReviewItemOut,
    SafeAssessmentOut,
    SafeOptionOut,
    SafeQuestionOut,
)


def is_owner(a: Assessment, user_id: int) -> bool:
    return a.owner_id == user_id


def remaining_attempts(a: Assessment, attempts_used: int) -> Optional[int]:
    if not a.allow_retake:
        return 0 if attempts_used else 1
    if a.max_attempts is None:
        return None
    return max(0, a.max_attempts - attempts_used)


def question_out(q: Question) -> QuestionOut:
    return QuestionOut(
        id=q.id,
        position=q.position,
        text=q.text,
        options=[OptionOut(id=o.id, text=o.text, is_correct=o.is_correct) for o in q.options],
        explanation=q.explanation or "",
        points=q.points,
        difficulty=q.difficulty,
        tags=list(q.tags or []),
    )


def full_view(a: Assessment) -> AssessmentOut:
    return AssessmentOut(
        id=a.id,
        kind=a.kind,
        course_id=a.course_id,
        lesson_id=a.lesson_id,
        owner_id=a.owner_id,
        title=a.title,
        description=a.description or "",
        instructions=a.instructions or "",
        exam_type=a.exam_type,
        duration=a.duration,
        total_marks=a.total_marks,
        total_questions=a.total_questions,
        passing_marks=a.passing_marks,
        passing_percentage=a.passing_percentage,
        questions=[question_out(q) for q in a.questions],
        shuffle_questions=a.shuffle_questions,
        shuffle_options=a.shuffle_options,
        show_result_immediately=a.show_result_immediately,
        show_correct_answers=a.show_correct_answers,
        allow_retake=a.allow_retake,
        max_attempts=a.max_attempts,
        negative_marking=a.negative_marking,
        is_free=a.is_free,
        start_date=a.start_date,
        end_date=a.end_date,
        is_scheduled=a.is_scheduled,
        status=a.status,
        attempt_count=a.attempt_count,
        average_score=a.average_score,
        is_ai_generated=a.is_ai_generated,
        created_at=a.created_at,
        updated_at=a.updated_at,
    )


def _safe_question(q: Question, shuffle_options: bool) -> SafeQuestionOut:
    options = [SafeOptionOut(id=o.id, text=o.text) for o in q.options]
    if shuffle_options:
        random.shuffle(options)
    return SafeQuestionOut(id=q.id, text=q.text, options=options, points=q.points)


def safe_view(a: Assessment, attempts_used: int = 0) -> SafeAssessmentOut:
    questions = [_safe_question(q, a.shuffle_options) for q in a.questions]
    if a.shuffle_questions:
        random.shuffle(questions)

    return SafeAssessmentOut(
        id=a.id,
        kind=a.kind,
        course_id=a.course_id,
        lesson_id=a.lesson_id,
        title=a.title,
        description=a.description or "",
        instructions=a.instructions or "",
        duration=a.duration,
        total_marks=a.total_marks,
        total_questions=a.total_questions,
        passing_marks=a.passing_marks,
        passing_percentage=a.passing_percentage,
        start_date=a.start_date,
        end_date=a.end_date,
        questions=questions,
        attempts_used=attempts_used,
        remaining_attempts=remaining_attempts(a, attempts_used),
    )


# -------------------------
# Post-submission review
# -------------------------

def review_item(
    question_id: int,
    snapshot: dict,
    selected_option: int,
    is_correct: bool,
    points_earned: float,
    reveal: bool,
) -> ReviewItemOut:
    item = ReviewItemOut(
        question_id=question_id,
        question=snapshot.get("question", ""),
        options=[o["text"] for o in snapshot.get("options", [])],
        selected_option=selected_option,
        is_correct=is_correct,
        points_earned=points_earned,
        points_possible=snapshot.get("points", 1),
    )
    if reveal:
        item.correct_option = snapshot.get("correct_option")
        item.explanation = snapshot.get("explanation", "")
    return item


def build_review(a: Assessment, answers, reveal: bool) -> list[ReviewItemOut]:
    """
    `answers` are stored answer rows or graded answers. Exam answers carry a
    frozen question snapshot; quiz answers fall back to the live question.
    """
    by_id = {q.id: q for q in a.questions}
    items: list[ReviewItemOut] = []
    for ans in answers:
        snap = getattr(ans, "question_snapshot", None) or getattr(ans, "snapshot", None)
        if snap is None:
            q = by_id.get(ans.question_id)
            if q is None:
                continue
            snap = question_snapshot(q)
        items.append(
            review_item(ans.question_id, snap, ans.selected_option, ans.is_correct, ans.points_earned, reveal)
        )
    return items
