"""Scoring of a submitted answer set against an assessment's questions.

Nothing here touches the database: callers pass the question objects of the
authoritative definition (anything with ``id``, ``text``, ``options``,
``points``, ``explanation``, ``difficulty``) and the submitted answers
(anything with ``question_id``, ``selected_option``, ``selected_option_id``,
``time_taken``).
"""

import math
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

UNANSWERED = -1
NEGATIVE_MARKING_FRACTION = 0.25


def round_half_up(x: float) -> int:
    # builtin round() rounds halves to even; scores and percentiles round halves up
    return int(math.floor(x + 0.5))


@dataclass
class GradedAnswer:
    question_id: int
    selected_option: int
    selected_option_id: Optional[int]
    is_correct: bool
    points_earned: float
    answered: bool
    time_taken: int = 0
    snapshot: Optional[dict[str, Any]] = None


@dataclass
class GradeResult:
    answers: list[GradedAnswer] = field(default_factory=list)
    raw_score: float = 0.0
    score: float = 0.0
    percentage: int = 0
    correct_count: int = 0
    incorrect_count: int = 0
    unanswered_count: int = 0


def correct_index(question) -> int:
    for idx, opt in enumerate(question.options):
        if opt.is_correct:
            return idx
    return UNANSWERED


def question_snapshot(question) -> dict[str, Any]:
    """Frozen copy stored on exam answers so later edits never rewrite history."""
    return {
        "question": question.text,
        "options": [{"text": o.text} for o in question.options],
        "correct_option": correct_index(question),
        "explanation": question.explanation or "",
        "points": question.points or 1,
        "difficulty": question.difficulty,
    }


def resolve_selection(question, selected_option: int, selected_option_id: Optional[int]) -> Optional[int]:
    """
    Map a submission onto an index in the stored option order.
    Option ids win over indexes since delivery may have shuffled the options.
    Returns None for a selection that points at no option.
    """
    if selected_option_id is not None:
        for idx, opt in enumerate(question.options):
            if opt.id == selected_option_id:
                return idx
        return None
    if selected_option == UNANSWERED:
        return UNANSWERED
    if 0 <= selected_option < len(question.options):
        return selected_option
    return None


def grade_answer(question, answer, negative_marking: bool) -> GradedAnswer:
    answered = answer.selected_option_id is not None or answer.selected_option != UNANSWERED

    if question is None:
        return GradedAnswer(
            question_id=answer.question_id,
            selected_option=answer.selected_option,
            selected_option_id=answer.selected_option_id,
            is_correct=False,
            points_earned=0.0,
            answered=answered,
            time_taken=answer.time_taken,
        )

    points = question.points or 1
    idx = resolve_selection(question, answer.selected_option, answer.selected_option_id)
    is_correct = idx is not None and idx != UNANSWERED and idx == correct_index(question)

    if is_correct:
        earned = float(points)
    elif answered and negative_marking:
        earned = -NEGATIVE_MARKING_FRACTION * points
    else:
        earned = 0.0

    return GradedAnswer(
        question_id=question.id,
        selected_option=idx if idx is not None else answer.selected_option,
        selected_option_id=answer.selected_option_id,
        is_correct=is_correct,
        points_earned=earned,
        answered=answered,
        time_taken=answer.time_taken,
    )


def grade_submission(
    questions: Iterable,
    answers: Iterable,
    total_marks: float,
    negative_marking: bool = False,
    snapshot: bool = False,
) -> GradeResult:
    by_id = {q.id: q for q in questions}
    result = GradeResult()
    seen: set[int] = set()

    for ans in answers:
        # one answer per question; repeats would otherwise score twice
        if ans.question_id in seen:
            continue
        seen.add(ans.question_id)

        question = by_id.get(ans.question_id)
        graded = grade_answer(question, ans, negative_marking)
        if snapshot and question is not None:
            graded.snapshot = question_snapshot(question)
        result.answers.append(graded)

        if graded.is_correct:
            result.correct_count += 1
        elif graded.answered:
            result.incorrect_count += 1
        else:
            result.unanswered_count += 1

    result.unanswered_count += sum(1 for qid in by_id if qid not in seen)

    result.raw_score = sum(a.points_earned for a in result.answers)
    result.score = max(0.0, result.raw_score)
    result.percentage = round_half_up(result.score / total_marks * 100) if total_marks else 0
    return result
