"""Rules that differ between exams and lesson quizzes, plus the retake rule both share."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .errors import PolicyViolation
from .models import KIND_EXAM, STATUS_PUBLISHED, Assessment

logger = logging.getLogger(__name__)


@dataclass
class Eligibility:
    can_attempt: bool
    existing_attempts: int
    max_attempts: Optional[int]
    reason: Optional[str] = None
    message: str = "You can start this assessment"


class ExamPolicy:
    snapshots_questions = True
    tracks_percentile = True
    tracks_integrity = True
    records_lesson_progress = False

    def check_window(self, a: Assessment, now: datetime) -> None:
        if a.start_date is not None and now < a.start_date:
            raise PolicyViolation("Exam has not started yet", "not_yet_open")
        if a.end_date is not None and now > a.end_date:
            raise PolicyViolation("Exam has ended", "window_closed")

    def allows_free_access(self, a: Assessment) -> bool:
        return False

    def is_passed(self, a: Assessment, score: float, percentage: int) -> bool:
        return score >= a.passing_marks

    def review_on_submit(self, a: Assessment) -> bool:
        return a.show_result_immediately and a.show_correct_answers


class LessonQuizPolicy:
    snapshots_questions = False
    tracks_percentile = False
    tracks_integrity = False
    records_lesson_progress = True

    def check_window(self, a: Assessment, now: datetime) -> None:
        # quizzes are tied to a lesson, not a schedule
        return None

    def allows_free_access(self, a: Assessment) -> bool:
        return a.is_free

    def is_passed(self, a: Assessment, score: float, percentage: int) -> bool:
        return percentage >= a.passing_percentage

    def review_on_submit(self, a: Assessment) -> bool:
        return a.show_correct_answers


_EXAM = ExamPolicy()
_LESSON_QUIZ = LessonQuizPolicy()


def policy_for(a: Assessment):
    return _EXAM if a.kind == KIND_EXAM else _LESSON_QUIZ


def check_retake(a: Assessment, existing_attempts: int) -> Eligibility:
    if not a.allow_retake and existing_attempts > 0:
        return Eligibility(
            can_attempt=False,
            existing_attempts=existing_attempts,
            max_attempts=a.max_attempts,
            reason="already_attempted",
            message="You have already attempted this assessment",
        )
    if a.allow_retake and a.max_attempts is not None and existing_attempts >= a.max_attempts:
        return Eligibility(
            can_attempt=False,
            existing_attempts=existing_attempts,
            max_attempts=a.max_attempts,
            reason="max_attempts_reached",
            message=f"Maximum attempts ({a.max_attempts}) reached",
        )
    return Eligibility(can_attempt=True, existing_attempts=existing_attempts, max_attempts=a.max_attempts)


def can_retake_after(a: Assessment, attempts_after: int) -> bool:
    return check_retake(a, attempts_after).can_attempt


def require_startable(a: Assessment, existing_attempts: int, now: datetime) -> None:
    """Published, inside the window and allowed by the retake rule. Enrollment is checked by the caller."""
    if a.status != STATUS_PUBLISHED:
        raise PolicyViolation("Assessment is not published", "not_published")
    policy_for(a).check_window(a, now)

    verdict = check_retake(a, existing_attempts)
    if not verdict.can_attempt:
        logger.warning(
            "Attempt refused for assessment %s: %s (%s prior)", a.id, verdict.reason, existing_attempts
        )
        raise PolicyViolation(verdict.message, verdict.reason)


def require_enrollment(courses, a: Assessment, user_id: int) -> None:
    if policy_for(a).allows_free_access(a):
        return
    if not courses.has_active_enrollment(user_id, a.course_id):
        logger.warning("User %s is not enrolled in course %s", user_id, a.course_id)
        raise PolicyViolation("You must be enrolled in this course", "not_enrolled")
