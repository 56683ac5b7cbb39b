from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

KIND_PATTERN = "^(exam|lesson_quiz)$"
DIFFICULTY_PATTERN = "^(easy|medium|hard)$"
EXAM_TYPE_PATTERN = "^(midterm|final|quiz|practice|assessment)$"


# -------------------------
# Question bank
# -------------------------

class OptionIn(BaseModel):
    id: Optional[int] = None
    text: str = Field(min_length=1)
    is_correct: bool = False


class QuestionIn(BaseModel):
    id: Optional[int] = None
    text: str = Field(min_length=1)
    options: list[OptionIn] = Field(min_length=2)
    explanation: str = ""
    points: float = Field(default=1, gt=0)
    difficulty: str = Field(default="medium", pattern=DIFFICULTY_PATTERN)
    tags: list[str] = Field(default_factory=list)

    @field_validator("options")
    @classmethod
    def at_least_one_correct(cls, v: list[OptionIn]) -> list[OptionIn]:
        if not any(o.is_correct for o in v):
            raise ValueError("At least one option must be marked correct.")
        return v


class OptionOut(BaseModel):
    id: int
    text: str
    is_correct: bool


class QuestionOut(BaseModel):
    id: int
    position: int
    text: str
    options: list[OptionOut]
    explanation: str
    points: float
    difficulty: str
    tags: list[str]


# -------------------------
# Assessment definition
# -------------------------

class AssessmentIn(BaseModel):
    kind: str = Field(default="exam", pattern=KIND_PATTERN)
    course_id: int
    lesson_id: Optional[int] = None
    title: str = Field(min_length=1, max_length=255)
    description: str = ""
    instructions: str = ""
    exam_type: str = Field(default="assessment", pattern=EXAM_TYPE_PATTERN)
    duration: int = Field(description="Minutes; must be positive")
    passing_marks: float = Field(default=0, ge=0)
    passing_percentage: Optional[int] = Field(
        default=None, ge=0, le=100,
        description="Lesson quizzes only; derived from passing_marks for exams",
    )
    # derived server-side, accepted and ignored
    total_marks: Optional[float] = None

    questions: list[QuestionIn] = Field(default_factory=list)

    shuffle_questions: bool = False
    shuffle_options: bool = False
    show_result_immediately: bool = False
    show_correct_answers: bool = True
    allow_retake: bool = False
    max_attempts: Optional[int] = Field(default=1, ge=1, description="None = unlimited")
    negative_marking: bool = False
    is_free: bool = False

    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    is_ai_generated: bool = False
    ai_prompt: str = ""


class AssessmentUpdateIn(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    instructions: Optional[str] = None
    exam_type: Optional[str] = Field(default=None, pattern=EXAM_TYPE_PATTERN)
    duration: Optional[int] = None
    passing_marks: Optional[float] = Field(default=None, ge=0)
    passing_percentage: Optional[int] = Field(default=None, ge=0, le=100)
    total_marks: Optional[float] = None

    questions: Optional[list[QuestionIn]] = None

    shuffle_questions: Optional[bool] = None
    shuffle_options: Optional[bool] = None
    show_result_immediately: Optional[bool] = None
    show_correct_answers: Optional[bool] = None
    allow_retake: Optional[bool] = None
    max_attempts: Optional[int] = Field(default=None, ge=1)
    negative_marking: Optional[bool] = None
    is_free: Optional[bool] = None

    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class AssessmentOut(BaseModel):
    id: int
    kind: str
    course_id: int
    lesson_id: Optional[int]
    owner_id: int
    title: str
    description: str
    instructions: str
    exam_type: str
    duration: int
    total_marks: float
    total_questions: int
    passing_marks: float
    passing_percentage: int
    questions: list[QuestionOut]
    shuffle_questions: bool
    shuffle_options: bool
    show_result_immediately: bool
    show_correct_answers: bool
    allow_retake: bool
    max_attempts: Optional[int]
    negative_marking: bool
    is_free: bool
    start_date: Optional[datetime]
    end_date: Optional[datetime]
    is_scheduled: bool
    status: str
    attempt_count: int
    average_score: float
    is_ai_generated: bool
    created_at: datetime
    updated_at: datetime


class StatusOut(BaseModel):
    id: int
    status: str


# -------------------------
# Secure delivery
# -------------------------

class SafeOptionOut(BaseModel):
    id: int
    text: str


class SafeQuestionOut(BaseModel):
    id: int
    text: str
    options: list[SafeOptionOut]
    points: float


class SafeAssessmentOut(BaseModel):
    id: int
    kind: str
    course_id: int
    lesson_id: Optional[int]
    title: str
    description: str
    instructions: str
    duration: int
    total_marks: float
    total_questions: int
    passing_marks: float
    passing_percentage: int
    start_date: Optional[datetime]
    end_date: Optional[datetime]
    questions: list[SafeQuestionOut]
    attempts_used: int
    remaining_attempts: Optional[int]  # None = unlimited


class AssessmentListItemOut(BaseModel):
    id: int
    kind: str
    course_id: int
    title: str
    status: str
    duration: int
    total_questions: int
    start_date: Optional[datetime]
    end_date: Optional[datetime]
    is_scheduled: bool
    attempt_count: int
    last_attempt: Optional["AttemptSummaryOut"]
    is_completed: bool


class GenerateQuestionsIn(BaseModel):
    topic: str = Field(min_length=1)
    count: int = Field(default=5, ge=1, le=20)
    difficulty: str = Field(default="medium", pattern=DIFFICULTY_PATTERN)
    lesson_description: str = ""
    custom_instructions: str = ""


class GenerateQuestionsOut(BaseModel):
    count: int
    questions: list[QuestionIn]


# -------------------------
# Attempts
# -------------------------

class EligibilityOut(BaseModel):
    can_attempt: bool
    existing_attempts: int
    max_attempts: Optional[int]
    reason: Optional[str]
    message: str


class AttemptStartOut(BaseModel):
    attempt_id: int
    attempt_number: int
    started_at: datetime
    # lesson quizzes hand out the question payload with the start response
    assessment: Optional[SafeAssessmentOut] = None


class SubmitAnswerIn(BaseModel):
    question_id: int
    selected_option: int = Field(default=-1, ge=-1, description="Index in stored order; -1 = unanswered")
    selected_option_id: Optional[int] = None
    time_taken: int = Field(default=0, ge=0)


class SubmitAttemptIn(BaseModel):
    answers: list[SubmitAnswerIn]
    time_spent: int = Field(default=0, ge=0, description="Seconds, reporting only")


class ReviewItemOut(BaseModel):
    question_id: int
    question: str
    options: list[str]
    selected_option: int
    is_correct: bool
    points_earned: float
    points_possible: float
    correct_option: Optional[int] = None
    explanation: Optional[str] = None


class SubmitAttemptOut(BaseModel):
    attempt_id: int
    attempt_number: int
    score: float
    percentage: int
    is_passed: bool
    total_marks: float
    passing_marks: float
    passing_percentage: int
    correct_count: int
    incorrect_count: int
    unanswered_count: int
    percentile: Optional[int]
    review: Optional[list[ReviewItemOut]]
    can_retake: bool


class AttemptSummaryOut(BaseModel):
    attempt_id: int
    user_id: int
    attempt_number: int
    status: str
    score: float
    percentage: int
    is_passed: bool
    percentile: Optional[int]
    started_at: datetime
    submitted_at: Optional[datetime]
    tab_switch_count: int


class IntegrityEventIn(BaseModel):
    kind: str = Field(default="tab_switch", pattern="^(tab_switch|visibility_lost|window_blur)$")


class IntegrityEventOut(BaseModel):
    attempt_id: int
    tab_switch_count: int
    message: str


class IntegrityEventItem(BaseModel):
    kind: str
    occurred_at: datetime


class AttemptReportOut(BaseModel):
    attempt_id: int
    assessment_id: int
    kind: str
    title: str
    user_id: int
    attempt_number: int
    status: str
    score: float
    percentage: int
    is_passed: bool
    total_marks: float
    passing_percentage: int
    total_questions: int
    correct_count: int
    incorrect_count: int
    unanswered_count: int
    time_spent: int
    started_at: datetime
    submitted_at: Optional[datetime]
    percentile: Optional[int]
    review: Optional[list[ReviewItemOut]]
    # owner only
    tab_switch_count: Optional[int] = None
    integrity_events: Optional[list[IntegrityEventItem]] = None


class StatsOut(BaseModel):
    assessment_id: int
    attempt_count: int
    average_score: float
    pass_rate: float
    highest_score: Optional[float]
    lowest_score: Optional[float]


AssessmentListItemOut.model_rebuild()
