from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shared.database import Base
from .grading import UNANSWERED
from .models import KIND_EXAM, KIND_LESSON_QUIZ

ATTEMPT_IN_PROGRESS = "in_progress"
ATTEMPT_SUBMITTED = "submitted"



class Attempt(Base):
    __tablename__ = "attempt"
    # hard backstop for the count-then-insert race in start_attempt
    __table_args__ = (
        UniqueConstraint("user_id", "assessment_id", "attempt_number", name="uq_attempt_user_assessment_number"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    kind: Mapped[str] = mapped_column(String(20))
    user_id: Mapped[int] = mapped_column(Integer, index=True)
    assessment_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("assessment.id", ondelete="CASCADE"), index=True
    )
    course_id: Mapped[int] = mapped_column(Integer, index=True)
    lesson_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    attempt_number: Mapped[int] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(String(20), default=ATTEMPT_IN_PROGRESS, index=True)

    score: Mapped[float] = mapped_column(Float, default=0)
    percentage: Mapped[int] = mapped_column(Integer, default=0)
    is_passed: Mapped[bool] = mapped_column(Boolean, default=False)
    correct_count: Mapped[int] = mapped_column(Integer, default=0)
    incorrect_count: Mapped[int] = mapped_column(Integer, default=0)
    unanswered_count: Mapped[int] = mapped_column(Integer, default=0)

    started_at: Mapped[datetime] = mapped_column(DateTime)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    time_spent: Mapped[int] = mapped_column(Integer, default=0)  # seconds, client reported

    percentile: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tab_switch_count: Mapped[int] = mapped_column(Integer, default=0)

    answers: Mapped[list["AttemptAnswer"]] = relationship(
        back_populates="attempt",
        order_by="AttemptAnswer.position",
        cascade="all, delete-orphan",
    )
    integrity_events: Mapped[list["IntegrityEvent"]] = relationship(
        back_populates="attempt",
        order_by="IntegrityEvent.occurred_at",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"polymorphic_on": "kind", "polymorphic_identity": "attempt"}

    @property
    def is_submitted(self) -> bool:
        return self.status == ATTEMPT_SUBMITTED


class ExamAttempt(Attempt):
    __mapper_args__ = {"polymorphic_identity": KIND_EXAM}


class QuizAttempt(Attempt):
    __mapper_args__ = {"polymorphic_identity": KIND_LESSON_QUIZ}


class AttemptAnswer(Base):
    __tablename__ = "attempt_answer"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    attempt_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("attempt.id", ondelete="CASCADE"), index=True
    )
    position: Mapped[int] = mapped_column(Integer, default=0)
    # not a foreign key: unknown ids are recorded as-is and questions may be edited later
    question_id: Mapped[int] = mapped_column(Integer, index=True)
    selected_option: Mapped[int] = mapped_column(Integer, default=UNANSWERED)
    selected_option_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_correct: Mapped[bool] = mapped_column(Boolean, default=False)
    points_earned: Mapped[float] = mapped_column(Float, default=0)
    time_taken: Mapped[int] = mapped_column(Integer, default=0)
    question_snapshot: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    attempt: Mapped[Attempt] = relationship(back_populates="answers")


class IntegrityEvent(Base):
    __tablename__ = "integrity_event"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    attempt_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("attempt.id", ondelete="CASCADE"), index=True
    )
    kind: Mapped[str] = mapped_column(String(30), default="tab_switch")
    occurred_at: Mapped[datetime] = mapped_column(DateTime)

    attempt: Mapped[Attempt] = relationship(back_populates="integrity_events")


ATTEMPT_CLASSES = {
    KIND_EXAM: ExamAttempt,
    KIND_LESSON_QUIZ: QuizAttempt,
}
