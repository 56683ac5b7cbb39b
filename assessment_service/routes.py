from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from shared.database import db_dependency
from . import attempts as attempt_ops
from . import crud
from .collaborators import CourseDirectory, require_course_owner
from .delivery import full_view, is_owner, question_out, safe_view
from .errors import NotFound, PolicyViolation, Unauthorized
from .identity import current_user_id
from .integrity import log_event
from .models import STATUS_ARCHIVED, STATUS_DRAFT, STATUS_PUBLISHED, Assessment
from .policy import require_enrollment
from .question_gen import QuestionGenerator
from .schemas import (
    AssessmentIn,
    AssessmentListItemOut,
    AssessmentOut,
    AssessmentUpdateIn,
    AttemptReportOut,
    AttemptStartOut,
    AttemptSummaryOut,
    EligibilityOut,
    GenerateQuestionsIn,
    GenerateQuestionsOut,
    IntegrityEventIn,
    IntegrityEventOut,
    QuestionIn,
    QuestionOut,
    SafeAssessmentOut,
    StatsOut,
    StatusOut,
    SubmitAttemptIn,
    SubmitAttemptOut,
)
from .stats import summary


def build_router(SessionLocal, courses: CourseDirectory, question_generator: QuestionGenerator):
    router = APIRouter()
    get_db = db_dependency(SessionLocal)

    def owned_assessment(db: Session, assessment_id: int, uid: int) -> Assessment:
        a = crud.require_assessment(db, assessment_id)
        if not is_owner(a, uid):
            raise Unauthorized("Not authorized to manage this assessment")
        return a

    def visible_assessment(db: Session, assessment_id: int, uid: int) -> Assessment:
        """Owners see anything they own; everyone else only published work in courses they can access."""
        a = crud.require_assessment(db, assessment_id)
        if is_owner(a, uid):
            return a
        if a.status != STATUS_PUBLISHED:
            raise PolicyViolation("Assessment is not published", "not_published")
        require_enrollment(courses, a, uid)
        return a

    def render(db: Session, a: Assessment, uid: int):
        if is_owner(a, uid):
            return full_view(a)
        return safe_view(a, attempt_ops.count_attempts(db, uid, a.id))

    # -------------------------
    # Authoring
    # -------------------------

    @router.post("/assessments", response_model=AssessmentOut)
    def create(payload: AssessmentIn, request: Request, db: Session = Depends(get_db)):
        uid = current_user_id(request)
        require_course_owner(courses, payload.course_id, uid)
        return full_view(crud.create_assessment(db, uid, payload))

    @router.post("/assessments/generate-questions", response_model=GenerateQuestionsOut)
    def generate_questions(payload: GenerateQuestionsIn):
        drafts = question_generator.generate(payload)
        return GenerateQuestionsOut(count=len(drafts), questions=drafts)

    @router.get("/assessments/published", response_model=list[AssessmentListItemOut])
    def published(request: Request, db: Session = Depends(get_db)):
        uid = current_user_id(request)
        return attempt_ops.catalog(db, crud.list_published(db), uid)

    @router.get("/assessments/course/{course_id}", response_model=list[AssessmentListItemOut])
    def by_course(course_id: int, request: Request, db: Session = Depends(get_db)):
        uid = current_user_id(request)
        include_unpublished = courses.course_owner(course_id) == uid
        items = crud.list_by_course(db, course_id, include_unpublished)
        return attempt_ops.catalog(db, items, uid)

    @router.put("/assessments/{assessment_id}", response_model=AssessmentOut)
    def update(assessment_id: int, payload: AssessmentUpdateIn, request: Request, db: Session = Depends(get_db)):
        a = owned_assessment(db, assessment_id, current_user_id(request))
        return full_view(crud.update_assessment(db, a, payload))

    @router.delete("/assessments/{assessment_id}", response_model=dict)
    def remove(assessment_id: int, request: Request, db: Session = Depends(get_db)):
        a = owned_assessment(db, assessment_id, current_user_id(request))
        attempt_ops.delete_assessment(db, a)
        return {"deleted": True}

    def _transition(assessment_id: int, request: Request, db: Session, target: str) -> StatusOut:
        a = owned_assessment(db, assessment_id, current_user_id(request))
        a = crud.set_status(db, a, target)
        return StatusOut(id=a.id, status=a.status)

    @router.post("/assessments/{assessment_id}/publish", response_model=StatusOut)
    def publish(assessment_id: int, request: Request, db: Session = Depends(get_db)):
        return _transition(assessment_id, request, db, STATUS_PUBLISHED)

    @router.post("/assessments/{assessment_id}/unpublish", response_model=StatusOut)
    def unpublish(assessment_id: int, request: Request, db: Session = Depends(get_db)):
        return _transition(assessment_id, request, db, STATUS_DRAFT)

    @router.post("/assessments/{assessment_id}/archive", response_model=StatusOut)
    def archive(assessment_id: int, request: Request, db: Session = Depends(get_db)):
        return _transition(assessment_id, request, db, STATUS_ARCHIVED)

    # -------------------------
    # Question bank
    # -------------------------

    @router.post("/assessments/{assessment_id}/questions", response_model=QuestionOut)
    def add_q(assessment_id: int, payload: QuestionIn, request: Request, db: Session = Depends(get_db)):
        a = owned_assessment(db, assessment_id, current_user_id(request))
        return question_out(crud.add_question(db, a, payload))

    @router.put("/assessments/{assessment_id}/questions/{question_id}", response_model=QuestionOut)
    def update_q(
        assessment_id: int, question_id: int, payload: QuestionIn, request: Request, db: Session = Depends(get_db)
    ):
        a = owned_assessment(db, assessment_id, current_user_id(request))
        return question_out(crud.update_question(db, a, question_id, payload))

    @router.delete("/assessments/{assessment_id}/questions/{question_id}", response_model=dict)
    def remove_q(assessment_id: int, question_id: int, request: Request, db: Session = Depends(get_db)):
        a = owned_assessment(db, assessment_id, current_user_id(request))
        crud.remove_question(db, a, question_id)
        return {"deleted": True}

    # -------------------------
    # Delivery
    # -------------------------

    @router.get("/assessments/{assessment_id}", response_model=AssessmentOut | SafeAssessmentOut)
    def get_one(assessment_id: int, request: Request, db: Session = Depends(get_db)):
        uid = current_user_id(request)
        return render(db, visible_assessment(db, assessment_id, uid), uid)

    @router.get("/assessments/{assessment_id}/full", response_model=AssessmentOut)
    def get_full(assessment_id: int, request: Request, db: Session = Depends(get_db)):
        return full_view(owned_assessment(db, assessment_id, current_user_id(request)))

    @router.get("/lessons/{lesson_id}/quiz", response_model=AssessmentOut | SafeAssessmentOut)
    def lesson_quiz(lesson_id: int, request: Request, db: Session = Depends(get_db)):
        uid = current_user_id(request)
        a = crud.get_lesson_quiz(db, lesson_id)
        if not a:
            raise NotFound("No quiz for this lesson")
        return render(db, visible_assessment(db, a.id, uid), uid)

    # -------------------------
    # Attempts
    # -------------------------

    @router.get("/assessments/{assessment_id}/eligibility", response_model=EligibilityOut)
    def eligibility(assessment_id: int, request: Request, db: Session = Depends(get_db)):
        uid = current_user_id(request)
        a = crud.require_assessment(db, assessment_id)
        e = attempt_ops.check_eligibility(db, a, uid)
        return EligibilityOut(
            can_attempt=e.can_attempt,
            existing_attempts=e.existing_attempts,
            max_attempts=e.max_attempts,
            reason=e.reason,
            message=e.message,
        )

    @router.post("/assessments/{assessment_id}/attempts/start", response_model=AttemptStartOut)
    def start(assessment_id: int, request: Request, db: Session = Depends(get_db)):
        uid = current_user_id(request)
        a = crud.require_assessment(db, assessment_id)
        return attempt_ops.start_attempt(db, courses, a, uid)

    @router.get("/assessments/{assessment_id}/attempts", response_model=list[AttemptSummaryOut])
    def list_attempts(assessment_id: int, request: Request, db: Session = Depends(get_db)):
        a = crud.require_assessment(db, assessment_id)
        return attempt_ops.list_attempts(db, a, current_user_id(request))

    @router.get("/assessments/{assessment_id}/stats", response_model=StatsOut)
    def stats(assessment_id: int, request: Request, db: Session = Depends(get_db)):
        a = owned_assessment(db, assessment_id, current_user_id(request))
        return summary(db, a)

    @router.post("/attempts/{attempt_id}/submit", response_model=SubmitAttemptOut)
    def submit(attempt_id: int, payload: SubmitAttemptIn, request: Request, db: Session = Depends(get_db)):
        uid = current_user_id(request)
        attempt = attempt_ops.get_attempt(db, attempt_id)
        return attempt_ops.submit_attempt(db, courses, attempt, uid, payload)

    @router.post("/attempts/{attempt_id}/integrity-events", response_model=IntegrityEventOut)
    def integrity_event(attempt_id: int, payload: IntegrityEventIn, request: Request, db: Session = Depends(get_db)):
        attempt = attempt_ops.get_attempt(db, attempt_id)
        return log_event(db, attempt, current_user_id(request), payload.kind)

    @router.get("/attempts/{attempt_id}", response_model=AttemptReportOut)
    def report(attempt_id: int, request: Request, db: Session = Depends(get_db)):
        attempt = attempt_ops.get_attempt(db, attempt_id)
        return attempt_ops.attempt_report(db, attempt, current_user_id(request))

    return router
