import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from shared.database import Base, make_engine, make_sessionmaker
from .collaborators import CourseDirectory, HttpCourseDirectory
from .config import Settings, load_settings
from .errors import AssessmentError, assessment_error_handler
from .identity import identity_middleware
from .question_gen import QuestionGenerator
from .routes import build_router

logger = logging.getLogger("assessment-service")


def create_app(
    settings: Optional[Settings] = None,
    courses: Optional[CourseDirectory] = None,
    question_generator: Optional[QuestionGenerator] = None,
) -> FastAPI:
    settings = settings or load_settings()
    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))

    engine = make_engine(settings.database_url)
    Base.metadata.create_all(bind=engine)
    SessionLocal = make_sessionmaker(engine)

    if courses is None:
        courses = HttpCourseDirectory(settings.course_service_url, settings.collaborator_timeout)
    if question_generator is None:
        question_generator = QuestionGenerator(
            api_key=settings.question_gen_api_key,
            base_url=settings.question_gen_base_url,
            model=settings.question_gen_model,
        )

    app = FastAPI(title="Assessment Service", version="1.0.0")

    app.middleware("http")(identity_middleware)

    allow_credentials = True
    if settings.cors_origins == ["*"]:
        # Browsers reject "*" with credentials
        allow_credentials = False
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AssessmentError, assessment_error_handler)
    app.include_router(build_router(SessionLocal, courses, question_generator), tags=["Assessments"])

    @app.get("/health", operation_id="health_check", tags=["Health"])
    async def health_check():
        return {"status": "healthy", "service": "assessment-service"}

    logger.info("Assessment service ready (db=%s)", engine.url.render_as_string(hide_password=True))
    return app
