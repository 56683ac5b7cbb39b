from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from assessment_service.app import create_app
from assessment_service.config import Settings
from shared.database import Base, make_engine, make_sessionmaker
from helpers import Api, CannedGenerator, FakeCourseDirectory, now_utc


@pytest.fixture
def courses():
    return FakeCourseDirectory()


@pytest.fixture
def generator():
    return CannedGenerator()


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        course_service_url="http://course-service.invalid",
        collaborator_timeout=1.0,
        cors_origins=["*"],
        log_level="WARNING",
        question_gen_api_key="",
        question_gen_base_url="http://llm.invalid/v1",
        question_gen_model="test-model",
    )


@pytest.fixture
def client(settings, courses, generator):
    app = create_app(settings=settings, courses=courses, question_generator=generator)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def api(client):
    return Api(client)


@pytest.fixture
def future():
    return now_utc() + timedelta(days=1)


@pytest.fixture
def past():
    return now_utc() - timedelta(days=1)


@pytest.fixture
def session_factory():
    """Sessionmaker over a private in-memory database, for service-level tests."""
    engine = make_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield make_sessionmaker(engine)
    engine.dispose()
