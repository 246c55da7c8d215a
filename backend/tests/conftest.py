"""Shared fixtures: an in-memory database and a test client wired to it."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from writemystory.config import Settings
from writemystory.database import get_db
from writemystory.email_service import EmailService
from writemystory.main import app, get_email_service, get_llm
from writemystory.models import Base, Project

USER_ID = "user-123"


class FakeStoryLLM:
    """Stands in for StoryLLM; records calls and returns canned text."""

    is_configured = True

    def __init__(self):
        self.calls = []
        self.questions_text = (
            "1. childhood - Wat was je lievelingsplek als kind?\n"
            "2. family - Hoe vierden jullie verjaardagen?\n"
            "Hier zijn de vragen.\n"
            "3. career - Wat leerde je van je eerste baas?"
        )
        self.story_text = "Er was eens een kind dat opgroeide aan zee."
        self.chapter_text = "Het huis aan de dijk stond er al honderd jaar."

    async def aanalyze_answers(self, project, answers):
        self.calls.append(("aanalyze_answers", len(answers)))
        return "Analyse van antwoorden"

    async def agenerate_questions(self, project, analysis):
        self.calls.append(("agenerate_questions", analysis))
        return self.questions_text

    async def aanalyze_introduction(self, project, introduction):
        self.calls.append(("aanalyze_introduction", introduction))
        return "Analyse van introductie"

    async def agenerate_introduction_questions(self, project, analysis, introduction):
        self.calls.append(("agenerate_introduction_questions", analysis))
        return self.questions_text

    async def agenerate_chapter_questions(self, project, chapter_id, introduction=None):
        self.calls.append(("agenerate_chapter_questions", chapter_id))
        return "1. school - Wie was je beste vriend?\n2. - Welk vak vond je leuk?"

    async def agenerate_story_preview(self, project, answers, introduction=None):
        self.calls.append(("agenerate_story_preview", len(answers)))
        return self.story_text

    async def agenerate_chapter(self, project, answers, category="general"):
        self.calls.append(("agenerate_chapter", category, len(answers)))
        return self.chapter_text


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def fake_llm():
    return FakeStoryLLM()


@pytest.fixture
def email_service():
    """Email service without a Postmark token, so every send is simulated."""
    return EmailService(Settings(_env_file=None, POSTMARK_SERVER_API_TOKEN=None))


@pytest.fixture
def client(engine, fake_llm, email_service):
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        db = factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_llm] = lambda: fake_llm
    app.dependency_overrides[get_email_service] = lambda: email_service
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def project(db_session):
    """A project owned by USER_ID."""
    project = Project(
        user_id=USER_ID,
        subject_type="other",
        person_name="Oma Jans",
        period_type="fullLife",
        writing_style="neutrale",
        is_deceased=False,
        project_metadata={},
    )
    db_session.add(project)
    db_session.commit()
    db_session.refresh(project)
    return project
