"""SQLAlchemy models for the WriteMyStory application."""

from datetime import datetime, timezone
from sqlalchemy import Column, String, Text, DateTime, ForeignKey, Integer, Boolean, JSON, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship, declarative_base
from sqlalchemy.sql import func
import uuid

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (tests run on SQLite)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Project(Base):
    """A life story project (called "story" throughout the API)."""

    __tablename__ = "projects"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    user_id = Column(String, nullable=False, index=True)  # id from the external auth provider
    subject_type = Column(String, nullable=False)  # "self" or "other"
    person_name = Column(String, nullable=True)
    period_type = Column(String, nullable=False)
    writing_style = Column(String, nullable=False)
    is_deceased = Column(Boolean, default=False, nullable=False)
    passed_away_year = Column(String, nullable=True)
    status = Column(String, default="active", nullable=False)
    progress = Column(Integer, default=15, nullable=False)
    progress_detail = Column(JSONType, nullable=True)
    # "metadata" is reserved on declarative classes
    project_metadata = Column("metadata", JSONType, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), onupdate=_utcnow, nullable=False)

    # Relationships
    questions = relationship("Question", back_populates="project", cascade="all, delete-orphan")
    answers = relationship("Answer", back_populates="project", cascade="all, delete-orphan")
    team_members = relationship("TeamMember", back_populates="project", cascade="all, delete-orphan")
    story_previews = relationship("StoryPreview", back_populates="project", cascade="all, delete-orphan")
    introductions = relationship("Introduction", back_populates="project", cascade="all, delete-orphan")
    email_responses = relationship("EmailResponse", back_populates="project", cascade="all, delete-orphan")
    chapters = relationship("Chapter", back_populates="project", cascade="all, delete-orphan", order_by="Chapter.chapter_number")


class Question(Base):
    """A biographical question attached to a project."""

    __tablename__ = "questions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    story_id = Column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    category = Column(String, nullable=False)  # free-text label, e.g. "childhood"
    question = Column(Text, nullable=False)
    type = Column(String, default="open", nullable=False)
    priority = Column(Integer, default=1, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)

    # Relationships
    project = relationship("Project", back_populates="questions")
    answers = relationship("Answer", back_populates="question", cascade="all, delete-orphan", order_by="Answer.created_at")


class Answer(Base):
    """An answer (or skip) to a question.

    At most one answer exists per (question, user); this is enforced by the
    handlers with a look-up before insert, not by a constraint.
    """

    __tablename__ = "answers"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    question_id = Column(Uuid, ForeignKey("questions.id", ondelete="CASCADE"), nullable=False, index=True)
    story_id = Column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    answer = Column(Text, nullable=False, default="")
    status = Column(String, default="answered", nullable=False)  # "answered" or "skipped"
    skip_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), onupdate=_utcnow, nullable=False)

    # Relationships
    question = relationship("Question", back_populates="answers")
    project = relationship("Project", back_populates="answers")


class TeamMember(Base):
    """A person who receives forwarded questions for a story."""

    __tablename__ = "story_team_members"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    story_id = Column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    phone_number = Column(String, nullable=True)
    email = Column(String, nullable=True, index=True)
    role = Column(String, nullable=False)  # author, family, friend, collaborator
    status = Column(String, default="active", nullable=False)
    invited_at = Column(DateTime(timezone=True), default=_utcnow, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)

    project = relationship("Project", back_populates="team_members")


class EmailResponse(Base):
    """An inbound email reply, matched to a question or story on a best-effort basis."""

    __tablename__ = "email_responses"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    question_id = Column(Uuid, nullable=True, index=True)  # may point at nothing
    story_id = Column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=True, index=True)
    team_member_name = Column(String, nullable=True)
    sender_email = Column(String, nullable=True)
    response_content = Column(Text, nullable=False, default="")
    email_message_id = Column(String, nullable=True)
    status = Column(String, default="received", nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=True)

    project = relationship("Project", back_populates="email_responses")


class Introduction(Base):
    """Legacy introduction storage, read when project metadata has none."""

    __tablename__ = "introductions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    project_id = Column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    introduction = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)

    project = relationship("Project", back_populates="introductions")


class StoryPreview(Base):
    """A generated (and possibly user-edited) narrative for a project."""

    __tablename__ = "story_previews"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    project_id = Column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    content = Column(Text, nullable=False)
    status = Column(String, default="draft", nullable=False)  # draft, edited, finalized
    word_count = Column(Integer, default=0, nullable=False)
    generated_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), onupdate=_utcnow, nullable=False)

    project = relationship("Project", back_populates="story_previews")


class Chapter(Base):
    """A generated chapter narrative built from the answers of one category."""

    __tablename__ = "chapters"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    project_id = Column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    chapter_title = Column(String, nullable=False)
    chapter_content = Column(Text, nullable=False)
    chapter_number = Column(Integer, default=1, nullable=False)
    category = Column(String, default="general", nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)

    project = relationship("Project", back_populates="chapters")
