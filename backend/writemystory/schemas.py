"""Request bodies and typed row DTOs for the WriteMyStory API."""

from datetime import datetime
from typing import Any, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Accepts the camelCase keys the web client sends, and snake_case too."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ==================== Row DTOs ====================

class AnswerDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    answer: str = ""
    status: str = "answered"
    created_at: Optional[datetime] = None


class QuestionWithAnswer(BaseModel):
    """A question joined to at most one answer."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    category: str
    question: str
    priority: int = 1
    created_at: Optional[datetime] = None
    answer: Optional[AnswerDTO] = None

    @classmethod
    def from_row(cls, question: Any, user_id: Optional[str] = None) -> "QuestionWithAnswer":
        """
        Normalize an ORM question and its answers list into a single DTO.

        The first answer wins; with user_id given only that user's answer
        is considered.
        """
        answers = list(getattr(question, "answers", None) or [])
        if user_id is not None:
            answers = [a for a in answers if a.user_id == user_id]
        answer = AnswerDTO.model_validate(answers[0]) if answers else None
        return cls(
            id=question.id,
            category=question.category or "",
            question=question.question,
            priority=question.priority or 1,
            created_at=question.created_at,
            answer=answer,
        )

    @property
    def is_answered(self) -> bool:
        return bool(self.answer and self.answer.answer and self.answer.answer.strip())


# ==================== Request bodies ====================

class StoryCreateIn(CamelModel):
    user_id: str
    email: Optional[str] = None
    subject_type: Literal["self", "other"] = "self"
    person_name: Optional[str] = None
    birth_year: Optional[str] = None
    relationship: Optional[str] = None
    is_deceased: bool = False
    passed_away_year: Optional[str] = None
    collaborators: Optional[dict[str, Any]] = None
    collaborator_emails: Optional[str] = None
    period_type: str = "fullLife"
    start_year: Optional[str] = None
    end_year: Optional[str] = None
    theme: Optional[str] = None
    writing_style: str = "neutrale"
    communication_methods: Optional[dict[str, Any]] = None
    delivery_format: Optional[str] = None


class QuestionsActionIn(CamelModel):
    story_id: UUID
    user_id: str
    type: str
    question_id: Optional[UUID] = None
    answer: Optional[str] = None


class AnswerIn(CamelModel):
    question_id: UUID
    story_id: UUID
    user_id: str
    answer: Optional[str] = None
    status: Literal["answered", "skipped"] = "answered"
    skip_reason: Optional[str] = None


class IntroductionIn(CamelModel):
    project_id: UUID
    user_id: str
    introduction: str


class GenerateQuestionsIn(CamelModel):
    project_id: UUID
    user_id: str
    analysis_only: bool = False
    introduction: Optional[str] = None
    type: Optional[str] = None


class GenerateChapterQuestionsIn(CamelModel):
    project_id: UUID
    user_id: str
    chapter_id: str


class GenerateChapterIn(CamelModel):
    project_id: UUID
    user_id: str
    category: str = "general"
    chapter_number: int = 1


class StoryPreviewGenerateIn(CamelModel):
    project_id: UUID
    user_id: str


class StoryPreviewUpdateIn(CamelModel):
    project_id: UUID
    user_id: str
    content: str
    status: Optional[str] = None


class TeamMemberIn(CamelModel):
    story_id: UUID
    user_id: str
    name: str
    phone_number: str
    email: Optional[str] = None
    role: str


class NotifyTeamIn(CamelModel):
    story_id: UUID
    user_id: str
    question_ids: Optional[list[UUID]] = None


class SendQuestionEmailIn(CamelModel):
    to: str
    question: str
    story_id: UUID
    question_id: UUID
    member_name: str


class EmailResponseStatusIn(CamelModel):
    response_id: Optional[UUID] = None
    status: Optional[str] = None
