"""Database operations shared by the API routes."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from writemystory.models import Answer, Chapter, Introduction, Project, Question
from writemystory.parsing import parse_questions_text
from writemystory.parsing.questions import QUESTION_LINE_RE
from writemystory.progress import load_questions_with_answers, recalculate_project_progress

logger = logging.getLogger(__name__)

# Starter questions inserted when a story asks for its first batch.
STARTER_QUESTIONS = [
    ("early_life", "Kun je me vertellen over de plek waar je bent opgegroeid? Hoe zag je buurt eruit?"),
    ("family", "Wat is een van je vroegste herinneringen aan je ouders of verzorgers?"),
    ("childhood", "Welk speelgoed of welke activiteit bracht je als kind de meeste vreugde?"),
    ("school", "Wat herinner je je van je eerste schooldag? Hoe voelde dat?"),
    ("education", "Welke leraar of docent heeft de meeste indruk op je gemaakt?"),
    ("friends", "Wie was je beste vriend(in) tijdens je schooltijd?"),
    ("career", "Wat was je eerste baantje? Hoe was die ervaring?"),
    ("independence", "Wanneer ben je voor het eerst op jezelf gaan wonen?"),
]

CHAPTER_TITLES = {
    "childhood": "De Vroege Jaren",
    "education": "Leren en Groeien",
    "career": "Werkzaam Leven",
    "family": "Familie en Relaties",
    "relationships": "Liefde en Vriendschap",
    "hobbies": "Passies en Interesses",
    "travel": "Reizen en Avonturen",
    "challenges": "Uitdagingen en Groei",
    "achievements": "Prestaties en Mijlpalen",
    "general": "Levensverhaal",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def project_summary(project: Project) -> dict[str, Any]:
    """Project shape the web client expects."""
    return {
        "id": str(project.id),
        "personName": project.person_name or "Mijn verhaal",
        "subjectType": project.subject_type,
        "periodType": project.period_type,
        "writingStyle": project.writing_style,
        "isDeceased": project.is_deceased,
        "createdAt": project.created_at.isoformat() if project.created_at else None,
        "status": project.status,
        "progress": project.progress or 15,
        "progressDetail": project.progress_detail or {},
    }


def question_to_dict(question: Question) -> dict[str, Any]:
    return {
        "id": str(question.id),
        "story_id": str(question.story_id),
        "category": question.category,
        "question": question.question,
        "type": question.type,
        "priority": question.priority,
        "created_at": question.created_at.isoformat() if question.created_at else None,
    }


def answer_to_dict(answer: Answer) -> dict[str, Any]:
    return {
        "id": str(answer.id),
        "question_id": str(answer.question_id),
        "story_id": str(answer.story_id),
        "user_id": answer.user_id,
        "answer": answer.answer,
        "status": answer.status,
        "skip_reason": answer.skip_reason,
        "created_at": answer.created_at.isoformat() if answer.created_at else None,
        "updated_at": answer.updated_at.isoformat() if answer.updated_at else None,
    }


def get_owned_project(db: Session, project_id: UUID, user_id: str) -> Optional[Project]:
    return db.query(Project).filter(Project.id == project_id, Project.user_id == user_id).first()


def project_metadata(project: Project) -> dict[str, Any]:
    return dict(project.project_metadata or {})


def merge_project_metadata(db: Session, project: Project, updates: dict[str, Any]) -> dict[str, Any]:
    """Merge keys into project metadata, assigning a new dict so the change is flushed."""
    metadata = project_metadata(project)
    metadata.update(updates)
    project.project_metadata = metadata
    project.updated_at = utcnow()
    db.commit()
    return metadata


def set_metadata_key(db: Session, project: Project, key: str, value: Any) -> None:
    """
    Write one top-level metadata key.

    On PostgreSQL the key is written in place with jsonb_set; if that
    statement fails, or on other databases, the whole document is
    read, merged and written back.
    """
    if db.get_bind().dialect.name == "postgresql":
        try:
            db.execute(
                text(
                    "UPDATE projects SET metadata = jsonb_set("
                    "COALESCE(metadata, '{}'::jsonb), CAST(:path AS text[]), CAST(:value AS jsonb)), "
                    "updated_at = now() WHERE id = CAST(:id AS uuid)"
                ),
                {"path": "{" + key + "}", "value": json.dumps(value), "id": str(project.id)},
            )
            db.commit()
            db.refresh(project)
            return
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning("jsonb_set on project %s failed, rewriting metadata: %s", project.id, e)

    try:
        merge_project_metadata(db, project, {key: value})
    except SQLAlchemyError:
        db.rollback()
        raise


def get_introduction(db: Session, project: Project, user_id: str) -> Optional[str]:
    """Introduction from project metadata, falling back to the introductions table."""
    introduction = project_metadata(project).get("introduction")
    if introduction:
        return introduction

    row = (
        db.query(Introduction)
        .filter(Introduction.project_id == project.id, Introduction.user_id == user_id)
        .order_by(Introduction.created_at.desc())
        .first()
    )
    return row.introduction if row else None


def answered_questions(db: Session, story_id: UUID) -> list[dict[str, Any]]:
    """Questions that have a non-empty answer, as prompt-ready dicts."""
    return [
        {
            "id": str(q.id),
            "category": q.category,
            "question": q.question,
            "answer": q.answer.answer,
            "created_at": q.answer.created_at.isoformat() if q.answer.created_at else None,
        }
        for q in load_questions_with_answers(db, story_id)
        if q.is_answered
    ]


def insert_question(db: Session, story_id: UUID, category: str, text: str, priority: int = 1) -> Optional[Question]:
    """Insert one question; a failed insert is logged and returns None."""
    question = Question(
        story_id=story_id,
        category=category,
        question=text,
        type="open",
        priority=priority,
        created_at=utcnow(),
    )
    db.add(question)
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Error saving question for story %s: %s", story_id, e)
        return None
    db.refresh(question)
    return question


def save_generated_questions(db: Session, story_id: UUID, questions_text: str) -> list[Question]:
    """
    Parse model output and store every question found.

    Progress is recalculated once when at least one question was stored.
    """
    saved = []
    for parsed in parse_questions_text(questions_text):
        question = insert_question(db, story_id, parsed.category, parsed.question)
        if question is not None:
            saved.append(question)

    logger.info("Saved %d generated questions for story %s", len(saved), story_id)
    if saved:
        recalculate_project_progress(db, story_id)
    return saved


def save_chapter_questions(db: Session, story_id: UUID, questions_text: str, default_category: str) -> list[Question]:
    """Chapter variant: primary pattern only, empty categories fall back to the chapter's first one."""
    saved = []
    for line in (questions_text or "").split("\n"):
        if not line.strip():
            continue
        match = QUESTION_LINE_RE.match(line)
        if not match:
            continue
        category, text = match.groups()
        question = insert_question(db, story_id, category.strip().lower() or default_category, text.strip())
        if question is not None:
            saved.append(question)

    if saved:
        recalculate_project_progress(db, story_id)
    return saved


def insert_starter_questions(db: Session, story_id: UUID) -> list[Question]:
    questions = [
        Question(story_id=story_id, category=category, question=text, type="open", priority=priority)
        for priority, (category, text) in enumerate(STARTER_QUESTIONS, start=1)
    ]
    db.add_all(questions)
    db.commit()
    for q in questions:
        db.refresh(q)
    return questions


def upsert_answer(
    db: Session,
    question_id: UUID,
    story_id: UUID,
    user_id: str,
    answer_text: str,
    status: str = "answered",
    skip_reason: Optional[str] = None,
) -> Answer:
    """
    Create or update the single answer a user has for a question.

    Raises:
        SQLAlchemyError: When the write fails
    """
    existing = (
        db.query(Answer)
        .filter(Answer.question_id == question_id, Answer.user_id == user_id)
        .first()
    )
    now = utcnow()
    if existing:
        existing.answer = answer_text
        existing.status = status
        existing.skip_reason = skip_reason if status == "skipped" else None
        existing.updated_at = now
        answer = existing
    else:
        answer = Answer(
            question_id=question_id,
            story_id=story_id,
            user_id=user_id,
            answer=answer_text,
            status=status,
            skip_reason=skip_reason if status == "skipped" else None,
            created_at=now,
            updated_at=now,
        )
        db.add(answer)

    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(answer)
    return answer


def chapter_title(category: str, chapter_number: int) -> str:
    return CHAPTER_TITLES.get(category, f"Hoofdstuk {chapter_number}")


def chapter_to_dict(chapter: Chapter) -> dict[str, Any]:
    return {
        "id": str(chapter.id),
        "title": chapter.chapter_title,
        "content": chapter.chapter_content,
        "category": chapter.category,
        "chapterNumber": chapter.chapter_number,
        "createdAt": chapter.created_at.isoformat() if chapter.created_at else None,
    }
