import logging
import re
from contextlib import asynccontextmanager
from typing import Any, Optional
from uuid import UUID

from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from writemystory.config import get_settings
from writemystory.database import get_db, init_db, set_user_context
from writemystory.email_service import EmailService, notify_team_members
from writemystory.llm import StoryLLM
from writemystory.models import Answer, Chapter, EmailResponse, Project, Question, StoryPreview, TeamMember
from writemystory.parsing import parse_whatsapp_chat
from writemystory.parsing.email_reply import extract_question_id, parse_sender, strip_quoted_reply
from writemystory.progress import LIFE_PERIODS, recalculate_project_progress
from writemystory.schemas import (
    AnswerIn,
    EmailResponseStatusIn,
    GenerateChapterIn,
    GenerateChapterQuestionsIn,
    GenerateQuestionsIn,
    IntroductionIn,
    NotifyTeamIn,
    QuestionWithAnswer,
    QuestionsActionIn,
    SendQuestionEmailIn,
    StoryCreateIn,
    StoryPreviewGenerateIn,
    StoryPreviewUpdateIn,
    TeamMemberIn,
)
from writemystory import services

settings = get_settings()

# Configure logging
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
)
logger = logging.getLogger(__name__)

# Shared service instances, created lazily
_llm: Optional[StoryLLM] = None
_email_service: Optional[EmailService] = None

VALID_PREVIEW_STATUSES = ("draft", "edited", "finalized")
VALID_TEAM_ROLES = ("author", "family", "friend", "collaborator")
VALID_EMAIL_RESPONSE_STATUSES = ("received", "reviewed", "integrated")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MAX_CHAPTER_QUESTIONS = 8


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for app startup/shutdown."""
    try:
        if init_db():
            logger.info("Database initialized successfully")
    except Exception as e:
        logger.warning("Database initialization failed: %s", e)

    if not get_llm().is_configured:
        logger.warning("No API key for LLM provider %s; generation routes will answer 503", settings.PROVIDER)

    yield


app = FastAPI(title="WriteMyStory API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ==================== Errors ====================

def api_error(status_code: int, error: str, details: Optional[str] = None, **extra: Any) -> HTTPException:
    """HTTPException whose body is {"error": ..., "details": ...}."""
    body: dict[str, Any] = {"error": error}
    if details is not None:
        body["details"] = details
    body.update(extra)
    return HTTPException(status_code=status_code, detail=body)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    body = exc.detail if isinstance(exc.detail, dict) else {"error": exc.detail}
    return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    missing = [".".join(str(p) for p in err["loc"][1:]) for err in exc.errors()]
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "details": f"Invalid or missing fields: {', '.join(missing)}"},
    )


# ==================== Dependencies ====================

def get_llm() -> StoryLLM:
    global _llm
    if _llm is None:
        _llm = StoryLLM(get_settings())
    return _llm


def get_email_service() -> EmailService:
    global _email_service
    if _email_service is None:
        _email_service = EmailService(get_settings())
    return _email_service


def require_llm(llm: StoryLLM = Depends(get_llm)) -> StoryLLM:
    if not llm.is_configured:
        raise api_error(503, "AI service not configured")
    return llm


def require_user_id(user_id: Optional[str]) -> str:
    if not user_id:
        raise api_error(400, "User ID is required")
    return user_id


def load_owned_project(db: Session, project_id: UUID, user_id: str) -> Project:
    set_user_context(db, user_id)
    project = services.get_owned_project(db, project_id, user_id)
    if project is None:
        raise api_error(404, "Project not found or no access")
    return project


@app.get("/health")
async def health():
    return {"status": "ok"}


# ==================== Stories ====================

@app.get("/api/stories")
def list_stories(user_id: Optional[str] = Query(None, alias="userId"), db: Session = Depends(get_db)):
    """List a user's projects, newest first."""
    user_id = require_user_id(user_id)
    set_user_context(db, user_id)
    try:
        projects = (
            db.query(Project)
            .filter(Project.user_id == user_id)
            .order_by(Project.created_at.desc())
            .all()
        )
    except SQLAlchemyError as e:
        logger.error("Error fetching projects for %s: %s", user_id, e)
        raise api_error(500, "Failed to fetch projects", str(e))

    logger.info("Found %d projects for user %s", len(projects), user_id)
    return [services.project_summary(p) for p in projects]


@app.post("/api/stories")
def create_story(payload: StoryCreateIn, db: Session = Depends(get_db)):
    """Create a project from the setup wizard."""
    set_user_context(db, payload.user_id)
    project = Project(
        user_id=payload.user_id,
        subject_type=payload.subject_type,
        person_name=payload.person_name if payload.subject_type == "other" else None,
        period_type=payload.period_type,
        writing_style=payload.writing_style,
        is_deceased=payload.is_deceased,
        passed_away_year=payload.passed_away_year,
        status="active",
        progress=15,
        project_metadata={
            "birthYear": payload.birth_year,
            "relationship": payload.relationship,
            "collaborators": payload.collaborators,
            "collaboratorEmails": payload.collaborator_emails,
            "startYear": payload.start_year,
            "endYear": payload.end_year,
            "theme": payload.theme,
            "communicationMethods": payload.communication_methods,
            "deliveryFormat": payload.delivery_format,
            "email": payload.email,
        },
    )
    db.add(project)
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Error inserting project: %s", e)
        raise api_error(500, "Failed to create project", str(e))
    db.refresh(project)

    logger.info("Project created: %s", project.id)
    return {
        "success": True,
        "id": str(project.id),
        "message": "Project created successfully",
        "story": services.project_summary(project),
    }


@app.get("/api/stories/{project_id}")
def get_story(project_id: UUID, user_id: Optional[str] = Query(None, alias="userId"), db: Session = Depends(get_db)):
    user_id = require_user_id(user_id)
    set_user_context(db, user_id)
    project = services.get_owned_project(db, project_id, user_id)
    if project is None:
        raise api_error(404, "Project not found")
    return services.project_summary(project)


@app.delete("/api/stories/{project_id}")
def delete_story(project_id: UUID, user_id: Optional[str] = Query(None, alias="userId"), db: Session = Depends(get_db)):
    """Delete a project together with its questions, answers and other children."""
    if not user_id:
        raise api_error(400, "User ID is required for deletion")
    set_user_context(db, user_id)

    project = services.get_owned_project(db, project_id, user_id)
    if project is None:
        raise api_error(
            404,
            "Project not found or access denied",
            f"Project {project_id} not found for user {user_id}",
        )

    try:
        db.delete(project)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Error deleting project %s: %s", project_id, e)
        raise api_error(500, "Failed to delete project", str(e))

    logger.info("Project %s deleted by %s", project_id, user_id)
    return {"success": True, "message": "Project deleted successfully"}


# ==================== Questions & answers ====================

@app.get("/api/questions")
def get_questions(
    story_id: Optional[UUID] = Query(None, alias="storyId"),
    user_id: Optional[str] = Query(None, alias="userId"),
    db: Session = Depends(get_db),
):
    """Questions for a story, merged with their answers."""
    if not story_id or not user_id:
        raise api_error(400, "Story ID and User ID are required")
    set_user_context(db, user_id)

    try:
        rows = (
            db.query(Question)
            .options(selectinload(Question.answers))
            .filter(Question.story_id == story_id)
            .order_by(Question.priority, Question.created_at)
            .all()
        )
    except SQLAlchemyError as e:
        logger.error("Error fetching questions: %s", e)
        raise api_error(500, "Failed to fetch questions", str(e))

    questions = []
    for row in rows:
        joined = QuestionWithAnswer.from_row(row)
        item = services.question_to_dict(row)
        item.update({
            "status": "answered" if joined.answer else "pending",
            "answeredAt": joined.answer.created_at.isoformat() if joined.answer and joined.answer.created_at else None,
            "answer": joined.answer.answer if joined.answer else None,
        })
        questions.append(item)
    return {"questions": questions}


@app.post("/api/questions")
async def questions_action(
    payload: QuestionsActionIn,
    db: Session = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
):
    """Insert the starter questions (type=generate) or save an answer (type=answer)."""
    project = load_owned_project(db, payload.story_id, payload.user_id)

    if payload.type == "generate":
        try:
            inserted = services.insert_starter_questions(db, project.id)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Error inserting questions: %s", e)
            raise api_error(500, "Failed to generate questions", str(e))
        recalculate_project_progress(db, project.id)

        owner_email = services.project_metadata(project).get("email")
        if owner_email:
            await email_service.send_multiple_questions_email(
                to=owner_email,
                member_name=project.person_name or "daar",
                questions=[{"id": str(q.id), "question": q.question} for q in inserted],
                story_id=str(project.id),
                person_name=project.person_name or "Mijn verhaal",
                is_own_story=project.subject_type == "self",
            )
        else:
            logger.info("No owner email on project %s; generated questions not emailed", project.id)

        return {
            "success": True,
            "message": "Questions generated and sent via email",
            "questions": [{**services.question_to_dict(q), "status": "pending"} for q in inserted],
        }

    if payload.type == "answer":
        if not payload.question_id:
            raise api_error(400, "Question ID is required")
        try:
            answer = services.upsert_answer(
                db, payload.question_id, project.id, payload.user_id, (payload.answer or "").strip()
            )
        except SQLAlchemyError as e:
            logger.error("Error saving answer: %s", e)
            raise api_error(500, "Failed to save answer", str(e))
        recalculate_project_progress(db, project.id)
        return {"success": True, "message": "Answer saved successfully", "answer": services.answer_to_dict(answer)}

    raise api_error(400, "Invalid request type")


@app.post("/api/answers")
def submit_answer(payload: AnswerIn, db: Session = Depends(get_db)):
    """Save or skip an answer, then recompute the story's progress."""
    answer_text = (payload.answer or "").strip()
    if payload.status != "skipped" and not answer_text:
        raise api_error(400, "Answer is required for non-skipped questions")

    set_user_context(db, payload.user_id)
    logger.info("Submitting answer for question %s", payload.question_id)
    try:
        answer = services.upsert_answer(
            db,
            payload.question_id,
            payload.story_id,
            payload.user_id,
            answer_text,
            status=payload.status,
            skip_reason=payload.skip_reason,
        )
    except SQLAlchemyError as e:
        logger.error("Error saving answer: %s", e)
        raise api_error(500, "Failed to save answer", str(e))

    recalculate_project_progress(db, payload.story_id)
    return {
        "success": True,
        "answer": services.answer_to_dict(answer),
        "message": "Question skipped successfully" if payload.status == "skipped" else "Answer saved successfully",
    }


@app.get("/api/answers")
def get_answers(
    story_id: Optional[UUID] = Query(None, alias="storyId"),
    user_id: Optional[str] = Query(None, alias="userId"),
    db: Session = Depends(get_db),
):
    if not story_id or not user_id:
        raise api_error(400, "Story ID and User ID are required")
    set_user_context(db, user_id)

    try:
        answers = (
            db.query(Answer)
            .filter(Answer.story_id == story_id, Answer.user_id == user_id)
            .order_by(Answer.created_at.desc())
            .all()
        )
    except SQLAlchemyError as e:
        logger.error("Error fetching answers: %s", e)
        raise api_error(500, "Failed to fetch answers", str(e))
    return {"answers": [services.answer_to_dict(a) for a in answers]}


# ==================== Introduction ====================

@app.post("/api/introduction")
def save_introduction(payload: IntroductionIn, db: Session = Depends(get_db)):
    """Merge the introduction text into the project's metadata."""
    if not payload.introduction.strip():
        raise api_error(400, "Project ID, User ID, and introduction are required")
    project = load_owned_project(db, payload.project_id, payload.user_id)

    try:
        services.merge_project_metadata(db, project, {
            "introduction": payload.introduction,
            "introduction_date": services.utcnow().isoformat(),
        })
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Error saving introduction: %s", e)
        raise api_error(500, "Failed to save introduction", str(e))

    return {"success": True, "message": "Introduction saved successfully"}


@app.get("/api/introduction")
def get_introduction(
    project_id: Optional[UUID] = Query(None, alias="projectId"),
    user_id: Optional[str] = Query(None, alias="userId"),
    db: Session = Depends(get_db),
):
    if not project_id or not user_id:
        raise api_error(400, "Project ID and User ID are required")
    project = load_owned_project(db, project_id, user_id)
    return {"success": True, "introduction": services.project_metadata(project).get("introduction", "")}


# ==================== Question generation ====================

@app.post("/api/generate-questions")
async def generate_questions(
    payload: GenerateQuestionsIn,
    db: Session = Depends(get_db),
    llm: StoryLLM = Depends(require_llm),
):
    """Analyse the story so far and generate new questions from answers or the introduction."""
    project = load_owned_project(db, payload.project_id, payload.user_id)
    answers = services.answered_questions(db, project.id)
    introduction = payload.introduction or services.get_introduction(db, project, payload.user_id)

    if not introduction and not answers:
        raise api_error(
            400,
            "Voor slimme vragen heb je een introductie nodig of beantwoorde vragen. "
            "Schrijf eerst een introductie of beantwoord enkele basis vragen.",
        )

    try:
        if introduction and (payload.type == "introduction" or not answers):
            logger.info("Generating questions from introduction for project %s", project.id)
            analysis = await llm.aanalyze_introduction(project, introduction)
            if payload.analysis_only:
                return {"success": True, "analysis": analysis, "introduction": introduction}

            questions_text = await llm.agenerate_introduction_questions(project, analysis, introduction)
            saved = services.save_generated_questions(db, project.id, questions_text)
            return {
                "success": True,
                "analysis": analysis,
                "questionsGenerated": len(saved),
                "questions": [services.question_to_dict(q) for q in saved],
                "rawQuestionsText": questions_text,
                "type": "introduction",
                "message": f"{len(saved)} slimme vragen gegenereerd op basis van je introductie",
            }

        logger.info("Generating questions from %d answers for project %s", len(answers), project.id)
        analysis = await llm.aanalyze_answers(project, answers)
        if payload.analysis_only:
            return {"success": True, "analysis": analysis, "answeredQuestions": len(answers)}

        questions_text = await llm.agenerate_questions(project, analysis)
        saved = services.save_generated_questions(db, project.id, questions_text)
    except HTTPException:
        raise
    except Exception as e:
        logger.error("Error in generate-questions: %s", e)
        raise api_error(500, "Failed to generate questions", str(e))

    return {
        "success": True,
        "analysis": analysis,
        "questionsGenerated": len(saved),
        "questions": [services.question_to_dict(q) for q in saved],
        "rawQuestionsText": questions_text,
        "message": f"{len(saved)} slimme vragen gegenereerd op basis van je antwoorden",
    }


@app.get("/api/generate-questions")
async def get_analysis(
    project_id: Optional[UUID] = Query(None, alias="projectId"),
    user_id: Optional[str] = Query(None, alias="userId"),
    db: Session = Depends(get_db),
    llm: StoryLLM = Depends(require_llm),
):
    """Analysis of the answers given so far, without generating questions."""
    if not project_id or not user_id:
        raise api_error(400, "Project ID and User ID are required")
    project = load_owned_project(db, project_id, user_id)
    answers = services.answered_questions(db, project.id)
    if not answers:
        raise api_error(404, "No answered questions found")

    try:
        analysis = await llm.aanalyze_answers(project, answers)
    except Exception as e:
        logger.error("Error getting analysis: %s", e)
        raise api_error(500, "Failed to get analysis", str(e))

    return {
        "success": True,
        "analysis": analysis,
        "answeredQuestions": len(answers),
        "lastAnswer": max((a["created_at"] for a in answers if a["created_at"]), default=None),
    }


@app.post("/api/generate-chapter-questions")
async def generate_chapter_questions(
    payload: GenerateChapterQuestionsIn,
    db: Session = Depends(get_db),
    llm: StoryLLM = Depends(require_llm),
):
    """Generate questions for a single life period."""
    chapter = LIFE_PERIODS.get(payload.chapter_id)
    if chapter is None:
        raise api_error(400, "Ongeldig hoofdstuk ID")

    set_user_context(db, payload.user_id)
    project = services.get_owned_project(db, payload.project_id, payload.user_id)
    if project is None:
        raise api_error(404, "Project niet gevonden")

    existing = (
        db.query(Question)
        .filter(Question.story_id == project.id, Question.category.in_(chapter["categories"]))
        .count()
    )
    if existing >= MAX_CHAPTER_QUESTIONS:
        raise api_error(
            400,
            f"Er zijn al {existing} vragen voor dit hoofdstuk. Beantwoord eerst enkele bestaande vragen.",
        )

    introduction = services.get_introduction(db, project, payload.user_id)
    try:
        questions_text = await llm.agenerate_chapter_questions(project, payload.chapter_id, introduction)
    except Exception as e:
        logger.error("AI error generating chapter questions: %s", e)
        raise api_error(503, "AI service niet beschikbaar", str(e))

    if not questions_text:
        raise api_error(500, "Geen vragen gegenereerd door AI")

    saved = services.save_chapter_questions(db, project.id, questions_text, chapter["categories"][0])
    return {
        "success": True,
        "questionsGenerated": len(saved),
        "chapter": chapter["name"],
        "questions": [services.question_to_dict(q) for q in saved],
    }


# ==================== Story preview ====================

@app.post("/api/generate-story-preview")
async def generate_story_preview(
    payload: StoryPreviewGenerateIn,
    db: Session = Depends(get_db),
    llm: StoryLLM = Depends(require_llm),
):
    """Write a narrative from all answers and store it as a draft preview."""
    set_user_context(db, payload.user_id)
    project = services.get_owned_project(db, payload.project_id, payload.user_id)
    if project is None:
        raise api_error(404, "Project niet gevonden")

    answers = services.answered_questions(db, project.id)
    if not answers:
        raise api_error(
            400,
            "Geen beantwoorde vragen gevonden. Beantwoord eerst enkele vragen "
            "voordat je een verhaalvoorbeeld kunt genereren.",
        )
    introduction = services.get_introduction(db, project, payload.user_id)

    try:
        story = await llm.agenerate_story_preview(project, answers, introduction)
    except Exception as e:
        logger.error("Error generating story preview: %s", e)
        raise api_error(500, "Er ging iets mis bij het genereren van het verhaal. Probeer het opnieuw.", str(e))
    if not story:
        raise api_error(500, "Geen verhaal ontvangen van AI")

    word_count = len(story.split(" "))
    try:
        preview = (
            db.query(StoryPreview)
            .filter(StoryPreview.project_id == project.id, StoryPreview.user_id == payload.user_id)
            .first()
        )
        if preview is None:
            preview = StoryPreview(project_id=project.id, user_id=payload.user_id)
            db.add(preview)
        preview.content = story
        preview.status = "draft"
        preview.word_count = word_count
        preview.generated_at = services.utcnow()
        db.commit()
    except SQLAlchemyError as e:
        # The preview is still returned to the caller
        db.rollback()
        logger.error("Error saving story preview: %s", e)

    return {
        "success": True,
        "storyPreview": story,
        "wordCount": word_count,
        "questionsUsed": len(answers),
        "categoriesUsed": list(dict.fromkeys(a["category"] for a in answers)),
    }


@app.put("/api/story-preview")
def save_story_preview(payload: StoryPreviewUpdateIn, db: Session = Depends(get_db)):
    """Save user edits to the story preview."""
    if not payload.content:
        raise api_error(400, "Project ID, User ID en content zijn vereist")
    if payload.status and payload.status not in VALID_PREVIEW_STATUSES:
        raise api_error(400, "Ongeldige status")

    set_user_context(db, payload.user_id)
    preview = (
        db.query(StoryPreview)
        .filter(StoryPreview.project_id == payload.project_id, StoryPreview.user_id == payload.user_id)
        .first()
    )
    if preview is None:
        raise api_error(404, "Nog geen verhaalvoorbeeld gegenereerd")

    status = payload.status or "edited"
    word_count = len(payload.content.split(" "))
    preview.content = payload.content
    preview.status = status
    preview.word_count = word_count
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Error updating story preview: %s", e)
        raise api_error(500, "Fout bij opslaan van wijzigingen", str(e))

    return {
        "success": True,
        "message": "Verhaal succesvol opgeslagen",
        "wordCount": word_count,
        "status": status,
    }


@app.get("/api/story-preview")
def get_story_preview(
    project_id: Optional[UUID] = Query(None, alias="projectId"),
    user_id: Optional[str] = Query(None, alias="userId"),
    db: Session = Depends(get_db),
):
    if not project_id or not user_id:
        raise api_error(400, "Project ID en User ID zijn vereist")
    set_user_context(db, user_id)

    preview = (
        db.query(StoryPreview)
        .filter(StoryPreview.project_id == project_id, StoryPreview.user_id == user_id)
        .first()
    )
    if preview is None:
        return {"exists": False, "message": "Nog geen verhaalvoorbeeld gegenereerd"}

    return {
        "exists": True,
        "storyPreview": {
            "content": preview.content,
            "status": preview.status,
            "wordCount": preview.word_count,
            "generatedAt": preview.generated_at.isoformat() if preview.generated_at else None,
            "updatedAt": preview.updated_at.isoformat() if preview.updated_at else None,
        },
    }


# ==================== Chapters ====================

@app.post("/api/generate-chapter")
async def generate_chapter(
    payload: GenerateChapterIn,
    db: Session = Depends(get_db),
    llm: StoryLLM = Depends(require_llm),
):
    """Write a chapter narrative for one category and store it."""
    set_user_context(db, payload.user_id)
    project = services.get_owned_project(db, payload.project_id, payload.user_id)
    answers = services.answered_questions(db, project.id) if project is not None else []
    if not answers:
        raise api_error(404, "No story data found for this project or no answered questions available")

    try:
        content = await llm.agenerate_chapter(project, answers, payload.category)
    except Exception as e:
        logger.error("Error generating chapter: %s", e)
        raise api_error(500, "Failed to generate chapter", str(e))
    if not content:
        raise api_error(500, "Failed to generate chapter content")

    chapter = Chapter(
        project_id=project.id,
        user_id=payload.user_id,
        chapter_title=services.chapter_title(payload.category, payload.chapter_number),
        chapter_content=content,
        chapter_number=payload.chapter_number,
        category=payload.category,
        created_at=services.utcnow(),
    )
    db.add(chapter)
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Error saving chapter: %s", e)
        raise api_error(500, "Failed to save generated chapter", str(e))
    db.refresh(chapter)

    logger.info("Generated chapter %d (%s) for project %s", chapter.chapter_number, chapter.category, project.id)
    return {
        "success": True,
        "chapter": services.chapter_to_dict(chapter),
        "message": "Chapter generated and saved successfully",
    }


@app.get("/api/generate-chapter")
def list_chapters(
    project_id: Optional[UUID] = Query(None, alias="projectId"),
    user_id: Optional[str] = Query(None, alias="userId"),
    db: Session = Depends(get_db),
):
    if not project_id or not user_id:
        raise api_error(400, "Project ID and User ID are required")
    set_user_context(db, user_id)

    chapters = (
        db.query(Chapter)
        .filter(Chapter.project_id == project_id, Chapter.user_id == user_id)
        .order_by(Chapter.chapter_number.asc())
        .all()
    )
    return {"success": True, "chapters": [services.chapter_to_dict(c) for c in chapters]}


# ==================== WhatsApp ====================

@app.post("/api/whatsapp-upload")
async def whatsapp_upload(
    whatsapp_chat_file: Optional[UploadFile] = File(None, alias="whatsappChatFile"),
    project_id: Optional[str] = Form(None, alias="projectId"),
    user_id: Optional[str] = Form(None, alias="userId"),
    db: Session = Depends(get_db),
):
    """Parse an exported WhatsApp chat and attach it to the project metadata."""
    if whatsapp_chat_file is None or not project_id or not user_id:
        raise api_error(400, "WhatsApp file, project ID, and user ID are required")
    if not (whatsapp_chat_file.filename or "").endswith(".txt"):
        raise api_error(400, "Only .txt files are supported")

    try:
        project_uuid = UUID(project_id)
    except ValueError:
        raise api_error(400, "Invalid project ID")
    project = load_owned_project(db, project_uuid, user_id)

    raw = await whatsapp_chat_file.read()
    chat = parse_whatsapp_chat(raw.decode("utf-8", errors="replace"))
    chat_data = chat.to_dict()

    try:
        services.set_metadata_key(db, project, "whatsappChat", chat_data)
    except SQLAlchemyError as e:
        logger.error("Error updating project metadata: %s", e)
        raise api_error(500, "Failed to save WhatsApp data to project", str(e))

    return {
        "success": True,
        "messageCount": chat_data["messageCount"],
        "participants": chat_data["participants"],
        "dateRange": chat_data["dateRange"],
        "message": "WhatsApp chat uploaded and processed successfully",
    }


# ==================== Team members ====================

def _require_story_owner(db: Session, story_id: UUID, user_id: str) -> Project:
    project = db.query(Project).filter(Project.id == story_id).first()
    if project is None:
        raise api_error(404, "Project not found")
    if project.user_id != user_id:
        raise api_error(403, "Unauthorized: You do not own this project")
    return project


def _team_member_to_dict(member: TeamMember) -> dict[str, Any]:
    return {
        "id": str(member.id),
        "story_id": str(member.story_id),
        "name": member.name,
        "phone_number": member.phone_number,
        "email": member.email,
        "role": member.role,
        "status": member.status,
        "invited_at": member.invited_at.isoformat() if member.invited_at else None,
        "created_at": member.created_at.isoformat() if member.created_at else None,
    }


@app.get("/api/team-members")
def list_team_members(
    story_id: Optional[UUID] = Query(None, alias="storyId"),
    user_id: Optional[str] = Query(None, alias="userId"),
    db: Session = Depends(get_db),
):
    if not story_id or not user_id:
        raise api_error(400, "Story ID and User ID are required")
    _require_story_owner(db, story_id, user_id)

    members = (
        db.query(TeamMember)
        .filter(TeamMember.story_id == story_id)
        .order_by(TeamMember.created_at.desc())
        .all()
    )
    return {"teamMembers": [_team_member_to_dict(m) for m in members]}


@app.post("/api/team-members")
def add_team_member(payload: TeamMemberIn, db: Session = Depends(get_db)):
    if not payload.name or not payload.phone_number:
        raise api_error(400, "All fields are required")
    if payload.role not in VALID_TEAM_ROLES:
        raise api_error(400, "Invalid role")
    _require_story_owner(db, payload.story_id, payload.user_id)

    duplicate = (
        db.query(TeamMember)
        .filter(TeamMember.story_id == payload.story_id, TeamMember.phone_number == payload.phone_number)
        .first()
    )
    if duplicate:
        raise api_error(409, "This phone number is already added to this story")

    member = TeamMember(
        story_id=payload.story_id,
        name=payload.name,
        phone_number=payload.phone_number,
        email=payload.email,
        role=payload.role,
        status="active",
        invited_at=services.utcnow(),
    )
    db.add(member)
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Error adding team member: %s", e)
        raise api_error(500, "Failed to add team member", str(e))
    db.refresh(member)

    return {"success": True, "teamMember": _team_member_to_dict(member), "message": "Team member added successfully"}


@app.delete("/api/team-members/{member_id}")
def delete_team_member(member_id: UUID, user_id: Optional[str] = Query(None, alias="userId"), db: Session = Depends(get_db)):
    if not user_id:
        raise api_error(400, "User ID and Member ID are required", success=False)

    member = db.query(TeamMember).filter(TeamMember.id == member_id).first()
    if member is None:
        raise api_error(404, "Team member not found", success=False)

    project = db.query(Project).filter(Project.id == member.story_id).first()
    if project is None or project.user_id != user_id:
        raise api_error(
            403,
            "Unauthorized: You can only delete team members from your own projects",
            success=False,
        )

    try:
        db.delete(member)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Error deleting team member: %s", e)
        raise api_error(500, "Failed to delete team member", str(e), success=False)

    return {"success": True, "message": "Team member deleted successfully"}


@app.post("/api/team-members/notify")
async def notify_team(
    payload: NotifyTeamIn,
    db: Session = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
):
    """Email open questions to every team member that has an email address."""
    project = _require_story_owner(db, payload.story_id, payload.user_id)

    query = db.query(Question).filter(Question.story_id == project.id)
    if payload.question_ids:
        rows = query.filter(Question.id.in_(payload.question_ids)).order_by(Question.priority).all()
    else:
        rows = [
            q for q in query.order_by(Question.priority, Question.created_at).all()
            if not QuestionWithAnswer.from_row(q).is_answered
        ]
    if not rows:
        raise api_error(400, "No questions to send")

    members = db.query(TeamMember).filter(TeamMember.story_id == project.id).all()
    summary = await notify_team_members(
        email_service,
        members,
        [{"id": str(q.id), "question": q.question, "category": q.category} for q in rows],
        story_id=str(project.id),
        person_name=project.person_name or "Mijn verhaal",
        is_own_story=project.subject_type == "self",
    )
    return {"success": summary["failed"] == 0, **summary}


# ==================== Email ====================

@app.post("/api/email/send-question")
async def send_question_email(
    payload: SendQuestionEmailIn,
    db: Session = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
):
    """Forward a single question to one recipient."""
    if not EMAIL_RE.match(payload.to):
        raise api_error(400, "Invalid email address")

    project = db.query(Project).filter(Project.id == payload.story_id).first()
    if project is not None:
        subject = "zichzelf" if project.subject_type == "self" else (project.person_name or "een persoon")
        context_text = f"Er wordt een verhaal geschreven over {subject} en jouw hulp is nodig om het verhaal compleet te maken."
    else:
        logger.warning("Project %s not found; sending question without context", payload.story_id)
        context_text = "Er wordt een verhaal geschreven en jouw hulp is nodig om het compleet te maken."

    result = await email_service.send_question_email(
        to=payload.to,
        member_name=payload.member_name,
        question=payload.question,
        question_id=str(payload.question_id),
        story_id=str(payload.story_id),
        context_text=context_text,
    )
    if not result.get("success"):
        raise api_error(500, "Failed to send email", result.get("error"))

    if result.get("mode") == "simulation":
        return {
            "success": True,
            "message": "Email simulated (add POSTMARK_SERVER_API_TOKEN for actual sending)",
            "mode": "simulation",
        }
    return {
        "success": True,
        "message": "Question sent successfully via email",
        "emailId": result.get("messageId"),
        "from": get_settings().EMAIL_FROM,
    }


@app.post("/api/email/webhook")
async def email_webhook(request: Request, db: Session = Depends(get_db)):
    """Store an inbound reply, matched to a question or story where possible."""
    try:
        payload = await request.json()
    except ValueError:
        raise api_error(400, "Invalid JSON body")
    if not isinstance(payload, dict):
        raise api_error(400, "Webhook body must be a JSON object")
    event_type = payload.get("type")

    if event_type in ("email.delivered", "email.bounced", "email.opened"):
        return {"success": True, "message": f"Event {event_type} acknowledged", "processed": False}
    if event_type not in ("email.replied", "email.received"):
        return {"success": True, "message": f"Event {event_type} not processed", "processed": False}

    email_data = payload.get("data")
    if not isinstance(email_data, dict):
        email_data = payload
    sender_email, sender_name = parse_sender(email_data.get("from"))
    member_name = sender_name or sender_email or "Unknown Sender"
    raw_content = email_data.get("text") or email_data.get("html") or ""
    if not isinstance(raw_content, str):
        raw_content = str(raw_content)

    question_id: Optional[UUID] = None
    story_id: Optional[UUID] = None
    found = extract_question_id(raw_content)
    if found:
        try:
            question_id = UUID(found)
        except ValueError:
            logger.info("Ignoring malformed question id in reply: %s", found)

    if question_id is not None:
        question = db.query(Question).filter(Question.id == question_id).first()
        if question is not None:
            story_id = question.story_id
    elif sender_email:
        member = db.query(TeamMember).filter(TeamMember.email == sender_email).order_by(TeamMember.created_at.desc()).first()
        if member is not None:
            story_id = member.story_id
            member_name = member.name or member_name

    record = EmailResponse(
        question_id=question_id,
        story_id=story_id,
        team_member_name=member_name,
        sender_email=sender_email,
        response_content=strip_quoted_reply(raw_content),
        email_message_id=email_data.get("message-id"),
        status="received",
    )
    db.add(record)
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Error storing email response: %s", e)
        raise api_error(500, "Failed to store email response", str(e))
    db.refresh(record)

    logger.info("Stored email response %s (question=%s, story=%s)", record.id, question_id, story_id)
    return {
        "success": True,
        "message": "Email response processed successfully",
        "responseId": str(record.id),
        "questionId": str(question_id) if question_id else None,
        "storyId": str(story_id) if story_id else None,
    }


@app.get("/api/email/webhook")
async def email_webhook_status():
    return {"message": "WriteMyStory email webhook endpoint is active"}


@app.get("/api/email/responses")
def list_email_responses(story_id: Optional[UUID] = Query(None, alias="storyId"), db: Session = Depends(get_db)):
    if not story_id:
        raise api_error(400, "Story ID is required")

    responses = (
        db.query(EmailResponse)
        .filter(EmailResponse.story_id == story_id)
        .order_by(EmailResponse.created_at.desc())
        .all()
    )
    return {
        "responses": [
            {
                "id": str(r.id),
                "question_id": str(r.question_id) if r.question_id else None,
                "team_member_name": r.team_member_name,
                "sender_email": r.sender_email,
                "response_content": r.response_content,
                "status": r.status,
                "created_at": r.created_at.isoformat() if r.created_at else None,
            }
            for r in responses
        ]
    }


@app.patch("/api/email/responses")
def update_email_response_status(payload: EmailResponseStatusIn, db: Session = Depends(get_db)):
    """Move an email response through received, reviewed and integrated."""
    if not payload.response_id or not payload.status:
        raise api_error(400, "Response ID and status are required")
    if payload.status not in VALID_EMAIL_RESPONSE_STATUSES:
        raise api_error(400, f"Status must be one of: {', '.join(VALID_EMAIL_RESPONSE_STATUSES)}")

    response = db.query(EmailResponse).filter(EmailResponse.id == payload.response_id).first()
    if response is None:
        raise api_error(404, "Email response not found")

    response.status = payload.status
    response.updated_at = services.utcnow()
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Error updating email response %s: %s", payload.response_id, e)
        raise api_error(500, "Failed to update email response status", str(e))

    return {
        "success": True,
        "message": "Email response status updated successfully",
        "response": {
            "id": str(response.id),
            "status": response.status,
            "updated_at": response.updated_at.isoformat() if response.updated_at else None,
        },
    }
