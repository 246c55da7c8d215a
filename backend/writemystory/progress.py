"""Progress aggregation over a project's questions and answers."""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy.orm import Session, selectinload

from writemystory.models import Project, Question
from writemystory.schemas import QuestionWithAnswer

logger = logging.getLogger(__name__)

MIN_PROGRESS = 15

# Life periods ("chapters") and the question categories that belong to them.
LIFE_PERIODS: dict[str, dict[str, Any]] = {
    "early_childhood": {
        "name": "Vroege Jeugd",
        "icon": "🍼",
        "description": "De eerste levensjaren, familie en vroege herinneringen",
        "categories": ["early_life", "family", "childhood", "birth", "parents"],
        "prompt": "Genereer vragen over de vroege jeugd, familie achtergrond, eerste herinneringen, ouders en grootouders.",
    },
    "school_years": {
        "name": "Schooltijd",
        "icon": "🎓",
        "description": "School, vrienden, eerste lessen van het leven",
        "categories": ["school", "education", "friends", "learning", "adolescence"],
        "prompt": "Genereer vragen over schoolperiode, vriendschappen, leerprestaties, hobby's en persoonlijkheidsontwikkeling.",
    },
    "young_adult": {
        "name": "Jong Volwassen",
        "icon": "🌟",
        "description": "Eerste baan, onafhankelijkheid, relaties",
        "categories": ["career", "relationships", "independence", "first_job", "love"],
        "prompt": "Genereer vragen over eerste baan, romantische relaties, onafhankelijkheid en belangrijke levensbeslissingen.",
    },
    "adult_life": {
        "name": "Volwassen Leven",
        "icon": "💼",
        "description": "Werk, huwelijk, prestaties, hobby's en reizen",
        "categories": ["work", "marriage", "achievements", "hobbies", "travel", "family_life"],
        "prompt": "Genereer vragen over carrière, huwelijk/partnerschap, kinderen, prestaties, hobby's en bijzondere ervaringen.",
    },
    "later_life": {
        "name": "Later Leven",
        "icon": "🌅",
        "description": "Pensioen, wijsheid, nalatenschap en reflectie",
        "categories": ["retirement", "wisdom", "legacy", "challenges", "grandchildren"],
        "prompt": "Genereer vragen over pensioen, verworven wijsheid, nalatenschap, familie relaties en levensreflectie.",
    },
    "memorial": {
        "name": "Herinneringen",
        "icon": "🕊️",
        "description": "Speciale herinneringen en het nalatenschap",
        "categories": ["memorial", "memories", "legacy", "tribute"],
        "prompt": "Genereer vragen over mooie herinneringen, karakter eigenschappen, nalatenschap en wat deze persoon betekende voor anderen.",
    },
}


def round_half_up(value: float) -> int:
    """Round like JavaScript's Math.round (Python's round() is half-to-even)."""
    return int(math.floor(value + 0.5))


def category_in_period(category: str, period_categories: Iterable[str]) -> bool:
    """Case-insensitive substring match in either direction."""
    category = (category or "").lower()
    for candidate in period_categories:
        candidate = candidate.lower()
        if category in candidate or candidate in category:
            return True
    return False


@dataclass
class PeriodProgress:
    name: str
    icon: str
    categories: list[str]
    answered: int = 0
    total: int = 0

    @property
    def percentage(self) -> int:
        if self.total == 0:
            return 0
        return round_half_up(self.answered / self.total * 100)

    def to_dict(self) -> dict[str, Any]:
        return {
            "answered": self.answered,
            "total": self.total,
            "percentage": self.percentage,
            "name": self.name,
            "icon": self.icon,
            "categories": list(self.categories),
        }


@dataclass
class ProgressResult:
    total_questions: int = 0
    total_answered: int = 0
    periods: dict[str, PeriodProgress] = field(default_factory=dict)

    @property
    def overall(self) -> int:
        if self.total_questions == 0:
            return MIN_PROGRESS
        return max(MIN_PROGRESS, round_half_up(self.total_answered / self.total_questions * 100))

    def detail(self) -> dict[str, dict[str, Any]]:
        return {key: period.to_dict() for key, period in self.periods.items()}


def compute_progress(questions: Iterable[QuestionWithAnswer]) -> ProgressResult:
    """
    Compute overall and per-period progress from joined question rows.

    A question may fall into several periods, or none.
    """
    result = ProgressResult(
        periods={
            key: PeriodProgress(name=info["name"], icon=info["icon"], categories=list(info["categories"]))
            for key, info in LIFE_PERIODS.items()
        }
    )

    for question in questions:
        answered = question.is_answered
        result.total_questions += 1
        if answered:
            result.total_answered += 1
        for period in result.periods.values():
            if category_in_period(question.category, period.categories):
                period.total += 1
                if answered:
                    period.answered += 1

    return result


def load_questions_with_answers(db: Session, story_id: UUID) -> list[QuestionWithAnswer]:
    questions = (
        db.query(Question)
        .options(selectinload(Question.answers))
        .filter(Question.story_id == story_id)
        .order_by(Question.created_at)
        .all()
    )
    return [QuestionWithAnswer.from_row(q) for q in questions]


def recalculate_project_progress(db: Session, story_id: UUID) -> ProgressResult | None:
    """
    Recompute progress for a project and overwrite the stored values.

    Returns None when the project does not exist.
    """
    project = db.query(Project).filter(Project.id == story_id).first()
    if project is None:
        logger.warning("Progress recalculation skipped: project %s not found", story_id)
        return None

    result = compute_progress(load_questions_with_answers(db, story_id))
    project.progress = result.overall
    project.progress_detail = result.detail()
    project.updated_at = datetime.now(timezone.utc)
    db.commit()

    logger.info(
        "Progress for project %s: %d%% (%d/%d answered)",
        story_id,
        result.overall,
        result.total_answered,
        result.total_questions,
    )
    return result
