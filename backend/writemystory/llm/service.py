"""LLM service for analysing answers, generating questions and story previews."""

import logging
from pathlib import Path
from typing import Any, Optional

from langchain_anthropic import ChatAnthropic
from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from langchain_openai import ChatOpenAI

from ..config import Settings
from ..progress import LIFE_PERIODS

logger = logging.getLogger(__name__)

# Get the prompts directory path
_PROMPTS_DIR = Path(__file__).parent / "prompts"


def _load_prompt(filename: str) -> str:
    """
    Load a prompt template from a markdown file.

    Args:
        filename: Name of the prompt file (e.g., "analysis_prompt.md")

    Returns:
        Prompt template string

    Raises:
        FileNotFoundError: If the prompt file doesn't exist
    """
    prompt_path = _PROMPTS_DIR / filename
    if not prompt_path.exists():
        raise FileNotFoundError(f"Prompt file not found: {prompt_path}")

    with open(prompt_path, "r", encoding="utf-8") as f:
        return f.read().strip()


# Load prompts from markdown files
SYSTEM_PROMPT = _load_prompt("system_prompt.md")
PROMPTS = {
    "analysis": _load_prompt("analysis_prompt.md"),
    "questions": _load_prompt("questions_prompt.md"),
    "introduction_analysis": _load_prompt("introduction_analysis_prompt.md"),
    "introduction_questions": _load_prompt("introduction_questions_prompt.md"),
    "chapter_questions": _load_prompt("chapter_questions_prompt.md"),
    "story_preview": _load_prompt("story_preview_prompt.md"),
    "chapter": _load_prompt("chapter_prompt.md"),
}

QUESTION_CATEGORIES = [
    ("childhood", "jeugd"),
    ("education", "onderwijs"),
    ("career", "werk/carrière"),
    ("family", "familie"),
    ("relationships", "relaties"),
    ("hobbies", "hobby's/interesses"),
    ("travel", "reizen"),
    ("challenges", "uitdagingen"),
    ("achievements", "prestaties"),
    ("general", "algemeen"),
]

WRITING_STYLES = {
    "neutrale": "Neutrale, toegankelijke stijl die objectief en helder is zonder te veel persoonlijke interpretatie",
    "isaacson": "Biografische stijl zoals Walter Isaacson - diepgaand, analytisch, met focus op karakter en motivatie",
    "knausgaard": "Intieme, gedetailleerde stijl zoals Karl Ove Knausgård - zeer persoonlijk en eerlijk",
    "chatty": "Conversationele, vriendelijke toon alsof je praat met een goede vriend",
    "literary": "Literaire stijl met mooie beeldspraak en doorwrochte zinnen",
}

QUESTION_COUNT = 8
CHAPTER_FALLBACK_ANSWERS = 10

# Chapter narratives use their own style set
CHAPTER_STYLES = {
    "isaacson": "Schrijf in de stijl van Walter Isaacson: analytisch, gedetailleerd en biografisch, met aandacht voor context en achtergronden.",
    "gul": "Schrijf in de stijl van Lale Gül: persoonlijk, direct en emotioneel, met warmte en toegankelijkheid.",
    "tellegen": "Schrijf in de stijl van Toon Tellegen: poëtisch, filosofisch en beeldend, met aandacht voor de schoonheid van kleine momenten.",
    "adaptive": "Schrijf in een warme, persoonlijke stijl die past bij de verhalen en emoties van de persoon.",
}


def writing_style_description(style: Optional[str]) -> str:
    return WRITING_STYLES.get(style or "", WRITING_STYLES["neutrale"])


def person_label(project: Any) -> str:
    """How prompts refer to the subject of the story."""
    if project.subject_type == "self":
        return "de persoon"
    return project.person_name or "de persoon"


def subject_line(project: Any) -> str:
    if project.subject_type == "self":
        return "Eigen verhaal"
    return f"Verhaal van {project.person_name}"


def format_answers(answers: list[dict]) -> str:
    """Render answered questions as category/question/answer blocks."""
    return "\n\n".join(
        f"Categorie: {a.get('category', '')}\nVraag: {a.get('question', '')}\nAntwoord: {a.get('answer', '')}"
        for a in answers
    )


def group_answers_by_category(answers: list[dict]) -> dict[str, list[dict]]:
    grouped: dict[str, list[dict]] = {}
    for a in answers:
        grouped.setdefault(a.get("category", ""), []).append(a)
    return grouped


def _category_lines() -> str:
    return "\n".join(f"- {key} ({label})" for key, label in QUESTION_CATEGORIES)


def _format_lines() -> str:
    return "\n".join(f"{i}. [CATEGORIE] - [VRAAG]" for i in range(1, QUESTION_COUNT + 1))


class StoryLLM:
    """LLM service for the WriteMyStory question and narrative flows."""

    def __init__(self, settings: Settings):
        """
        Initialize the LLM service.

        Args:
            settings: Application settings with provider configuration
        """
        self.settings = settings
        self._llm = None
        self._story_llm = None
        self._chapter_llm = None
        self._chains: dict[str, Any] = {}

    @property
    def is_configured(self) -> bool:
        return bool(self.settings.llm_api_key)

    def _build_chat_model(self, model_name: str, max_tokens: int, extra_body: Optional[dict] = None):
        provider = self.settings.PROVIDER.lower()
        api_key = self.settings.llm_api_key

        if provider in ("together", "openai"):
            if not api_key:
                key_name = "TOGETHER_AI_API_KEY" if provider == "together" else "OPENAI_API_KEY"
                raise ValueError(f"{key_name} is required when PROVIDER={provider}")

            kwargs: dict[str, Any] = {
                "model": model_name,
                "temperature": self.settings.TEMPERATURE,
                "top_p": self.settings.TOP_P,
                "timeout": self.settings.TIMEOUT_SEC,
                "max_tokens": max_tokens,
                "api_key": api_key,
            }
            if provider == "together":
                # Together.ai speaks the OpenAI chat-completions protocol
                kwargs["base_url"] = self.settings.TOGETHER_BASE_URL
                if extra_body:
                    kwargs["extra_body"] = extra_body
            return ChatOpenAI(**kwargs)

        if provider == "anthropic":
            if not api_key:
                raise ValueError("ANTHROPIC_API_KEY is required when PROVIDER=anthropic")

            return ChatAnthropic(
                model=model_name,
                temperature=self.settings.TEMPERATURE,
                top_p=self.settings.TOP_P,
                timeout=self.settings.TIMEOUT_SEC,
                max_tokens=max_tokens,
                api_key=api_key,
            )

        raise ValueError(f"Unsupported provider: {provider}")

    def _make_llm(self):
        """Chat model used for analysis and question generation."""
        if self._llm is None:
            self._llm = self._build_chat_model(self.settings.MODEL_NAME, self.settings.MAX_TOKENS)
        return self._llm

    def _make_story_llm(self):
        """Chat model used for long-form story previews."""
        if self._story_llm is None:
            self._story_llm = self._build_chat_model(
                self.settings.STORY_MODEL_NAME,
                self.settings.STORY_MAX_TOKENS,
                extra_body={"repetition_penalty": 1.1},
            )
        return self._story_llm

    def _make_chapter_llm(self):
        """Chat model used for single-chapter narratives."""
        if self._chapter_llm is None:
            self._chapter_llm = self._build_chat_model(self.settings.MODEL_NAME, self.settings.CHAPTER_MAX_TOKENS)
        return self._chapter_llm

    def _get_chain(self, name: str):
        """Get or create the prompt | model | parser chain for a prompt."""
        if name in self._chains:
            return self._chains[name]

        prompt = ChatPromptTemplate.from_messages([
            ("system", SYSTEM_PROMPT),
            ("human", PROMPTS[name]),
        ])
        if name == "story_preview":
            llm = self._make_story_llm()
        elif name == "chapter":
            llm = self._make_chapter_llm()
        else:
            llm = self._make_llm()
        chain = prompt | llm | StrOutputParser()
        self._chains[name] = chain
        return chain

    async def _run(self, name: str, inputs: dict[str, Any]) -> str:
        chain = self._get_chain(name)
        logger.debug("Invoking %s prompt (%d input fields)", name, len(inputs))
        result = await chain.ainvoke(inputs)
        text = result.strip() if result else ""
        logger.info("%s prompt returned %d characters", name, len(text))
        return text

    async def aanalyze_answers(self, project: Any, answers: list[dict]) -> str:
        """
        Analyse the answers given so far.

        Args:
            project: Project row (subject_type, person_name, period_type)
            answers: Dicts with category, question and answer

        Returns:
            Structured analysis text
        """
        return await self._run("analysis", {
            "person_name": person_label(project),
            "subject_line": subject_line(project),
            "period_type": project.period_type,
            "answer_count": len(answers),
            "answers_text": format_answers(answers),
        })

    async def agenerate_questions(self, project: Any, analysis: str) -> str:
        """Generate numbered questions from an answer analysis."""
        return await self._run("questions", {
            "person_name": person_label(project),
            "analysis": analysis,
            "categories": _category_lines(),
            "format_lines": _format_lines(),
        })

    async def aanalyze_introduction(self, project: Any, introduction: str) -> str:
        return await self._run("introduction_analysis", {
            "person_name": person_label(project),
            "subject_line": subject_line(project),
            "period_type": project.period_type,
            "introduction": introduction,
        })

    async def agenerate_introduction_questions(self, project: Any, analysis: str, introduction: str) -> str:
        return await self._run("introduction_questions", {
            "person_name": person_label(project),
            "analysis": analysis,
            "introduction": introduction,
            "categories": _category_lines(),
            "format_lines": _format_lines(),
        })

    async def agenerate_chapter_questions(
        self,
        project: Any,
        chapter_id: str,
        introduction: Optional[str] = None,
    ) -> str:
        """
        Generate questions for one life period.

        Args:
            project: Project row
            chapter_id: Key into LIFE_PERIODS
            introduction: Optional introduction text for context

        Returns:
            Raw numbered question list
        """
        chapter = LIFE_PERIODS[chapter_id]
        name = project.person_name or "deze persoon"
        deceased = bool(project.is_deceased)

        return await self._run("chapter_questions", {
            "chapter_name": chapter["name"],
            "subject_line": "Dit is een autobiografie" if project.subject_type == "self" else f"Dit is een biografie over {name}",
            "deceased_line": f"{name} is overleden" if deceased else f"{name} leeft nog",
            "chapter_description": chapter["description"],
            "introduction_line": f"Introductie: {introduction}" if introduction else "Geen introductie beschikbaar",
            "chapter_prompt": chapter["prompt"],
            "deceased_instruction": (
                "Pas de vragen aan voor een overleden persoon (gebruik verleden tijd, focus op herinneringen)."
                if deceased else ""
            ),
            "tone_requirement": (
                "Respectvol en passend zijn voor een memorial" if deceased else "Inspirerend en reflectief zijn"
            ),
        })

    async def agenerate_story_preview(
        self,
        project: Any,
        answers: list[dict],
        introduction: Optional[str] = None,
    ) -> str:
        """
        Write a full narrative from every answered question.

        Args:
            project: Project row
            answers: Dicts with category, question and answer
            introduction: Optional introduction text

        Returns:
            Generated story text
        """
        deceased = bool(project.is_deceased)
        grouped = group_answers_by_category(answers)
        answers_block = "\n".join(
            f"\n=== {category.upper()} ===\n"
            + "\n\n".join(f"Q: {a.get('question', '')}\nA: {a.get('answer', '')}" for a in items)
            for category, items in grouped.items()
        )
        introduction_block = f"INTRODUCTIE VAN DE PERSOON:\n{introduction}\n" if introduction else ""

        return await self._run("story_preview", {
            "subject_type": "autobiography" if project.subject_type == "self" else "biography",
            "person_name": project.person_name or "de persoon",
            "deceased_suffix": f" (overleden in {project.passed_away_year})" if deceased else "",
            "style_description": writing_style_description(project.writing_style),
            "introduction_block": introduction_block,
            "answers_block": answers_block,
            "tone_instruction": (
                "Behandel het verhaal met respect en waardigheid, passend voor een memoriaal"
                if deceased else "Maak het verhaal levendig en inspirerend"
            ),
        })

    async def agenerate_chapter(self, project: Any, answers: list[dict], category: str = "general") -> str:
        """
        Write one chapter narrative from the answers of a single category.

        When no answer carries that category, the first answers of the
        story are used instead.

        Args:
            project: Project row
            answers: Dicts with category, question and answer
            category: Question category the chapter focuses on

        Returns:
            Generated chapter text
        """
        relevant = [a for a in answers if a.get("category") == category] or answers[:CHAPTER_FALLBACK_ANSWERS]
        questions_and_answers = "\n\n".join(
            f"Vraag: {a.get('question', '')}\nAntwoord: {a.get('answer', '')}" for a in relevant
        )

        return await self._run("chapter", {
            "person_name": person_label(project),
            "style_instruction": CHAPTER_STYLES.get(project.writing_style or "", CHAPTER_STYLES["adaptive"]),
            "focus": "de levenservaringen" if category == "general" else category,
            "period_type": project.period_type,
            "questions_and_answers": questions_and_answers,
        })
