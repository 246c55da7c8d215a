"""Unit tests for the LLM service."""

from types import SimpleNamespace

import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from writemystory.config import Settings
from writemystory.llm import StoryLLM, writing_style_description


@pytest.fixture
def mock_settings():
    """Create a mock settings object."""
    settings = Settings(
        _env_file=None,
        PROVIDER="together",
        TOGETHER_AI_API_KEY="test-key",
        OPENAI_API_KEY=None,
        ANTHROPIC_API_KEY=None,
        MODEL_NAME="mistralai/Mixtral-8x7B-Instruct-v0.1",
        TEMPERATURE=0.7,
        TIMEOUT_SEC=45,
    )
    return settings


@pytest.fixture
def mock_llm_service(mock_settings):
    """Create a StoryLLM instance with mocked LLM."""
    with patch("writemystory.llm.service.ChatOpenAI") as mock_chat:
        mock_llm_instance = MagicMock()
        mock_chat.return_value = mock_llm_instance

        service = StoryLLM(mock_settings)
        service._llm = mock_llm_instance
        return service


@pytest.fixture
def project():
    return SimpleNamespace(
        subject_type="other",
        person_name="Oma Jans",
        period_type="fullLife",
        writing_style="literary",
        is_deceased=True,
        passed_away_year="2019",
    )


def _mock_chain(service, return_value):
    mock_chain = AsyncMock()
    mock_chain.ainvoke = AsyncMock(return_value=return_value)
    service._get_chain = MagicMock(return_value=mock_chain)
    return mock_chain


@pytest.mark.asyncio
async def test_aanalyze_answers(mock_llm_service, project):
    """Test answer analysis."""
    mock_chain = _mock_chain(mock_llm_service, "  Analyse  ")
    answers = [
        {"category": "childhood", "question": "Waar groeide je op?", "answer": "In Zwolle"},
        {"category": "family", "question": "Broers of zussen?", "answer": "Twee zussen"},
    ]

    result = await mock_llm_service.aanalyze_answers(project, answers)

    assert result == "Analyse"
    mock_llm_service._get_chain.assert_called_once_with("analysis")
    call_args = mock_chain.ainvoke.call_args[0][0]
    assert call_args["person_name"] == "Oma Jans"
    assert call_args["answer_count"] == 2
    assert "Antwoord: In Zwolle" in call_args["answers_text"]


@pytest.mark.asyncio
async def test_agenerate_questions(mock_llm_service, project):
    """Test question generation from an analysis."""
    mock_chain = _mock_chain(mock_llm_service, "1. childhood - Vraag?")

    result = await mock_llm_service.agenerate_questions(project, "analyse")

    assert result == "1. childhood - Vraag?"
    call_args = mock_chain.ainvoke.call_args[0][0]
    assert "analysis" in call_args
    assert "- childhood (jeugd)" in call_args["categories"]
    assert call_args["format_lines"].count("[CATEGORIE] - [VRAAG]") == 8


@pytest.mark.asyncio
async def test_agenerate_chapter_questions_for_deceased(mock_llm_service, project):
    """Test chapter generation includes memorial wording."""
    mock_chain = _mock_chain(mock_llm_service, "1. school - Vraag?")

    await mock_llm_service.agenerate_chapter_questions(project, "school_years", introduction=None)

    mock_llm_service._get_chain.assert_called_once_with("chapter_questions")
    call_args = mock_chain.ainvoke.call_args[0][0]
    assert call_args["chapter_name"] == "Schooltijd"
    assert call_args["deceased_line"] == "Oma Jans is overleden"
    assert call_args["introduction_line"] == "Geen introductie beschikbaar"
    assert call_args["deceased_instruction"]


@pytest.mark.asyncio
async def test_agenerate_story_preview_groups_answers(mock_llm_service, project):
    """Test story preview groups answers by category."""
    mock_chain = _mock_chain(mock_llm_service, "Het verhaal")
    answers = [
        {"category": "childhood", "question": "Q1", "answer": "A1"},
        {"category": "career", "question": "Q2", "answer": "A2"},
        {"category": "childhood", "question": "Q3", "answer": "A3"},
    ]

    result = await mock_llm_service.agenerate_story_preview(project, answers, introduction="Intro")

    assert result == "Het verhaal"
    call_args = mock_chain.ainvoke.call_args[0][0]
    assert call_args["answers_block"].count("=== CHILDHOOD ===") == 1
    assert call_args["deceased_suffix"] == " (overleden in 2019)"
    assert call_args["introduction_block"].startswith("INTRODUCTIE VAN DE PERSOON:")
    assert call_args["style_description"] == writing_style_description("literary")


@pytest.mark.asyncio
async def test_agenerate_chapter_uses_category_answers(mock_llm_service, project):
    """Test a chapter only sees answers from its own category."""
    mock_chain = _mock_chain(mock_llm_service, "  Hoofdstuk  ")
    answers = [
        {"category": "childhood", "question": "Q1", "answer": "A1"},
        {"category": "career", "question": "Q2", "answer": "A2"},
    ]

    result = await mock_llm_service.agenerate_chapter(project, answers, "career")

    assert result == "Hoofdstuk"
    mock_llm_service._get_chain.assert_called_once_with("chapter")
    call_args = mock_chain.ainvoke.call_args[0][0]
    assert call_args["questions_and_answers"] == "Vraag: Q2\nAntwoord: A2"
    assert call_args["focus"] == "career"
    assert call_args["person_name"] == "Oma Jans"
    assert call_args["style_instruction"].startswith("Schrijf in een warme, persoonlijke stijl")


@pytest.mark.asyncio
async def test_agenerate_chapter_falls_back_to_first_answers(mock_llm_service, project):
    mock_chain = _mock_chain(mock_llm_service, "Hoofdstuk")
    project.writing_style = "tellegen"
    answers = [{"category": "childhood", "question": f"Q{i}", "answer": f"A{i}"} for i in range(12)]

    await mock_llm_service.agenerate_chapter(project, answers)

    call_args = mock_chain.ainvoke.call_args[0][0]
    assert call_args["questions_and_answers"].count("Vraag:") == 10
    assert call_args["focus"] == "de levenservaringen"
    assert "Toon Tellegen" in call_args["style_instruction"]


@pytest.mark.asyncio
async def test_empty_model_output(mock_llm_service, project):
    _mock_chain(mock_llm_service, None)
    assert await mock_llm_service.aanalyze_introduction(project, "Intro") == ""


def test_make_llm_together(mock_settings):
    """Test LLM creation for Together.ai provider."""
    with patch("writemystory.llm.service.ChatOpenAI") as mock_chat:
        mock_instance = MagicMock()
        mock_chat.return_value = mock_instance

        service = StoryLLM(mock_settings)
        llm = service._make_llm()

        assert llm == mock_instance
        mock_chat.assert_called_once()
        kwargs = mock_chat.call_args.kwargs
        assert kwargs["base_url"] == mock_settings.TOGETHER_BASE_URL
        assert kwargs["max_tokens"] == 1500


def test_make_story_llm_uses_story_model(mock_settings):
    with patch("writemystory.llm.service.ChatOpenAI") as mock_chat:
        StoryLLM(mock_settings)._make_story_llm()

        kwargs = mock_chat.call_args.kwargs
        assert kwargs["model"] == mock_settings.STORY_MODEL_NAME
        assert kwargs["max_tokens"] == 6000
        assert kwargs["extra_body"] == {"repetition_penalty": 1.1}


def test_make_chapter_llm_uses_chapter_token_limit(mock_settings):
    with patch("writemystory.llm.service.ChatOpenAI") as mock_chat:
        StoryLLM(mock_settings)._make_chapter_llm()

        kwargs = mock_chat.call_args.kwargs
        assert kwargs["model"] == mock_settings.MODEL_NAME
        assert kwargs["max_tokens"] == 2000


def test_make_llm_anthropic():
    """Test LLM creation for Anthropic provider."""
    settings = Settings(
        _env_file=None,
        PROVIDER="anthropic",
        OPENAI_API_KEY=None,
        ANTHROPIC_API_KEY="test-key",
        MODEL_NAME="claude-3-5-sonnet-latest",
        TEMPERATURE=0.3,
        TIMEOUT_SEC=45,
    )

    with patch("writemystory.llm.service.ChatAnthropic") as mock_chat:
        mock_instance = MagicMock()
        mock_chat.return_value = mock_instance

        service = StoryLLM(settings)
        llm = service._make_llm()

        assert llm == mock_instance
        mock_chat.assert_called_once()


def test_missing_key_is_not_configured():
    settings = Settings(_env_file=None, PROVIDER="together", TOGETHER_AI_API_KEY=None)
    service = StoryLLM(settings)

    assert service.is_configured is False
    with pytest.raises(ValueError, match="TOGETHER_AI_API_KEY"):
        service._make_llm()


def test_unknown_writing_style_falls_back_to_neutral():
    assert writing_style_description("baroque") == writing_style_description("neutrale")
