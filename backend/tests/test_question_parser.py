"""Unit tests for parsing numbered questions out of model output."""

from writemystory.parsing import ParsedQuestion, parse_question_line, parse_questions_text


def test_parses_numbered_line():
    result = parse_question_line("1. Childhood - Wat was je lievelingsspeelgoed?")
    assert result == ParsedQuestion(category="childhood", question="Wat was je lievelingsspeelgoed?")


def test_accepts_parenthesis_and_en_dash():
    result = parse_question_line("2) family – Hoe heetten je grootouders?")
    assert result.category == "family"
    assert result.question == "Hoe heetten je grootouders?"


def test_hyphenated_category_is_split_at_first_hyphen():
    result = parse_question_line("3. self-esteem - Wanneer voelde je je sterk?")
    assert result.category == "self"
    assert result.question == "esteem - Wanneer voelde je je sterk?"


def test_unnumbered_line_is_ignored():
    assert parse_question_line("Hier zijn de vragen:") is None
    assert parse_question_line("childhood - Wat?") is None


def test_numbered_line_without_dash_is_ignored():
    assert parse_question_line("4. Wat deed je in de zomer?") is None


def test_missing_category_yields_empty_category():
    result = parse_question_line("5. - Wat is dit?")
    assert result == ParsedQuestion(category="", question="Wat is dit?")


def test_primary_only_mode_skips_fallback():
    assert parse_question_line("8. Wat deed je?", allow_fallback=False) is None


def test_parse_questions_text_skips_noise():
    text = """Hieronder de vragen.

1. childhood - Waar speelde je het liefst?
Opmerking: vragen zijn persoonlijk
2. career - Wat was je eerste baan?
3. travel — Welke reis vergeet je nooit?
"""
    parsed = parse_questions_text(text)

    assert [p.category for p in parsed] == ["childhood", "career", "travel"]
    assert parsed[2].question == "Welke reis vergeet je nooit?"


def test_parse_questions_text_empty_input():
    assert parse_questions_text("") == []
    assert parse_questions_text(None) == []


def test_fallback_split_when_number_runs_into_dash():
    # No non-hyphen text between the number and the first dash, so only the fallback applies
    assert parse_question_line("1-jeugd - Waar woonde je?") == ParsedQuestion(category="-jeugd", question="Waar woonde je?")
    assert parse_question_line("1-jeugd - Waar woonde je?", allow_fallback=False) is None
