"""Parse numbered LLM output into (category, question) pairs.

The model is asked to answer in the format::

    1. childhood - Wat is je vroegste herinnering?
    2. family - Hoe zou je je ouders beschrijven?

Lines are matched one at a time. The category group stops at the first
ASCII hyphen, so a category like "self-esteem" is split there; that
behaviour is kept on purpose.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

# number, optional "." or ")", category (no hyphen), any dash, question
QUESTION_LINE_RE = re.compile(r"^\s*\d+[.)]?\s*([^-]+)\s*[-–—]\s*(.+)$")
# number followed by anything; split on " - " afterwards
NUMBERED_LINE_RE = re.compile(r"^\s*\d+[.)]?\s*(.+)$")

FALLBACK_SEPARATOR = " - "


@dataclass(frozen=True)
class ParsedQuestion:
    category: str
    question: str


def _clean(category: str, question: str) -> ParsedQuestion:
    return ParsedQuestion(category=category.strip().lower(), question=question.strip())


def parse_question_line(line: str, allow_fallback: bool = True) -> Optional[ParsedQuestion]:
    """
    Parse a single line of model output.

    Args:
        line: One line of text
        allow_fallback: Try the " - " split when the primary pattern fails

    Returns:
        ParsedQuestion, or None when the line is not a numbered question
    """
    match = QUESTION_LINE_RE.match(line)
    if match:
        category, question = match.groups()
        return _clean(category, question)

    if not allow_fallback:
        return None

    match = NUMBERED_LINE_RE.match(line)
    if not match:
        return None

    full_text = match.group(1).strip()
    dash_index = full_text.find(FALLBACK_SEPARATOR)
    if dash_index > 0:
        return _clean(
            full_text[:dash_index],
            full_text[dash_index + len(FALLBACK_SEPARATOR):],
        )
    return None


def parse_questions_text(text: str, allow_fallback: bool = True) -> list[ParsedQuestion]:
    """
    Extract every parseable question from a block of model output.

    Lines that match neither pattern are logged and dropped; an empty
    result is not an error.
    """
    parsed: list[ParsedQuestion] = []
    for line in (text or "").split("\n"):
        if not line.strip():
            continue
        result = parse_question_line(line, allow_fallback=allow_fallback)
        if result is None:
            logger.debug("No question found in line: %r", line)
            continue
        parsed.append(result)

    logger.info("Parsed %d questions from %d characters of model output", len(parsed), len(text or ""))
    return parsed
