"""Helpers for inbound email replies to forwarded questions."""

import re
from email.utils import parseaddr
from typing import Any, Optional

# Tried in order against the reply body (quoted original included).
QUESTION_ID_PATTERNS = [
    re.compile(r"ID:\s*([a-fA-F0-9-]{36})", re.IGNORECASE),
    re.compile(r"ID:\s*([a-fA-F0-9-]+)", re.IGNORECASE),
    re.compile(r"question.*id[:\s]*([a-fA-F0-9-]{36})", re.IGNORECASE),
    re.compile(r"vraag.*id[:\s]*([a-fA-F0-9-]{36})", re.IGNORECASE),
]
_UUID_RE = re.compile(r"([a-fA-F0-9-]{36})")

REPLY_SEPARATORS = ("--- Original Message ---", "Dit bericht is verstuurd via WriteMyStory")


def extract_question_id(content: str) -> Optional[str]:
    """Find the first UUID-shaped question id in a reply, if any."""
    for pattern in QUESTION_ID_PATTERNS:
        match = pattern.search(content or "")
        if match:
            uuid_match = _UUID_RE.search(match.group(0))
            if uuid_match:
                return uuid_match.group(1)
    return None


def strip_quoted_reply(content: str) -> str:
    """Keep only the new text of a reply, dropping the quoted original."""
    kept = []
    for line in (content or "").split("\n"):
        if (
            any(sep in line for sep in REPLY_SEPARATORS)
            or ("On " in line and "wrote:" in line)
            or line.startswith(">")
        ):
            break
        kept.append(line)
    return "\n".join(kept).strip()


def parse_sender(value: Any) -> tuple[Optional[str], Optional[str]]:
    """
    Split a webhook "from" field into (email, name).

    Providers send either {"email": ..., "name": ...} or a header string
    such as "Piet <piet@example.com>".
    """
    if isinstance(value, dict):
        return value.get("email") or None, value.get("name") or None
    if isinstance(value, str):
        name, address = parseaddr(value)
        return address or None, name or None
    return None, None
