"""Parser for exported WhatsApp chat transcripts (.txt)."""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Tried in order; the first match wins.
MESSAGE_PATTERNS = [
    # [DD/MM/YYYY, HH:MM:SS] Name: Message
    re.compile(r"^\[(\d{1,2}/\d{1,2}/\d{4}, \d{1,2}:\d{2}:\d{2})\] ([^:]+): (.+)$"),
    # DD/MM/YYYY, HH:MM - Name: Message
    re.compile(r"^(\d{1,2}/\d{1,2}/\d{4}, \d{1,2}:\d{2}) - ([^:]+): (.+)$"),
    # DD-MM-YYYY HH:MM - Name: Message
    re.compile(r"^(\d{1,2}-\d{1,2}-\d{4} \d{1,2}:\d{2}) - ([^:]+): (.+)$"),
    # MM/DD/YY, HH:MM AM/PM - Name: Message
    re.compile(r"^(\d{1,2}/\d{1,2}/\d{2}, \d{1,2}:\d{2} [AP]M) - ([^:]+): (.+)$"),
]

_SLASH_DATE_RE = re.compile(r"(\d{1,2})/(\d{1,2})/(\d{4})")
_DASH_DATE_RE = re.compile(r"(\d{1,2})-(\d{1,2})-(\d{4})")

_TIMESTAMP_FORMATS = (
    "%Y-%m-%d, %H:%M:%S",
    "%Y-%m-%d, %H:%M",
    "%Y-%m-%d %H:%M",
    "%m/%d/%y, %I:%M %p",
)


@dataclass
class ChatMessage:
    timestamp: str
    sender: str
    message: str
    date: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "sender": self.sender,
            "message": self.message,
            "date": self.date.isoformat() if self.date else None,
        }


@dataclass
class WhatsAppChat:
    messages: list[ChatMessage] = field(default_factory=list)
    participants: list[str] = field(default_factory=list)
    total_lines: int = 0
    parsing_date: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def message_count(self) -> int:
        return len(self.messages)

    @property
    def date_range(self) -> dict[str, Optional[datetime]]:
        if not self.messages:
            return {"start": None, "end": None}
        return {"start": self.messages[0].date, "end": self.messages[-1].date}

    def to_dict(self) -> dict[str, Any]:
        """Serialize in the shape stored under project metadata["whatsappChat"]."""
        date_range = self.date_range
        return {
            "messages": [m.to_dict() for m in self.messages],
            "participants": list(self.participants),
            "messageCount": self.message_count,
            "dateRange": {
                "start": date_range["start"].isoformat() if date_range["start"] else None,
                "end": date_range["end"].isoformat() if date_range["end"] else None,
            },
            "processingInfo": {
                "totalLines": self.total_lines,
                "successfullyParsed": self.message_count,
                "parsingDate": self.parsing_date.isoformat(),
            },
        }


def parse_timestamp(timestamp: str) -> Optional[datetime]:
    """
    Best-effort conversion of a WhatsApp timestamp into a datetime.

    Day-first dates are reordered to ISO order before parsing. Anything
    that still does not parse yields None.
    """
    if "/" in timestamp and "," in timestamp:
        candidate = _SLASH_DATE_RE.sub(r"\3-\2-\1", timestamp)
    elif "-" in timestamp:
        candidate = _DASH_DATE_RE.sub(r"\3-\2-\1", timestamp)
    else:
        return None

    for fmt in _TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(candidate, fmt)
        except ValueError:
            continue
    return None


def _match_line(line: str) -> Optional[ChatMessage]:
    for pattern in MESSAGE_PATTERNS:
        match = pattern.match(line)
        if match:
            timestamp, sender, message = match.groups()
            return ChatMessage(
                timestamp=timestamp,
                sender=sender.strip(),
                message=message.strip(),
                date=parse_timestamp(timestamp),
            )
    return None


def parse_whatsapp_chat(content: str) -> WhatsAppChat:
    """
    Parse the full text of an exported chat in a single pass.

    Lines that match no pattern continue the previous message; before the
    first message they are dropped. Timestamps are not checked for order.
    """
    lines = [line.rstrip("\r") for line in content.split("\n") if line.strip()]
    chat = WhatsAppChat(total_lines=len(lines))

    seen: set[str] = set()
    for line in lines:
        message = _match_line(line)
        if message is not None:
            chat.messages.append(message)
            if message.sender not in seen:
                seen.add(message.sender)
                chat.participants.append(message.sender)
        elif chat.messages:
            chat.messages[-1].message += "\n" + line.strip()

    logger.info(
        "Parsed WhatsApp chat: %d messages from %d lines, %d participants",
        chat.message_count,
        chat.total_lines,
        len(chat.participants),
    )
    return chat
