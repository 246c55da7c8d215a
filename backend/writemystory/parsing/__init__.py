"""Text parsers for LLM output and uploaded chat exports."""

from .questions import ParsedQuestion, parse_question_line, parse_questions_text
from .whatsapp import ChatMessage, WhatsAppChat, parse_whatsapp_chat

__all__ = [
    "ParsedQuestion",
    "parse_question_line",
    "parse_questions_text",
    "ChatMessage",
    "WhatsAppChat",
    "parse_whatsapp_chat",
]
