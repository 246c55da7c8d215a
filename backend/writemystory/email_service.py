"""Outbound question emails through the Postmark HTTP API."""

import asyncio
import logging
from html import escape
from typing import Any, Optional

import httpx

from writemystory.config import Settings

logger = logging.getLogger(__name__)

SUBJECT_SINGLE = "Vraag voor je verhaal - WriteMyStory"
MAX_QUESTIONS_PER_EMAIL = 5


def _footer_html() -> str:
    return """
            <div style="background-color: #f3f4f6; padding: 15px; border-radius: 8px; text-align: center;">
              <p style="color: #6b7280; margin: 0; font-size: 12px;">
                Met vriendelijke groet,<br>
                Het WriteMyStory team<br>
                <a href="https://write-my-story.com" style="color: #2563eb;">write-my-story.com</a>
              </p>
            </div>"""


def build_question_email(member_name: str, question: str, question_id: str, story_id: str, context_text: str) -> dict[str, str]:
    """Subject, HTML and text bodies for a single forwarded question."""
    html_body = f"""
          <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
            <div style="background-color: #f8f9fa; padding: 20px; border-radius: 8px; margin-bottom: 20px;">
              <h2 style="color: #2563eb; margin: 0 0 10px 0;">📝 Nieuwe vraag voor je verhaal</h2>
              <p style="color: #6b7280; margin: 0 0 10px 0;">Hallo {escape(member_name)},</p>
              <p style="color: #374151; margin: 0; font-size: 14px; line-height: 1.5;">
                {escape(context_text)} Kun je helpen door deze vraag te beantwoorden?
              </p>
            </div>
            <div style="background-color: white; padding: 20px; border: 2px solid #e5e7eb; border-radius: 8px; margin-bottom: 20px;">
              <h3 style="color: #374151; margin: 0 0 15px 0;">Vraag:</h3>
              <p style="color: #374151; font-size: 16px; line-height: 1.5; margin: 0;">{escape(question)}</p>
            </div>
            <div style="background-color: #e0f2fe; padding: 20px; border-radius: 8px; margin-bottom: 20px;">
              <h3 style="color: #1e40af; margin: 0 0 10px 0;">💬 Hoe te beantwoorden:</h3>
              <p style="color: #374151; margin: 0; font-size: 14px; line-height: 1.5;">
                • Beantwoord deze email direct<br>
                • Geen account nodig, geen website bezoeken<br>
                • Wij verwerken je antwoord automatisch in het verhaal
              </p>
            </div>{_footer_html()}
            <div style="display: none;">
              Question ID: {question_id}<br>
              Story ID: {story_id}<br>
              Member: {escape(member_name)}
            </div>
          </div>"""

    text_body = f"""Hallo {member_name},

{context_text} Kun je helpen door deze vraag te beantwoorden?

VRAAG:
{question}

HOE TE BEANTWOORDEN:
Beantwoord deze email direct! Geen account nodig, geen website bezoeken.
Wij verwerken je antwoord automatisch in het verhaal.

Met vriendelijke groet,
Het WriteMyStory team
write-my-story.com

---
Question ID: {question_id}
Story ID: {story_id}
"""
    return {"subject": SUBJECT_SINGLE, "html": html_body, "text": text_body}


def build_multiple_questions_email(
    member_name: str,
    questions: list[dict],
    story_id: str,
    person_name: str,
    is_own_story: bool = True,
) -> dict[str, str]:
    """Subject, HTML and text bodies for a batch of up to five questions."""
    questions = questions[:MAX_QUESTIONS_PER_EMAIL]
    if is_own_story:
        context_text = f'We zijn bezig met het opstellen van jouw levensverhaal "{person_name}".'
        subject_target = "je verhaal"
    else:
        context_text = f"We zijn bezig met het opstellen van het levensverhaal van {person_name}."
        subject_target = f"het verhaal van {person_name}"

    question_blocks = "".join(
        f"""
            <div style="margin-bottom: 20px; padding: 15px; background-color: #f8f9fa; border-radius: 8px; border-left: 4px solid #2563eb;">
              <h3 style="color: #2563eb; margin: 0 0 10px 0;">Vraag {i}</h3>
              <p style="font-size: 16px; line-height: 1.5; margin: 0; color: #374151;">{escape(q['question'])}</p>
              <div style="margin-top: 10px; font-size: 12px; color: #1e40af;">Question ID: {q['id']}</div>
            </div>"""
        for i, q in enumerate(questions, start=1)
    )
    html_body = f"""
          <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
            <div style="background-color: #f8f9fa; padding: 20px; border-radius: 8px; margin-bottom: 20px;">
              <h2 style="color: #2563eb; margin: 0 0 10px 0;">📚 {len(questions)} nieuwe vragen voor je verhaal</h2>
              <p style="color: #6b7280; margin: 0 0 10px 0;">Hallo {escape(member_name)},</p>
              <p style="color: #374151; margin: 0; font-size: 14px; line-height: 1.5;">
                {escape(context_text)} Kun je helpen door deze vragen te beantwoorden?
              </p>
            </div>{question_blocks}{_footer_html()}
          </div>"""

    questions_text = "\n".join(
        f"\nVRAAG {i}:\n{q['question']}\n(Question ID: {q['id']})" for i, q in enumerate(questions, start=1)
    )
    question_ids = ", ".join(str(q["id"]) for q in questions)
    text_body = f"""Hallo {member_name},

{context_text} Kun je helpen door deze vragen te beantwoorden?
{questions_text}

HOE TE BEANTWOORDEN:
- Beantwoord deze email direct!
- Nummer je antwoorden (Vraag 1:, Vraag 2:, etc.)

Met vriendelijke groet,
Het WriteMyStory team
write-my-story.com

---
Question IDs: {question_ids}
Story ID: {story_id}
"""
    return {
        "subject": f"{len(questions)} nieuwe vragen voor {subject_target} - WriteMyStory",
        "html": html_body,
        "text": text_body,
        "question_ids": question_ids,
    }


class EmailService:
    """Sends question emails; simulates sending when no Postmark token is set."""

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self._client = client

    @property
    def simulated(self) -> bool:
        return not self.settings.email_configured

    async def _post(self, payload: dict[str, Any]) -> httpx.Response:
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "X-Postmark-Server-Token": self.settings.POSTMARK_SERVER_API_TOKEN or "",
        }
        if self._client is not None:
            return await self._client.post(self.settings.POSTMARK_API_URL, json=payload, headers=headers)
        async with httpx.AsyncClient(timeout=self.settings.TIMEOUT_SEC) as client:
            return await client.post(self.settings.POSTMARK_API_URL, json=payload, headers=headers)

    async def send(
        self,
        to: str,
        subject: str,
        html_body: str,
        text_body: str,
        headers: dict[str, str],
    ) -> dict[str, Any]:
        """
        Send one email.

        Returns:
            Result dict with success flag; provider errors are reported,
            not raised
        """
        if self.simulated:
            logger.info("Email simulated (no POSTMARK_SERVER_API_TOKEN): to=%s subject=%r", to, subject)
            return {"success": True, "mode": "simulation", "to": to}

        payload = {
            "From": self.settings.EMAIL_FROM,
            "To": to,
            "ReplyTo": self.settings.EMAIL_REPLY_TO,
            "Subject": subject,
            "HtmlBody": html_body,
            "TextBody": text_body,
            "Headers": [{"Name": name, "Value": value} for name, value in headers.items()],
            "TrackOpens": True,
        }
        try:
            response = await self._post(payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("Postmark error sending to %s: %s", to, e)
            return {"success": False, "error": str(e)}

        data = response.json()
        logger.info("Email sent to %s (message id %s)", to, data.get("MessageID"))
        return {
            "success": True,
            "messageId": data.get("MessageID"),
            "to": data.get("To", to),
            "submittedAt": data.get("SubmittedAt"),
        }

    async def send_question_email(
        self,
        to: str,
        member_name: str,
        question: str,
        question_id: str,
        story_id: str,
        context_text: str,
    ) -> dict[str, Any]:
        email = build_question_email(member_name, question, question_id, story_id, context_text)
        return await self.send(
            to,
            email["subject"],
            email["html"],
            email["text"],
            headers={
                "X-WriteMyStory-Question-ID": str(question_id),
                "X-WriteMyStory-Story-ID": str(story_id),
                "X-WriteMyStory-Member": member_name,
            },
        )

    async def send_multiple_questions_email(
        self,
        to: str,
        member_name: str,
        questions: list[dict],
        story_id: str,
        person_name: str,
        is_own_story: bool = True,
    ) -> dict[str, Any]:
        email = build_multiple_questions_email(member_name, questions, story_id, person_name, is_own_story)
        return await self.send(
            to,
            email["subject"],
            email["html"],
            email["text"],
            headers={
                "X-WriteMyStory-Question-IDs": email["question_ids"],
                "X-WriteMyStory-Story-ID": str(story_id),
                "X-WriteMyStory-Member": member_name,
            },
        )


async def notify_team_members(
    email_service: EmailService,
    members: list[Any],
    questions: list[dict],
    story_id: str,
    person_name: str,
    is_own_story: bool = True,
) -> dict[str, Any]:
    """
    Email the questions to every member concurrently and wait for all sends.

    Individual failures, raised or reported, are counted and never abort
    sibling sends.
    """
    recipients = [m for m in members if (getattr(m, "email", None) or "").strip()]
    results = await asyncio.gather(
        *(
            email_service.send_multiple_questions_email(
                to=m.email,
                member_name=m.name,
                questions=questions,
                story_id=story_id,
                person_name=person_name,
                is_own_story=is_own_story,
            )
            for m in recipients
        ),
        return_exceptions=True,
    )

    sent = 0
    failed = 0
    details = []
    for member, result in zip(recipients, results):
        if isinstance(result, BaseException):
            logger.error("Email to team member %s failed: %s", member.email, result)
            failed += 1
            details.append({"to": member.email, "success": False, "error": str(result)})
        elif result.get("success"):
            sent += 1
            details.append({"to": member.email, **result})
        else:
            failed += 1
            details.append({"to": member.email, **result})

    logger.info("Team notification for story %s: %d sent, %d failed", story_id, sent, failed)
    return {"sent": sent, "failed": failed, "results": details}
