"""Tests for question emails and team notification fan-out."""

import json
from types import SimpleNamespace

import httpx
import pytest

from writemystory.config import Settings
from writemystory.email_service import (
    EmailService,
    build_multiple_questions_email,
    build_question_email,
    notify_team_members,
)
from writemystory.parsing.email_reply import extract_question_id, parse_sender, strip_quoted_reply

QUESTION_ID = "3f2b8c1e-9a4d-4e6f-8b7a-1c2d3e4f5a6b"


def _service(handler):
    settings = Settings(_env_file=None, POSTMARK_SERVER_API_TOKEN="server-token")
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return EmailService(settings, client=client)


def _questions(n):
    return [{"id": f"q-{i}", "question": f"Vraag {i}?"} for i in range(1, n + 1)]


def test_build_question_email_embeds_ids():
    email = build_question_email("Piet", "Wat at je graag?", QUESTION_ID, "story-1", "Er wordt een verhaal geschreven.")

    assert email["subject"] == "Vraag voor je verhaal - WriteMyStory"
    assert f"Question ID: {QUESTION_ID}" in email["text"]
    assert f"Question ID: {QUESTION_ID}" in email["html"]


def test_build_multiple_questions_email_caps_at_five():
    email = build_multiple_questions_email("Piet", _questions(7), "story-1", "Oma Jans", is_own_story=False)

    assert email["subject"] == "5 nieuwe vragen voor het verhaal van Oma Jans - WriteMyStory"
    assert email["question_ids"] == "q-1, q-2, q-3, q-4, q-5"
    assert "Vraag 6?" not in email["text"]


def test_html_is_escaped():
    email = build_question_email("<b>Piet</b>", "1 < 2?", "id", "story", "ctx")
    assert "&lt;b&gt;Piet&lt;/b&gt;" in email["html"]


@pytest.mark.asyncio
async def test_simulated_send_without_token():
    service = EmailService(Settings(_env_file=None, POSTMARK_SERVER_API_TOKEN=None))

    result = await service.send_question_email("a@b.nl", "Piet", "Vraag?", QUESTION_ID, "story-1", "ctx")

    assert result["success"] is True
    assert result["mode"] == "simulation"


@pytest.mark.asyncio
async def test_send_posts_to_postmark():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["token"] = request.headers["X-Postmark-Server-Token"]
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"MessageID": "msg-1", "To": "a@b.nl", "SubmittedAt": "2024-01-01T00:00:00Z"})

    result = await _service(handler).send_question_email("a@b.nl", "Piet", "Vraag?", QUESTION_ID, "story-1", "ctx")

    assert result == {"success": True, "messageId": "msg-1", "to": "a@b.nl", "submittedAt": "2024-01-01T00:00:00Z"}
    assert captured["token"] == "server-token"
    headers = {h["Name"]: h["Value"] for h in captured["body"]["Headers"]}
    assert headers["X-WriteMyStory-Question-ID"] == QUESTION_ID
    assert captured["body"]["ReplyTo"] == "info@write-my-story.com"


@pytest.mark.asyncio
async def test_provider_error_is_reported_not_raised():
    def handler(request):
        return httpx.Response(422, json={"ErrorCode": 300, "Message": "Invalid email"})

    result = await _service(handler).send("bad", "s", "<p>h</p>", "t", headers={})

    assert result["success"] is False
    assert "422" in result["error"]


@pytest.mark.asyncio
async def test_notify_team_members_counts_failures():
    def handler(request):
        body = json.loads(request.content)
        if body["To"] == "fail@b.nl":
            return httpx.Response(500)
        return httpx.Response(200, json={"MessageID": "ok", "To": body["To"]})

    members = [
        SimpleNamespace(name="Anna", email="anna@b.nl"),
        SimpleNamespace(name="Ben", email="fail@b.nl"),
        SimpleNamespace(name="Cor", email=None),
    ]

    summary = await notify_team_members(_service(handler), members, _questions(2), "story-1", "Oma Jans", False)

    assert summary["sent"] == 1
    assert summary["failed"] == 1
    assert [r["to"] for r in summary["results"]] == ["anna@b.nl", "fail@b.nl"]


@pytest.mark.asyncio
async def test_notify_team_members_survives_raised_errors():
    class ExplodingService:
        async def send_multiple_questions_email(self, **kwargs):
            if kwargs["to"] == "boom@b.nl":
                raise RuntimeError("boom")
            return {"success": True}

    members = [SimpleNamespace(name="A", email="boom@b.nl"), SimpleNamespace(name="B", email="ok@b.nl")]

    summary = await notify_team_members(ExplodingService(), members, _questions(1), "story-1", "X")

    assert summary["sent"] == 1
    assert summary["failed"] == 1
    assert summary["results"][0] == {"to": "boom@b.nl", "success": False, "error": "boom"}


def test_extract_question_id():
    assert extract_question_id(f"Mijn antwoord\n\n> Question ID: {QUESTION_ID}") == QUESTION_ID
    assert extract_question_id(f"vraag nummer id {QUESTION_ID}") == QUESTION_ID
    assert extract_question_id("Geen id hier") is None


def test_strip_quoted_reply():
    content = "Ik woonde in Zwolle.\nGroetjes\n\nOn Mon, Jan 1, Piet wrote:\n> Vraag?"
    assert strip_quoted_reply(content) == "Ik woonde in Zwolle.\nGroetjes"


def test_parse_sender_accepts_object_and_string():
    assert parse_sender({"email": "mien@example.com", "name": "Mien"}) == ("mien@example.com", "Mien")
    assert parse_sender("Piet <piet@example.com>") == ("piet@example.com", "Piet")
    assert parse_sender("piet@example.com") == ("piet@example.com", None)
    assert parse_sender(None) == (None, None)
    assert parse_sender(["piet@example.com"]) == (None, None)
