"""
Unit Tests — notification fan-out and the document-processed email
═══════════════════════════════════════════════════════════════════
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from grantsignal.db.repositories import NotificationDocument
from grantsignal.notifications.consumer import DocumentProcessedNotifier, NotificationDocumentNotFound
from grantsignal.notifications.email import (
    EmailMessage,
    EmailSendError,
    ResendEmailSender,
    render_document_processed,
)
from grantsignal.pipeline.notifier import NotificationDispatcher
from grantsignal.pipeline.results import Completed, Skipped
from tests.conftest import DOCUMENT_ID, ORG_ID


def _document(status: str = "COMPLETED", **overrides) -> NotificationDocument:
    values = dict(
        id=DOCUMENT_ID,
        name="Award <Letter>.pdf",
        type="AWARD_LETTER",
        status=status,
        confidence_score=92,
        parse_warnings=[],
        grant_title="Youth Programs 2025",
        extracted_commitments=3,
    )
    values.update(overrides)
    return NotificationDocument(**values)


def _resend(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# ─────────────────────────────────────────────────────────────────────────────
# Stage 6: dispatcher
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestNotificationDispatcher:

    async def test_only_opted_in_users_receive_intents(self, mock_notification_repo, mock_publisher):
        outcome = await NotificationDispatcher(mock_notification_repo, mock_publisher).run(
            DOCUMENT_ID, ORG_ID, "COMPLETED",
        )

        assert outcome == Completed({"notificationsSent": 1})
        mock_publisher.publish_notification.assert_awaited_once_with({
            "documentId": DOCUMENT_ID,
            "userId":     "u1",
            "email":      "one@example.org",
            "status":     "COMPLETED",
        })

    async def test_no_recipients(self, mock_notification_repo, mock_publisher):
        mock_notification_repo.list_recipients.return_value = []
        outcome = await NotificationDispatcher(mock_notification_repo, mock_publisher).run(
            DOCUMENT_ID, ORG_ID, "NEEDS_REVIEW",
        )
        assert outcome == Completed({"notificationsSent": 0})
        mock_publisher.publish_notification.assert_not_awaited()

    async def test_publish_failure_is_absorbed(self, mock_notification_repo, mock_publisher):
        mock_publisher.publish_notification.side_effect = ConnectionError("broker unreachable")
        outcome = await NotificationDispatcher(mock_notification_repo, mock_publisher).run(
            DOCUMENT_ID, ORG_ID, "COMPLETED",
        )
        assert outcome == Skipped("Notification dispatch error", error="broker unreachable")


# ─────────────────────────────────────────────────────────────────────────────
# Resend client
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestResendEmailSender:

    async def test_send_posts_to_resend(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "email_1"})

        async with _resend(handler) as http:
            sender = ResendEmailSender(http, api_key="re_test", from_email="GrantSignal <n@gs.app>")
            message_id = await sender.send(EmailMessage("a@b.org", "Subject", "<p>hi</p>"))

        assert message_id == "email_1"
        assert seen["auth"] == "Bearer re_test"
        assert seen["body"] == {
            "from": "GrantSignal <n@gs.app>", "to": ["a@b.org"], "subject": "Subject", "html": "<p>hi</p>",
        }

    async def test_error_status_raises(self):
        async with _resend(lambda request: httpx.Response(422, text="invalid to")) as http:
            sender = ResendEmailSender(http, api_key="re_test", from_email="n@gs.app")
            with pytest.raises(EmailSendError, match="Resend error 422"):
                await sender.send(EmailMessage("bad", "s", "h"))

    async def test_missing_api_key_raises(self):
        async with _resend(lambda request: httpx.Response(200, json={})) as http:
            with pytest.raises(EmailSendError, match="RESEND_API_KEY"):
                await ResendEmailSender(http, api_key="", from_email="n@gs.app").send(EmailMessage("a", "s", "h"))


@pytest.mark.unit
class TestTemplate:

    def test_html_is_escaped_and_complete(self):
        body = render_document_processed(
            document_name="<script>x</script>.pdf",
            document_type="AWARD_LETTER",
            status="NEEDS_REVIEW",
            confidence_score=55,
            extracted_commitments=0,
            warnings=["Low & noisy"],
            grant_title=None,
            documents_url="https://app.example.org/documents",
        )
        assert "<script>" not in body
        assert "&lt;script&gt;" in body
        assert "processed but needs review" in body
        assert "Confidence: 55%" in body
        assert "Low &amp; noisy" in body
        assert "Grant:" not in body


# ─────────────────────────────────────────────────────────────────────────────
# Consumer
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestDocumentProcessedNotifier:

    INTENT = {"documentId": DOCUMENT_ID, "userId": "u1", "email": "one@example.org", "status": "COMPLETED"}

    def _sender(self, **kwargs):
        sender = MagicMock(spec=ResendEmailSender)
        sender.send = AsyncMock(**kwargs)
        return sender

    async def test_success_sends_and_logs(self, mock_notification_repo):
        mock_notification_repo.get_document.return_value = _document()
        sender = self._sender(return_value="email_1")

        result = await DocumentProcessedNotifier(mock_notification_repo, sender, "https://app.example.org/").handle(self.INTENT)

        assert result == {"documentId": DOCUMENT_ID, "sent": True}
        message = sender.send.await_args.args[0]
        assert message.to == "one@example.org"
        assert message.subject == "✅ Document Processed: Award <Letter>.pdf"
        assert 'href="https://app.example.org/documents"' in message.html
        mock_notification_repo.add_log.assert_awaited_once_with(
            user_id="u1",
            type="DOCUMENT_PROCESSED",
            subject="Document Processed: Award <Letter>.pdf",
            success=True,
            metadata={"documentId": DOCUMENT_ID, "status": "COMPLETED"},
        )

    async def test_failed_document_uses_failure_emoji(self, mock_notification_repo):
        mock_notification_repo.get_document.return_value = _document(status="FAILED", confidence_score=None)
        sender = self._sender(return_value="email_2")

        await DocumentProcessedNotifier(mock_notification_repo, sender, "https://app").handle(self.INTENT)

        assert sender.send.await_args.args[0].subject.startswith("❌ ")

    async def test_send_failure_is_logged_then_reraised(self, mock_notification_repo):
        mock_notification_repo.get_document.return_value = _document()
        sender = self._sender(side_effect=EmailSendError("Resend error 500: oops"))

        with pytest.raises(EmailSendError):
            await DocumentProcessedNotifier(mock_notification_repo, sender, "https://app").handle(self.INTENT)

        kwargs = mock_notification_repo.add_log.await_args.kwargs
        assert kwargs["success"] is False
        assert kwargs["error_message"] == "Resend error 500: oops"

    async def test_missing_document_raises(self, mock_notification_repo):
        sender = self._sender()
        with pytest.raises(NotificationDocumentNotFound):
            await DocumentProcessedNotifier(mock_notification_repo, sender, "https://app").handle(self.INTENT)
        sender.send.assert_not_awaited()
