"""
Resend Email Client

Thin async wrapper over the Resend HTTP API (POST /emails) using httpx.
The client is injected; bootstrap owns its lifecycle.
"""

from __future__ import annotations

import html
import logging
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)


class EmailSendError(Exception):
    """Resend rejected the message or could not be reached."""


@dataclass(frozen=True)
class EmailMessage:
    to:      str
    subject: str
    html:    str


class ResendEmailSender:

    def __init__(
        self,
        http:       httpx.AsyncClient,
        api_key:    str,
        from_email: str,
        api_url:    str = "https://api.resend.com/emails",
        timeout_s:  float = 30.0,
    ) -> None:
        self._http       = http
        self._api_key    = api_key
        self._from_email = from_email
        self._api_url    = api_url
        self._timeout    = timeout_s

    async def send(self, message: EmailMessage) -> str:
        """Send one email; returns the Resend message id."""
        if not self._api_key:
            raise EmailSendError("RESEND_API_KEY is not configured")

        try:
            resp = await self._http.post(
                self._api_url,
                json={
                    "from":    self._from_email,
                    "to":      [message.to],
                    "subject": message.subject,
                    "html":    message.html,
                },
                headers={"Authorization": f"Bearer {self._api_key}"},
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            raise EmailSendError(f"Resend request failed: {exc}") from exc

        if resp.status_code >= 400:
            raise EmailSendError(f"Resend error {resp.status_code}: {resp.text[:500]}")

        message_id = resp.json().get("id", "")
        logger.info("Email sent | to=%s id=%s", message.to, message_id)
        return message_id


# ---------------------------------------------------------------------------
# Document-processed template
# ---------------------------------------------------------------------------

STATUS_EMOJI = {
    "COMPLETED":    "✅",
    "NEEDS_REVIEW": "⚠️",
}
FAILED_EMOJI = "❌"

STATUS_LABEL = {
    "COMPLETED":    "processed successfully",
    "NEEDS_REVIEW": "processed but needs review",
    "FAILED":       "could not be processed",
}


def render_document_processed(
    *,
    document_name:         str,
    document_type:         str,
    status:                str,
    confidence_score:      int | None,
    extracted_commitments: int,
    warnings:              list[str],
    grant_title:           str | None,
    documents_url:         str,
) -> str:
    esc = html.escape
    rows = [
        f"<p>Your document <strong>{esc(document_name)}</strong> was "
        f"{esc(STATUS_LABEL.get(status, status.lower()))}.</p>",
        "<ul>",
        f"<li>Type: {esc(document_type)}</li>",
    ]
    if grant_title:
        rows.append(f"<li>Grant: {esc(grant_title)}</li>")
    if confidence_score is not None:
        rows.append(f"<li>Confidence: {confidence_score}%</li>")
    if extracted_commitments:
        rows.append(f"<li>Commitments extracted: {extracted_commitments}</li>")
    rows.append("</ul>")

    if warnings:
        rows.append("<p>Warnings:</p><ul>")
        rows.extend(f"<li>{esc(w)}</li>" for w in warnings)
        rows.append("</ul>")

    rows.append(f'<p><a href="{esc(documents_url)}">View documents</a></p>')
    return "\n".join(rows)
