"""Delivery of concern notification intents to submitters."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

import httpx

from .errors import DeliveryError
from .models import NotificationIntent, NotificationKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RenderedNotification:
    """Email-ready view of a notification intent."""

    to: str
    recipient_name: str
    subject: str
    body: str


@dataclass(frozen=True, slots=True)
class NotificationAck:
    concern_id: str
    kind: NotificationKind
    channel: str
    reference: str | None = None


class NotificationDispatcher(Protocol):
    async def send(self, intent: NotificationIntent) -> NotificationAck:
        ...


def _status_label(value: Any) -> str:
    return str(value or "").replace("_", " ")


def render_notification(intent: NotificationIntent) -> RenderedNotification:
    """Derive the email subject and body from an intent."""

    payload = intent.payload
    name = intent.recipient.name or "Valued User"
    topic = payload.get("subject") or "Your Concern"
    office = payload.get("department") or "Support"
    admin_name = payload.get("admin_name") or "Support Team"

    if intent.kind is NotificationKind.RESOLVED:
        subject = f"Your Concern Has Been Resolved - {intent.concern_id}"
        lines = [
            f"Hi {name},",
            f"Your concern \"{topic}\" ({intent.concern_id}) sent to {office} has been resolved.",
            "",
            "Resolution:",
            str(payload.get("message", "")),
            "",
            f"Resolved by {admin_name}.",
        ]
    elif intent.kind is NotificationKind.NOTE_ADDED:
        subject = f"Update on Your Concern: {topic}"
        lines = [
            f"Hi {name},",
            f"{admin_name} from {office} added an update to your concern {intent.concern_id}:",
            "",
            str(payload.get("message", "")),
        ]
    else:
        new_status = payload.get("new_status")
        if new_status == "in_progress":
            subject = f"Your Concern is Being Reviewed - {intent.concern_id}"
        else:
            subject = f"Your Concern is now {_status_label(new_status)} - {intent.concern_id}"
        lines = [
            f"Hi {name},",
            (
                f"The status of your concern \"{topic}\" sent to {office} changed from "
                f"{_status_label(payload.get('old_status'))} to {_status_label(new_status)}."
            ),
        ]

    return RenderedNotification(
        to=intent.recipient.email,
        recipient_name=name,
        subject=subject,
        body="\n".join(lines),
    )


class LoggingNotificationDispatcher:
    """Dispatcher that only logs the rendered message. Used when no relay is configured."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._logger = log or logger

    async def send(self, intent: NotificationIntent) -> NotificationAck:
        rendered = render_notification(intent)
        self._logger.info(
            "Notification %s for concern %s to %s: %s",
            intent.kind.value,
            intent.concern_id,
            rendered.to,
            rendered.subject,
        )
        return NotificationAck(concern_id=intent.concern_id, kind=intent.kind, channel="log")


class WebhookNotificationDispatcher:
    """POST rendered notifications as JSON to a mail relay."""

    def __init__(
        self,
        url: str,
        *,
        sender: str,
        timeout: float = 10.0,
        token: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._sender = sender
        self._timeout = timeout
        self._token = token
        self._client = client

    def _build_payload(self, intent: NotificationIntent) -> Mapping[str, Any]:
        rendered = render_notification(intent)
        return {
            "from": self._sender,
            "to": rendered.to,
            "subject": rendered.subject,
            "text": rendered.body,
            "metadata": {
                "concern_id": intent.concern_id,
                "kind": intent.kind.value,
                "created_at": intent.created_at.isoformat(),
            },
        }

    async def send(self, intent: NotificationIntent) -> NotificationAck:
        headers: dict[str, str] = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        payload = self._build_payload(intent)

        try:
            if self._client is not None:
                response = await self._client.post(self._url, json=payload, headers=headers, timeout=self._timeout)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(self._url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise DeliveryError(f"Notification relay request failed: {exc}") from exc

        if response.status_code >= 400:
            raise DeliveryError(
                f"Notification relay rejected {intent.kind.value} for {intent.concern_id}",
                status_code=response.status_code,
            )

        reference: str | None = None
        if response.content and "application/json" in response.headers.get("Content-Type", ""):
            body = response.json()
            if isinstance(body, Mapping) and body.get("id") is not None:
                reference = str(body["id"])
        return NotificationAck(concern_id=intent.concern_id, kind=intent.kind, channel="webhook", reference=reference)
