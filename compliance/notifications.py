"""
User notifications (KYC results, manual-review outcomes).

Delivery is a collaborator: ``LoggingNotifier`` only logs, ``WebhookNotifier``
POSTs the message to a relay that owns email/push dispatch. Messages are
sent from the job queue so a slow relay never delays a decision.
"""
import logging
from typing import Any, Optional, Protocol

import httpx

from compliance.errors import ExternalServiceError
from db.models import new_id
from jobs.queue import JobQueue

logger = logging.getLogger(__name__)

SEND_NOTIFICATION = "send_notification"


class Notifier(Protocol):
    def send(self, to: str, subject: str, template: str, data: dict[str, Any]) -> None: ...


class LoggingNotifier:

    def send(self, to: str, subject: str, template: str, data: dict[str, Any]) -> None:
        logger.info("notify %s [%s] %s %s", to, template, subject, data)


class WebhookNotifier:

    def __init__(self, url: str, timeout: float = 5.0, http: Optional[httpx.Client] = None):
        self._url = url
        self._timeout = timeout
        self._http = http or httpx.Client()

    def send(self, to: str, subject: str, template: str, data: dict[str, Any]) -> None:
        try:
            response = self._http.post(
                self._url,
                json={"to": to, "subject": subject, "template": template, "data": data},
                timeout=self._timeout,
            )
        except httpx.HTTPError as e:
            raise ExternalServiceError("notifications", str(e)) from e
        if response.status_code >= 400:
            raise ExternalServiceError("notifications", f"HTTP {response.status_code}")


class NotificationDispatcher:

    def __init__(self, notifier: Notifier, queue: JobQueue):
        self._notifier = notifier
        self._queue = queue
        queue.register(SEND_NOTIFICATION, self._send)

    def notify(self, to: str, subject: str, template: str, data: Optional[dict[str, Any]] = None) -> str:
        return self._queue.enqueue(
            SEND_NOTIFICATION,
            {"to": to, "subject": subject, "template": template, "data": data or {}},
            job_id=new_id("notify_"),
        )

    def _send(self, payload: dict) -> None:
        self._notifier.send(payload["to"], payload["subject"], payload["template"], payload["data"])
