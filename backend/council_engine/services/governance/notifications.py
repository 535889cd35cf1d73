"""
Notification Dispatch

Fire-and-forget delivery of (recipient, title, body, target_url) messages
for warnings, case openings and decisions.

Delivery always happens AFTER the governance transaction has committed.
A failed push is logged and dropped; it never rolls back a decision.

WebhookNotificationDispatcher blocks on the POST. API handlers that
dispatch are plain `def` so FastAPI runs them in its threadpool.
"""
import logging
from dataclasses import dataclass, asdict
from typing import Iterable, List

import httpx

from ... import config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    recipient_id: str
    title: str
    body: str
    target_url: str = "/dashboard"


class NotificationDispatcher:
    """Delivery channel interface."""

    def send(self, notification: Notification) -> None:
        raise NotImplementedError


class LoggingNotificationDispatcher(NotificationDispatcher):
    """Default channel when no push gateway is configured."""

    def send(self, notification: Notification) -> None:
        logger.info(
            f"Notification for {notification.recipient_id}: {notification.title} ({notification.target_url})"
        )


class WebhookNotificationDispatcher(NotificationDispatcher):
    """POSTs each notification to the push gateway."""

    def __init__(self, url: str, timeout: float = 5.0, token: str = ""):
        self.url = url
        self.timeout = timeout
        self.token = token

    def send(self, notification: Notification) -> None:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        payload = {
            "professionalId": notification.recipient_id,
            "title": notification.title,
            "body": notification.body,
            "url": notification.target_url,
        }
        response = httpx.post(self.url, json=payload, headers=headers, timeout=self.timeout)
        response.raise_for_status()


def default_dispatcher() -> NotificationDispatcher:
    """Build the dispatcher from configuration."""
    if config.PUSH_WEBHOOK_URL:
        return WebhookNotificationDispatcher(
            config.PUSH_WEBHOOK_URL,
            timeout=config.PUSH_WEBHOOK_TIMEOUT,
            token=config.PUSH_WEBHOOK_TOKEN,
        )
    return LoggingNotificationDispatcher()


def dispatch_all(dispatcher: NotificationDispatcher, notifications: Iterable[Notification]) -> int:
    """
    Best-effort delivery. Returns how many were delivered.

    Every failure is logged; none is raised.
    """
    delivered = 0
    for notification in notifications:
        try:
            dispatcher.send(notification)
            delivered += 1
        except Exception as e:
            logger.warning(
                f"Notification delivery failed for {notification.recipient_id}: {e}",
                extra={"notification": asdict(notification)},
            )
    return delivered


def committee_notifications(
    committee_ids: List[str],
    title: str,
    body: str,
    target_url: str = "/ethics-committee",
) -> List[Notification]:
    return [Notification(member_id, title, body, target_url) for member_id in committee_ids]
