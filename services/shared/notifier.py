"""
Notification Dispatch
=====================
The state machine signals lifecycle facts through a single-method capability:

    notifier.notify(kind, payload)

Delivery (e-mail, SMS, push) belongs to whoever subscribes to the topic.
From the lifecycle's perspective this is fire-and-forget: `dispatch()` logs
and swallows any failure, so a broken notification path can never roll back
a transition that already committed.
"""
from __future__ import annotations

import logging
from typing import Any, Protocol

from shared.events import LifecycleNotice, NotificationKind

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify(self, kind: NotificationKind, payload: dict[str, Any]) -> None:
        ...


class SnsNotifier:
    """Publishes a LifecycleNotice to an SNS topic."""

    def __init__(self, sns_client, topic_arn: str):
        self._sns = sns_client
        self._topic_arn = topic_arn

    def notify(self, kind: NotificationKind, payload: dict[str, Any]) -> None:
        notice = LifecycleNotice(kind=kind, payload=payload)
        self._sns.publish(
            TopicArn=self._topic_arn,
            Subject=_subject(kind, payload),
            Message=notice.model_dump_json(),
            MessageAttributes={
                "notification_kind": {"DataType": "String", "StringValue": kind.value},
                "event_id": {
                    "DataType": "String",
                    "StringValue": str(payload.get("event_id", "")),
                },
            },
        )


class LogNotifier:
    """Used when no topic is configured: the notice only reaches the logs."""

    def notify(self, kind: NotificationKind, payload: dict[str, Any]) -> None:
        logger.info("Notification", extra={"notification_kind": kind.value, **payload})


def dispatch(notifier: Notifier, kind: NotificationKind, payload: dict[str, Any]) -> bool:
    """Send one notice. Returns False (and logs) instead of raising."""
    try:
        notifier.notify(kind, payload)
        return True
    except Exception:
        logger.exception(
            "Notification dispatch failed",
            extra={"notification_kind": kind.value, "event_id": payload.get("event_id")},
        )
        return False


def _subject(kind: NotificationKind, payload: dict[str, Any]) -> str:
    title = payload.get("title") or payload.get("event_id", "")
    subjects = {
        NotificationKind.ACTIVATED: f"{title} is now accepting contributions",
        NotificationKind.CONTRIBUTION_RECEIVED: f"New contribution to {title}",
        NotificationKind.PAYMENT_FAILED: f"A payment to {title} did not go through",
        NotificationKind.TARGET_REACHED: f"{title} reached its target!",
        NotificationKind.CHECKOUT_READY: f"The order for {title} has been placed",
        NotificationKind.COMPLETED: f"{title} is complete",
        NotificationKind.CANCELLED: f"{title} was cancelled",
    }
    # SNS subjects are capped at 100 characters
    return subjects.get(kind, f"Update on {title}")[:100]
