"""FCM notification adapter: implements PushPort with Firebase Cloud Messaging.

Renders a NotificationIntent into the payload the web service worker
expects: {notification: {title, body}, data: {type, priority,
click_action, ...}}.
"""

from __future__ import annotations

import asyncio
import logging

from firebase_admin import exceptions as firebase_exceptions
from firebase_admin import messaging

from src.data.models import NotificationIntent
from src.integrations.firebase_app import get_app
from src.ports.notification_port import PushError

logger = logging.getLogger(__name__)


def build_message(intent: NotificationIntent) -> messaging.Message:
    """Build the FCM message for one intent."""
    return messaging.Message(
        token=intent.token,
        notification=messaging.Notification(title=intent.title, body=intent.body),
        data={k: str(v) for k, v in intent.data.items()},
    )


class FcmNotifier:
    """Firebase Cloud Messaging implementation of PushPort."""

    def __init__(self, app=None) -> None:
        self._app = app

    async def send(self, intent: NotificationIntent) -> str:
        if not intent.token:
            raise PushError(f"No push token for user {intent.user_id}")
        message = build_message(intent)
        try:
            message_id = await asyncio.to_thread(
                messaging.send, message, app=self._app or get_app(),
            )
        except firebase_exceptions.FirebaseError as exc:
            raise PushError(f"FCM rejected {intent.kind.value} for {intent.user_id}: {exc}") from exc
        logger.debug("FCM message %s sent to user %s", message_id, intent.user_id)
        return message_id
