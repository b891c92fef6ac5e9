"""Tests for the FCM push adapter. messaging.send is mocked."""

import pytest
from firebase_admin import exceptions as firebase_exceptions
from unittest.mock import MagicMock, patch

from src.adapters.fcm_notifier import FcmNotifier, build_message
from src.data.models import AlertKind, NotificationIntent
from src.ports.notification_port import PushError

_PATCH_SEND = "src.adapters.fcm_notifier.messaging.send"


def _intent(token="tok-1"):
    return NotificationIntent(
        kind=AlertKind.SPENDING_ALERT,
        user_id="u1",
        token=token,
        title="Spending Alert 💸",
        body="Today's spending: $70 ↑ vs $40 average (+75%)",
        data={"type": "spending_alert", "amount": "70", "priority": "normal"},
    )


class TestBuildMessage:
    def test_payload_shape(self):
        message = build_message(_intent())
        assert message.token == "tok-1"
        assert message.notification.title == "Spending Alert 💸"
        assert message.notification.body.startswith("Today's spending")
        assert message.data == {"type": "spending_alert", "amount": "70", "priority": "normal"}


class TestFcmNotifierSend:
    @pytest.mark.asyncio
    async def test_returns_message_id(self):
        app = MagicMock()
        with patch(_PATCH_SEND, return_value="projects/p/messages/1") as mock_send:
            message_id = await FcmNotifier(app=app).send(_intent())

        assert message_id == "projects/p/messages/1"
        assert mock_send.call_args.kwargs["app"] is app

    @pytest.mark.asyncio
    async def test_missing_token(self):
        with patch(_PATCH_SEND) as mock_send:
            with pytest.raises(PushError):
                await FcmNotifier(app=MagicMock()).send(_intent(token=""))
        mock_send.assert_not_called()

    @pytest.mark.asyncio
    async def test_provider_error_becomes_push_error(self):
        error = firebase_exceptions.NotFoundError("Requested entity was not found.")
        with patch(_PATCH_SEND, side_effect=error):
            with pytest.raises(PushError, match="spending_alert"):
                await FcmNotifier(app=MagicMock()).send(_intent())
