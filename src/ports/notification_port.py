"""Notification port: abstract interface for push delivery.

Core modules depend on this protocol, never on a specific push provider.
"""

from __future__ import annotations

from typing import Protocol

from src.data.models import NotificationIntent


class PushError(Exception):
    """Raised when the push provider rejects or fails a delivery."""


class PushPort(Protocol):
    """Abstract push interface used by core modules."""

    async def send(self, intent: NotificationIntent) -> str: ...
