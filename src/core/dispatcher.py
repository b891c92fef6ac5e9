"""
SevaFinance Functions: Notification Dispatcher.

Delivers each intent once through the push port. Delivery is best-effort
and fire-and-forget: a failed send (expired token, provider error) is
recorded and logged, and never stops the remaining deliveries or fails
the invocation. No retry, no backoff, no receipts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.data.models import NotificationIntent
    from src.ports.notification_port import PushPort

logger = logging.getLogger(__name__)


@dataclass
class DeliveryResult:
    """Outcome of one delivery attempt."""

    intent: NotificationIntent
    status: str                 # "sent" | "failed"
    message_id: str | None = None
    error: str = ""

    @property
    def sent(self) -> bool:
        return self.status == "sent"


async def dispatch(
    intents: list[NotificationIntent],
    push: PushPort,
) -> list[DeliveryResult]:
    """Attempt every intent exactly once; return one result per intent."""
    results: list[DeliveryResult] = []
    for intent in intents:
        try:
            message_id = await push.send(intent)
        except Exception as exc:
            logger.error(
                "Error sending %s notification to user %s: %s",
                intent.kind.value, intent.user_id, exc,
            )
            results.append(DeliveryResult(intent=intent, status="failed", error=str(exc)))
            continue
        results.append(DeliveryResult(intent=intent, status="sent", message_id=message_id))

    if results:
        sent = sum(1 for r in results if r.sent)
        logger.info("Dispatched %d notification(s): %d sent, %d failed",
                    len(results), sent, len(results) - sent)
    return results
