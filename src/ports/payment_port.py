"""Payment port: abstract interface for the billing provider.

Core modules depend on this protocol, never on the provider SDK.
"""

from __future__ import annotations

from typing import Any, Protocol

from src.data.models import SubscriptionSnapshot


class PaymentError(Exception):
    """Raised when any payment provider operation fails."""


class SignatureError(PaymentError):
    """Raised when a webhook payload fails signature verification."""


class PaymentPort(Protocol):
    """Abstract payment interface used by core modules."""

    def construct_event(self, payload: bytes, signature: str) -> dict[str, Any]: ...

    async def retrieve_subscription(self, subscription_id: str) -> SubscriptionSnapshot: ...

    async def find_or_create_customer(self, email: str | None, user_id: str) -> str: ...

    async def create_checkout_session(
        self,
        *,
        customer_id: str,
        price_id: str,
        mode: str,
        success_url: str,
        cancel_url: str,
        user_id: str,
    ) -> dict[str, str]: ...

    async def create_portal_session(self, customer_id: str, return_url: str) -> str: ...

    async def cancel_at_period_end(self, subscription_id: str) -> dict[str, Any]: ...
