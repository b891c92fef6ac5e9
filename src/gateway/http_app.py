"""
SevaFinance Functions: HTTP gateway.

The inbound HTTP surface: the Stripe webhook endpoint and the callable
RPC endpoints used by the web client. Callables follow the Firebase
callable wire format:

    request   POST /callable/<name>   {"data": {...}}
              Authorization: Bearer <Firebase ID token>
    success   200 {"result": {...}}
    failure   4xx/5xx {"error": {"status": "INVALID_ARGUMENT", "message": "..."}}
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from src.core.billing import handle_billing_event
from src.core.callables import (
    FAILED_PRECONDITION,
    INTERNAL,
    INVALID_ARGUMENT,
    NOT_FOUND,
    PERMISSION_DENIED,
    UNAUTHENTICATED,
    CallableError,
    cancel_subscription,
    create_checkout_session,
    create_customer_portal_session,
    send_test_notification,
)
from src.data.models import BillingEvent
from src.ports.payment_port import SignatureError

if TYPE_CHECKING:
    from apscheduler.schedulers.base import BaseScheduler

    from src.ports.notification_port import PushPort
    from src.ports.payment_port import PaymentPort
    from src.ports.store_port import UserStore

logger = logging.getLogger(__name__)

_HTTP_STATUS = {
    UNAUTHENTICATED: 401,
    INVALID_ARGUMENT: 400,
    FAILED_PRECONDITION: 400,
    PERMISSION_DENIED: 403,
    NOT_FOUND: 404,
    INTERNAL: 500,
}

_bearer = HTTPBearer(auto_error=False)

CallableHandler = Callable[[str | None, dict[str, Any]], Awaitable[dict[str, Any]]]


def _error_response(exc: CallableError) -> JSONResponse:
    return JSONResponse(
        status_code=_HTTP_STATUS.get(exc.code, 500),
        content={"error": {
            "status": exc.code.upper().replace("-", "_"),
            "message": exc.message,
        }},
    )


def build_app(
    store: UserStore | None = None,
    push: PushPort | None = None,
    payments: PaymentPort | None = None,
    verify_token: Callable[[str], str | None] | None = None,
    scheduler: BaseScheduler | None = None,
) -> FastAPI:
    """Build the FastAPI app with all routes.

    Args:
        store: UserStore implementation. Defaults to create_store().
        push: PushPort implementation. Defaults to FcmNotifier.
        payments: PaymentPort implementation. Defaults to StripeGateway.
        verify_token: Maps an ID token to a uid (None if invalid).
                      Defaults to Firebase ID token verification.
        scheduler: Started and stopped with the app when provided.
    """
    # Wire default adapters if not provided
    if store is None:
        from src.adapters.store_factory import create_store
        store = create_store()

    if push is None:
        from src.adapters.fcm_notifier import FcmNotifier
        push = FcmNotifier()

    if payments is None:
        from src.adapters.stripe_gateway import StripeGateway
        payments = StripeGateway()

    if verify_token is None:
        from src.integrations.firebase_app import verify_id_token
        verify_token = verify_id_token

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if scheduler is not None:
            scheduler.start()
            logger.info("Scheduler started")
        yield
        if scheduler is not None:
            scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

    app = FastAPI(title="SevaFinance Functions", lifespan=lifespan)
    app.state.store = store
    app.state.push = push
    app.state.payments = payments

    handlers: dict[str, CallableHandler] = {
        "testNotification": lambda uid, data: send_test_notification(
            uid, data, store=store, push=push,
        ),
        "createCheckoutSession": lambda uid, data: create_checkout_session(
            uid, data, store=store, payments=payments,
        ),
        "createCustomerPortalSession": lambda uid, data: create_customer_portal_session(
            uid, data, store=store, payments=payments,
        ),
        "cancelSubscription": lambda uid, data: cancel_subscription(
            uid, data, store=store, payments=payments,
        ),
    }

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    # -----------------------------------------------------------------------
    # Stripe webhook
    # -----------------------------------------------------------------------

    @app.post("/webhooks/stripe")
    async def stripe_webhook(request: Request) -> JSONResponse:
        payload = await request.body()
        signature = request.headers.get("stripe-signature", "")

        try:
            raw_event = payments.construct_event(payload, signature)
            event = BillingEvent.from_provider(raw_event)
        except SignatureError as exc:
            logger.warning("Rejected Stripe webhook: %s", exc)
            return JSONResponse(status_code=400, content={"error": str(exc)})
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Malformed Stripe event: %s", exc)
            return JSONResponse(status_code=400, content={"error": "Invalid webhook payload"})

        try:
            await handle_billing_event(event, store, payments)
        except Exception as exc:
            logger.error("Error handling Stripe event %s (%s): %s", event.id, event.type, exc)
            return JSONResponse(status_code=500, content={"error": "Webhook handler failed"})

        return JSONResponse(status_code=200, content={"received": True})

    # -----------------------------------------------------------------------
    # Callables
    # -----------------------------------------------------------------------

    @app.post("/callable/{name}")
    async def callable_endpoint(
        name: str,
        request: Request,
        credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
    ) -> JSONResponse:
        handler = handlers.get(name)
        if handler is None:
            return _error_response(CallableError(NOT_FOUND, f"Unknown function: {name}"))

        uid = None
        if credentials is not None:
            try:
                uid = await asyncio.to_thread(verify_token, credentials.credentials)
            except Exception:
                logger.exception("Token verification failed for callable %s", name)
                return _error_response(CallableError(INTERNAL, "Internal error"))

        try:
            body = await request.json()
        except ValueError:
            body = {}
        data = body.get("data") if isinstance(body, dict) else None

        try:
            result = await handler(uid, data if isinstance(data, dict) else {})
        except CallableError as exc:
            if exc.code == INTERNAL:
                logger.error("Callable %s failed: %s", name, exc.message)
            return _error_response(exc)
        except Exception:
            logger.exception("Unexpected error in callable %s", name)
            return _error_response(CallableError(INTERNAL, "Internal error"))

        return JSONResponse(status_code=200, content={"result": result})

    logger.info("HTTP gateway built with %d callables", len(handlers))
    return app
