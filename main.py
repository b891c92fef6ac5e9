"""
SevaFinance Functions: Entry Point.

Single entry point: `python main.py` starts the HTTP gateway (webhook and
callables) with the scheduled jobs running alongside it.
"""

import logging

from src.config import settings

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

import uvicorn

from src.adapters.fcm_notifier import FcmNotifier
from src.adapters.store_factory import create_store
from src.gateway.http_app import build_app
from src.gateway.schedule import build_scheduler


def main() -> None:
    store = create_store()
    push = FcmNotifier()
    app = build_app(store=store, push=push, scheduler=build_scheduler(store, push))
    logging.getLogger(__name__).info("Starting SevaFinance Functions on %s:%d", settings.HOST, settings.PORT)
    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_config=None)


if __name__ == "__main__":
    main()
