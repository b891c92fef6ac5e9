"""Store adapter factory: creates the right UserStore based on config."""

from __future__ import annotations

from src.config import settings
from src.ports.store_port import UserStore


def create_store(db_path: str | None = None) -> UserStore:
    """Return the store matching the STORE_BACKEND setting.

    Args:
        db_path: SQLite file override; ignored by the Firestore backend.
    """
    backend = settings.STORE_BACKEND.lower()

    if backend == "firestore":
        from src.adapters.firestore_store import FirestoreStore

        return FirestoreStore()

    if backend == "sqlite":
        from src.data.db import FinanceDB

        return FinanceDB(db_path=db_path)

    raise ValueError(f"Unknown STORE_BACKEND: {backend!r}")
