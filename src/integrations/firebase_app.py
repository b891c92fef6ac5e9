"""
SevaFinance Functions: Firebase Admin bootstrap.

One firebase-admin app per process, shared by the Firestore store, the
FCM notifier and caller authentication on the callable endpoints.
"""

from __future__ import annotations

import logging
from pathlib import Path

import firebase_admin
from firebase_admin import auth, credentials

logger = logging.getLogger(__name__)


def get_app() -> firebase_admin.App:
    """Return the default firebase-admin app, initializing it on first use.

    Uses the service-account file at FIREBASE_CREDENTIALS_PATH when set,
    otherwise application default credentials (the normal case on GCP).
    """
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass

    from src.config import settings

    if settings.FIREBASE_CREDENTIALS_PATH:
        cred_path = Path(settings.FIREBASE_CREDENTIALS_PATH)
        if not cred_path.exists():
            raise FileNotFoundError(
                f"Firebase service account file not found at {cred_path}. "
                "Download it from the Firebase console."
            )
        cred = credentials.Certificate(str(cred_path))
        logger.info("Initializing Firebase with service account %s", cred_path)
    else:
        cred = credentials.ApplicationDefault()
        logger.info("Initializing Firebase with application default credentials")

    return firebase_admin.initialize_app(cred)


def verify_id_token(token: str) -> str | None:
    """Return the uid for a Firebase ID token, or None if it doesn't verify."""
    try:
        decoded = auth.verify_id_token(token, app=get_app())
    except (ValueError, auth.InvalidIdTokenError, auth.ExpiredIdTokenError,
            auth.RevokedIdTokenError, auth.CertificateFetchError) as exc:
        logger.warning("ID token verification failed: %s", exc)
        return None
    return decoded.get("uid")
