"""Firebase Admin SDK initialization for push delivery."""

import json
import os

import firebase_admin
from firebase_admin import credentials
from structlog import get_logger

logger = get_logger(__name__)

_firebase_app: firebase_admin.App | None = None


def initialize_firebase(
    firebase_credentials_path: str | None = None,
    firebase_config_json: str | None = None,
) -> firebase_admin.App:
    """
    Initialize the Firebase Admin SDK used by FCM push notifications.

    Credentials are taken from the raw service account JSON first, then from
    the service account file, and finally from Application Default Credentials.

    Returns:
        The initialized Firebase app
    """
    global _firebase_app

    if _firebase_app is not None:
        return _firebase_app

    cred = None
    if firebase_config_json:
        cred = credentials.Certificate(json.loads(firebase_config_json))
        source = "json"
    elif firebase_credentials_path and os.path.exists(firebase_credentials_path):
        cred = credentials.Certificate(firebase_credentials_path)
        source = "file"
    else:
        source = "default"

    _firebase_app = firebase_admin.initialize_app(cred) if cred else firebase_admin.initialize_app()
    logger.info("firebase_initialized", credentials_source=source)
    return _firebase_app
