import os
from typing import Optional

from google.cloud import firestore
from google.oauth2 import service_account

from utils.logging import get_logger

logger = get_logger(__name__)


def create_firestore_client(
    project_id: Optional[str] = None,
    credentials_path: Optional[str] = None,
) -> Optional[firestore.Client]:
    """
    Connects to the Firestore project holding focus sessions and preferences.

    A service account file (argument or ``GOOGLE_APPLICATION_CREDENTIALS``)
    is used when given, Application Default Credentials otherwise. An
    explicit ``project_id`` overrides the project named in the key file.

    Returns:
        The client, or None when it cannot be created; callers fall back
        to in-memory storage.
    """
    creds_path = credentials_path or os.getenv("GOOGLE_APPLICATION_CREDENTIALS")
    try:
        if not creds_path:
            client = firestore.Client(project=project_id)
        else:
            credentials = service_account.Credentials.from_service_account_file(creds_path)
            client = firestore.Client(
                credentials=credentials,
                project=project_id or credentials.project_id,
            )
    except Exception as e:
        logger.error(
            "Firestore init failed",
            extra={"project_id": project_id, "service_account": bool(creds_path), "error": str(e)},
        )
        return None
    logger.debug("Firestore client ready", extra={"project_id": getattr(client, "project", project_id)})
    return client
