import firebase_admin
from firebase_admin import credentials, firestore
from dotenv import load_dotenv
import os
import logging
from pathlib import Path
from contextlib import contextmanager

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger(__name__)


def _load_credentials():
    """Service-account certificate if configured, else application default credentials."""
    cred_path = os.environ.get("FIREBASE_CREDENTIALS") or os.environ.get("GOOGLE_APPLICATION_CREDENTIALS")
    if cred_path and Path(cred_path).exists():
        return credentials.Certificate(cred_path)
    return credentials.ApplicationDefault()


class Database:
    app: firebase_admin.App = None
    db = None

    def connect(self):
        try:
            options = {}
            project_id = os.environ.get("FIREBASE_PROJECT_ID")
            if project_id:
                options["projectId"] = project_id
            self.app = firebase_admin.initialize_app(_load_credentials(), options or None)
            self.db = firestore.client(self.app)
            logger.info(f"Connected to Firestore: {project_id or '(default project)'}")
        except Exception as e:
            logger.error(f"Failed to connect to Firestore: {e}")
            raise

    def close(self):
        if self.app:
            firebase_admin.delete_app(self.app)
            self.app = None
            self.db = None
            logger.info("Firestore connection closed")

    def get_db(self):
        return self.db

    def get_app(self):
        return self.app


# Global database instance
database = Database()


@contextmanager
def get_db_context():
    """Context manager for standalone scripts to access Firestore.

    Usage in scripts:
        with get_db_context() as db:
            db.collection("restaurants").document(rid).get()
    """
    database.connect()
    try:
        yield database.get_db()
    finally:
        database.close()
