# Process-wide collaborators, exposed as FastAPI dependencies so tests can
# swap them through app.dependency_overrides.
from fastapi import Depends
from sqlalchemy.orm import Session

from mindscreen.core import config
from mindscreen.db.session import get_db
from mindscreen.services.catalog import QuestionCatalog, default_catalog
from mindscreen.services.notifications import LoggingNotifier, Notifier
from mindscreen.services.scoring_registry import DatabaseScoringRegistry, ScoringConfigResolver, default_registry
from mindscreen.services.storage import InMemorySessionStore

# One instance of each per process
CATALOG = default_catalog()
REGISTRY = default_registry()
STORE = InMemorySessionStore()
NOTIFIER = LoggingNotifier()


def get_catalog() -> QuestionCatalog:
    return CATALOG


def get_store() -> InMemorySessionStore:
    return STORE


def get_notifier() -> Notifier:
    return NOTIFIER


def get_registry(db: Session = Depends(get_db)) -> ScoringConfigResolver:
    if config.SCORING_SOURCE == "database":
        return DatabaseScoringRegistry(db)
    return REGISTRY
