# Process-wide settings, read once from the environment (.env via python-dotenv).
import os

from dotenv import load_dotenv

load_dotenv(dotenv_path=".env")


def _flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


SURVEY_VERSION = os.getenv("SURVEY_VERSION", "0.1.0")   # stamped on every meta block
DATABASE_URL = os.getenv("DATABASE_URL")                 # required; db/session.py fails loudly without it
SCORING_SOURCE = os.getenv("SCORING_SOURCE", "memory")   # memory | database
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
AUTO_CREATE_TABLES = _flag("AUTO_CREATE_TABLES", True)

if SCORING_SOURCE not in ("memory", "database"):
    raise RuntimeError(f"SCORING_SOURCE must be 'memory' or 'database', got '{SCORING_SOURCE}'")
