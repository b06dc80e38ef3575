# ------------------------------
# mindscreen API
# Questionnaire sessions, scoring and risk review
# ------------------------------
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mindscreen.core import config

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("mindscreen")

from mindscreen.api import survey, scoring
from mindscreen.api.debug import router as debug_router
from mindscreen.routes.runs import router as runs_router
from mindscreen.db.base import Base
from mindscreen.db import models  # noqa: F401  (registers tables on Base.metadata)
from mindscreen.db.session import engine


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("DATABASE_URL loaded? %s; scoring source: %s", bool(config.DATABASE_URL), config.SCORING_SOURCE)
    if config.AUTO_CREATE_TABLES:
        Base.metadata.create_all(bind=engine)
    yield


# 'app' is what Uvicorn looks for when you run: uvicorn mindscreen.main:app --reload
app = FastAPI(
    title="mindscreen API",
    version=config.SURVEY_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Simple "health check" route so we can verify the server is alive.
@app.get("/health")
def health_check():
    return {"status": "ok"}

@app.get("/")
def root():
    return {"message": "API is running. Go to /docs for Swagger UI."}


app.include_router(survey.router, prefix="/api")
app.include_router(runs_router, prefix="/api")
app.include_router(scoring.router, prefix="/api")
app.include_router(debug_router)
