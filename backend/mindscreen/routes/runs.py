# _____ uses collection.py (state machine) + storage.py (sessions) + responses.py (persistence/scoring)
# to provide stateful run endpoints

from typing import Any, Optional
from uuid import uuid4
import base64
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from mindscreen.api.deps import get_catalog, get_notifier, get_registry, get_store
from mindscreen.api.survey import build_meta, domain_error, api_error, require_questionnaire, show_question
from mindscreen.core import config
from mindscreen.db.session import get_db
from mindscreen.services.catalog import QuestionCatalog
from mindscreen.services.collection import AnswerCollection, Phase
from mindscreen.services.errors import ConfigurationError, MindscreenError, ScoreOutOfRange, ValidationError
from mindscreen.services.notifications import Notifier
from mindscreen.services.responses import notify_if_flagged, record_submission, score_response
from mindscreen.services.scoring_registry import ScoringConfigResolver
from mindscreen.services.storage import CollectionSession, InMemorySessionStore

router = APIRouter()
logger = logging.getLogger(__name__)

IDENTITY_PROMPT = {
    "id": "identity",
    "type": "identity",
    "text": "Please enter your email address to continue",
    "fields": ["email", "name"],
    "constraints": {"required": ["email"]},
}


# ---------- helpers ----------

def _new_run_id() -> str:
    """
    Generate a URL-safe short id from 16 random bytes.
    Example: 'f2q4...-' (~22 chars).
    """
    return base64.urlsafe_b64encode(uuid4().bytes).rstrip(b"=").decode("ascii")


def _require_run(store: InMemorySessionStore, run_id: str) -> CollectionSession:
    """
    Fetch a session from the store or raise 404 if it doesn't exist.
    """
    session = store.get_session(run_id)
    if session is None:
        raise api_error(404, "UNKNOWN_RUN", f"Run '{run_id}' not found.")
    return session




def _require_active(session: CollectionSession) -> None:
    """
    Ensure the run is still collecting answers. If not, raise a 409 (conflict).
    """
    machine = session.get("machine")
    if machine is None or machine.is_terminal:
        state = machine.phase.value if machine is not None else session.get("state")
        raise api_error(409, "STATUS_INACTIVE", f"Run is {state}.")


def _draft_payload(draft: Any) -> Any:
    if isinstance(draft, frozenset):
        return sorted(draft)
    return draft


def _run_payload(session: CollectionSession, **extra: Any) -> dict:
    machine: Optional[AnswerCollection] = session.get("machine")
    phase = machine.phase if machine is not None else Phase(session["state"])

    next_payload: Optional[dict] = None
    if phase == Phase.COLLECTING_IDENTITY:
        next_payload = dict(IDENTITY_PROMPT)
    elif phase == Phase.ANSWERING:
        question = machine.current_question
        next_payload = show_question(question)
        next_payload["answer"] = _draft_payload(machine.draft(question.id))

    payload = {
        "run_id": session["run_id"],
        "questionnaire_id": session["questionnaire_id"],
        "state": phase.value,
        "done": machine is None or machine.is_terminal,
        "ready_to_submit": phase == Phase.PENDING_SUBMIT,
        "next": next_payload,
        "progress": machine.progress if machine is not None else session.get("progress", {}),
        "version": session["version"],
        "meta": build_meta(),
    }
    if phase == Phase.REVIEWING_REQUIRED:
        payload["missing_index"] = machine.missing_index
    if session.get("response_code"):
        payload["unique_code"] = session["response_code"]
    payload.update(extra)
    return payload


def _apply(store: InMemorySessionStore, run_id: str, op_name: str, *args: Any) -> CollectionSession:
    """
    Run one state-machine operation under the run's lock and persist the result.
    ValidationErrors may move the machine (submit -> reviewing_required), so the
    session is written back before the error is surfaced. Runs that end up
    terminal are retired to a slim record.
    """
    with store.locked(run_id):
        session = _require_run(store, run_id)
        _require_active(session)
        machine: AnswerCollection = session["machine"]
        try:
            getattr(machine, op_name)(*args)
        except ValidationError as e:
            store.replace_session(session)
            raise domain_error(e)
        except MindscreenError as e:
            raise domain_error(e)

        if machine.is_terminal:
            return store.retire_session(session)
        return store.replace_session(session)


# ---------- request models ----------

class BeginRequest(BaseModel):
    questionnaire_id: str


class RunRequest(BaseModel):
    run_id: str


class IdentityRequest(BaseModel):
    run_id: str
    email: str
    name: Optional[str] = None


class AnswerRequest(BaseModel):
    run_id: str
    question_id: str
    # single_choice: option value; multiple_choice: list of option values;
    # yes_no: bool or "yes"/"no"; rating/scale: integer; free_text/date: string
    value: Any = None


# ---------- endpoints ----------

@router.post("/survey/begin")
def begin_run(
    req: BeginRequest,
    catalog: QuestionCatalog = Depends(get_catalog),
    store: InMemorySessionStore = Depends(get_store),
):
    """
    Create a new run (session), persist it, and return the identity prompt.
    """
    questionnaire = require_questionnaire(catalog, req.questionnaire_id)

    record: CollectionSession = {
        "run_id": _new_run_id(),
        "version": config.SURVEY_VERSION,
        "questionnaire_id": questionnaire.id,
        "machine": AnswerCollection(questionnaire),
        "response_code": None,
    }
    store.create_session(record)
    logger.info("run started for %s", questionnaire.id)

    return _run_payload(record)


@router.post("/survey/identity")
def set_identity(req: IdentityRequest, store: InMemorySessionStore = Depends(get_store)):
    return _run_payload(_apply(store, req.run_id, "set_identity", req.email, req.name))


@router.post("/survey/answer")
def answer_question(req: AnswerRequest, store: InMemorySessionStore = Depends(get_store)):
    """
    Store (or overwrite) the draft for one question. Does not move the cursor.
    """
    return _run_payload(_apply(store, req.run_id, "set_answer", req.question_id, req.value))


@router.post("/survey/advance")
def advance(req: RunRequest, store: InMemorySessionStore = Depends(get_store)):
    return _run_payload(_apply(store, req.run_id, "advance"))


@router.post("/survey/retreat")
def retreat(req: RunRequest, store: InMemorySessionStore = Depends(get_store)):
    return _run_payload(_apply(store, req.run_id, "retreat"))


@router.post("/survey/review")
def review_missing(req: RunRequest, store: InMemorySessionStore = Depends(get_store)):
    """
    After a blocked submit, jump to the first unanswered required question.
    """
    return _run_payload(_apply(store, req.run_id, "review_missing"))


@router.post("/survey/submit")
def submit_run(
    req: RunRequest,
    db: Session = Depends(get_db),
    catalog: QuestionCatalog = Depends(get_catalog),
    store: InMemorySessionStore = Depends(get_store),
    registry: ScoringConfigResolver = Depends(get_registry),
    notifier: Notifier = Depends(get_notifier),
):
    """
    Finalize the answers, persist the response, then score it.
    The run only becomes submitted once the response row is committed.
    Scoring failures keep the stored answers but surface the error.
    """
    with store.locked(req.run_id):
        session = _require_run(store, req.run_id)
        _require_active(session)
        machine: AnswerCollection = session["machine"]

        try:
            finalized = machine.submit()
        except ValidationError as e:
            store.replace_session(session) # now reviewing_required
            raise domain_error(e)
        except MindscreenError as e:
            raise domain_error(e)

        questionnaire = require_questionnaire(catalog, session["questionnaire_id"])
        try:
            response = record_submission(
                db=db,
                questionnaire_id=questionnaire.id,
                identity=machine.identity,
                answers=finalized,
                run_id=session["run_id"],
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("could not store submission for run %s", req.run_id)
            # the stored session is untouched (still pending), so the respondent can submit again
            raise api_error(503, "STORAGE_UNAVAILABLE", "Your answers could not be saved. Please submit again.")

        session["response_code"] = response.unique_code
        session = store.retire_session(session)

    try:
        outcome = score_response(db=db, response=response, questionnaire=questionnaire, resolver=registry)
    except (ConfigurationError, ScoreOutOfRange) as e:
        db.commit() # keep the scoring_failed status + event
        raise domain_error(e, unique_code=response.unique_code)
    db.commit()

    notify_if_flagged(notifier, response, outcome)

    return _run_payload(session, result=outcome.result.to_dict())


@router.post("/survey/resume")
def resume_run(req: RunRequest, store: InMemorySessionStore = Depends(get_store)):
    """
    Reattach to an existing run and tell the client what to show now.
    """
    return _run_payload(_require_run(store, req.run_id))


@router.post("/survey/abandon")
def abandon_run(req: RunRequest, store: InMemorySessionStore = Depends(get_store)):
    return _run_payload(_apply(store, req.run_id, "abandon"))
