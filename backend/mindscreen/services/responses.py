from sqlalchemy.orm import Session # these functions write inside the caller's DB transaction
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, Any, Optional # event payload is JSON-like + actor_id/reason may be optional
import json
import logging
import secrets
import time
import uuid

from mindscreen.db.models import Response, ResponseEventLog, ActorType, ResponseStatus, EventType
from mindscreen.services.answers import FinalizedAnswerList, answers_from_records, answers_to_records
from mindscreen.services.catalog import Questionnaire
from mindscreen.services.collection import RespondentIdentity
from mindscreen.services.errors import ConfigurationError, ScoreOutOfRange
from mindscreen.services.notifications import Notifier
from mindscreen.services.scoring import ScoringResult, evaluate
from mindscreen.services.scoring_registry import ScoringConfigResolver

# All response mutations go through this service.
# Scoring state changes are mirrored into the append-only event log.

logger = logging.getLogger(__name__)

BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def utc_now():
    return datetime.now(timezone.utc)


def _base36(n: int) -> str:
    if n == 0:
        return "0"
    digits = []
    while n:
        n, rem = divmod(n, 36)
        digits.append(BASE36[rem])
    return "".join(reversed(digits))


def generate_unique_code() -> str:
    """8 random hex chars plus the tail of the millisecond clock, e.g. '9F2C01AB-K3ZQ'."""
    code = secrets.token_hex(4).upper()
    stamp = _base36(int(time.time() * 1000))[-4:].upper()
    return f"{code}-{stamp}"


@dataclass(frozen=True)
class ScoringOutcome:
    result: ScoringResult
    newly_flagged: bool   # flag went false -> true on this run; the notifier fires only then


def append_event(
          db: Session,
          response_id: uuid.UUID,
          event_type: EventType,
          payload: Optional[dict[str, Any]] = None,
          actor_type: ActorType = ActorType.SYSTEM,
          actor_id: Optional[str] = None,
          reason: Optional[str] = None,
          occurred_at: Optional[datetime] = None,
) -> ResponseEventLog:
    # Write one immutable event row to ResponseEventLog for a specific response

    if payload is None:
        payload = {}

    if not isinstance(payload, dict):
        raise ValueError("payload must be a dict")

    if any(not isinstance(k, str) for k in payload.keys()):
        raise ValueError("payload keys must be strings")

    try:
        json.dumps(payload)
    except TypeError as e:
        raise ValueError(f"payload is not JSON-serializable: {e}")

    if occurred_at is None:
        occurred_at = utc_now()

    event = ResponseEventLog(
        response_id=response_id,
        event_type=event_type,
        occurred_at=occurred_at,
        actor_type=actor_type,
        actor_id=actor_id,
        reason=reason,
        payload=payload,
    )

    db.add(event)
    db.flush() # assigns event.id without committing
    return event


def record_submission(
        db: Session,
        questionnaire_id: str,
        identity: RespondentIdentity,
        answers: FinalizedAnswerList,
        run_id: Optional[str] = None,
        submitted_at: Optional[datetime] = None,
) -> Response:
    # Persist a finalized answer list as a new, not-yet-scored response.

    if submitted_at is None:
        submitted_at = utc_now()

    response = Response(
        id=uuid.uuid4(),
        unique_code=generate_unique_code(),
        questionnaire_id=questionnaire_id,
        respondent_email=identity.email,
        respondent_name=identity.name,
        status=ResponseStatus.SUBMITTED,
        answers=answers_to_records(answers),
        flagged_for_review=False,
        submitted_at=submitted_at,
    )
    db.add(response)
    db.flush() # ensure response.id is available

    payload: Dict[str, Any] = {
        "schema_version": "response.submitted.v1",
        "questionnaire_id": questionnaire_id,
        "answer_count": len(answers),
    }
    if run_id:
        payload["run_id"] = run_id

    append_event(
        db=db,
        response_id=response.id,
        event_type=EventType.RESPONSE_SUBMITTED,
        payload=payload,
        actor_type=ActorType.RESPONDENT,
    )
    logger.info("response %s submitted for %s (%d answers)", response.unique_code, questionnaire_id, len(answers))
    return response


def find_response(db: Session, unique_code: str) -> Optional[Response]:
    return db.query(Response).filter(Response.unique_code == unique_code).first()


def stored_answers(response: Response) -> FinalizedAnswerList:
    return answers_from_records(response.answers)


def score_response(
        db: Session,
        response: Response,
        questionnaire: Questionnaire,
        resolver: ScoringConfigResolver,
        rescoring: bool = False,
        actor_type: ActorType = ActorType.SYSTEM,
        actor_id: Optional[str] = None,
) -> ScoringOutcome:
    # Score the stored answers and write the ScoringResult onto the response.
    # Configuration and out-of-range failures are logged as events and re-raised;
    # the response is never left marked as scored with a wrong or zero score.

    answers = stored_answers(response)
    try:
        config = resolver.resolve(
            questionnaire_id=response.questionnaire_id,
            questionnaire_type=questionnaire.questionnaire_type,
        )
        result = evaluate(config, answers, questionnaire.questions)
    except (ConfigurationError, ScoreOutOfRange) as e:
        if not rescoring:
            response.status = ResponseStatus.SCORING_FAILED
        append_event(
            db=db,
            response_id=response.id,
            event_type=EventType.SCORING_FAILED,
            payload={
                "schema_version": "response.scoring_failed.v1",
                "code": e.code,
                "message": e.message,
                "rescoring": rescoring,
            },
            actor_type=actor_type,
            actor_id=actor_id,
        )
        logger.error("scoring failed for response %s: %s", response.unique_code, e.message)
        raise

    was_flagged = bool(response.flagged_for_review) and response.status == ResponseStatus.SCORED
    previous = {"score": response.score, "risk_level": response.risk_level}

    response.score = result.score
    response.risk_level = result.risk_level
    response.answer_scores = result.to_dict()["answer_scores"]
    response.flagged_for_review = result.flagged_for_review
    response.scoring_config_key = result.config_key
    response.status = ResponseStatus.SCORED
    response.scored_at = utc_now()

    payload: Dict[str, Any] = {
        "schema_version": "response.scored.v1",
        "config_key": result.config_key,
        "score": result.score,
        "risk_level": result.risk_level,
        "flagged_for_review": result.flagged_for_review,
    }
    if rescoring:
        payload["previous"] = previous

    append_event(
        db=db,
        response_id=response.id,
        event_type=EventType.RESPONSE_RESCORED if rescoring else EventType.RESPONSE_SCORED,
        payload=payload,
        actor_type=actor_type,
        actor_id=actor_id,
    )

    newly_flagged = result.flagged_for_review and not was_flagged
    if newly_flagged:
        append_event(
            db=db,
            response_id=response.id,
            event_type=EventType.RESPONSE_FLAGGED,
            payload={"schema_version": "response.flagged.v1", "risk_level": result.risk_level},
            actor_type=ActorType.SYSTEM,
        )

    logger.info(
        "response %s %s: score=%s risk=%s flagged=%s",
        response.unique_code,
        "rescored" if rescoring else "scored",
        result.score,
        result.risk_level,
        result.flagged_for_review,
    )
    return ScoringOutcome(result=result, newly_flagged=newly_flagged)


def notify_if_flagged(notifier: Notifier, response: Response, outcome: ScoringOutcome) -> bool:
    # Call after commit so alerts never point at a rolled-back response.
    if not outcome.newly_flagged:
        return False
    notifier.notify_flagged(str(response.id), response.unique_code, outcome.result.risk_level)
    return True


def recalculate_response(
        db: Session,
        response: Response,
        questionnaire: Questionnaire,
        resolver: ScoringConfigResolver,
        actor_type: ActorType = ActorType.USER,
        actor_id: Optional[str] = None,
) -> ScoringOutcome:
    # Re-run scoring on the stored answers with the current config, overwriting the stored result.
    return score_response(
        db=db,
        response=response,
        questionnaire=questionnaire,
        resolver=resolver,
        rescoring=True,
        actor_type=actor_type,
        actor_id=actor_id,
    )
