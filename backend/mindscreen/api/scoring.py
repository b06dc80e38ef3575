# HTTP Routes for stored responses, recalculation and scoring config lookup
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from mindscreen.api.deps import get_catalog, get_notifier, get_registry
from mindscreen.api.survey import api_error, build_meta, domain_error, require_questionnaire
from mindscreen.db.models import Response
from mindscreen.db.session import get_db
from mindscreen.services.answers import answers_to_records
from mindscreen.services.catalog import QuestionCatalog
from mindscreen.services.errors import ConfigurationError, ScoreOutOfRange
from mindscreen.services.notifications import Notifier
from mindscreen.services.responses import find_response, notify_if_flagged, recalculate_response, stored_answers
from mindscreen.services.scoring import ScoringConfig, describe_range, recommendation_for
from mindscreen.services.scoring_registry import ScoringConfigResolver

router = APIRouter()
logger = logging.getLogger(__name__)


def _number(value):
    # Float columns hand back 18.0 for 18
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _require_response(db: Session, unique_code: str) -> Response:
    response = find_response(db, unique_code)
    if response is None:
        raise api_error(404, "UNKNOWN_RESPONSE", f"Response '{unique_code}' not found.")
    return response


def show_config(config: ScoringConfig) -> dict:
    return {
        "key": config.key,
        "name": config.name,
        "description": config.description,
        "questionnaire_type": config.questionnaire_type,
        "scoring_method": config.method,
        "max_score": _number(config.max_score),
        "passing_score": _number(config.passing_score),
        "ranges": [
            {
                "min": _number(r.min),
                "max": _number(r.max),
                "label": r.label,
                "risk_level": r.risk_level,
                "severity_rank": r.severity_rank,
                "description": r.description,
            }
            for r in config.ranges
        ],
    }


def show_response(response: Response) -> dict:
    payload = {
        "id": str(response.id),
        "unique_code": response.unique_code,
        "questionnaire_id": response.questionnaire_id,
        "status": response.status.value if hasattr(response.status, "value") else str(response.status),
        "submitted_at": response.submitted_at,
        "scored_at": response.scored_at,
        "answers": answers_to_records(stored_answers(response)),
        "result": None,
    }
    if response.scored_at is not None and response.risk_level is not None:
        payload["result"] = {
            "score": _number(response.score),
            "risk_level": response.risk_level,
            "answer_scores": response.answer_scores or {},
            "flagged_for_review": response.flagged_for_review,
            "config_key": response.scoring_config_key,
        }
    return payload


@router.get("/responses/{unique_code}")
def get_response(unique_code: str, db: Session = Depends(get_db)):
    response = _require_response(db, unique_code)
    return {"response": show_response(response), "meta": build_meta()}


@router.post("/responses/{unique_code}/recalculate")
def recalculate(
    unique_code: str,
    db: Session = Depends(get_db),
    catalog: QuestionCatalog = Depends(get_catalog),
    registry: ScoringConfigResolver = Depends(get_registry),
    notifier: Notifier = Depends(get_notifier),
):
    """
    Re-run scoring on the stored answers with the current configuration.
    Unchanged inputs give an identical result.
    """
    response = _require_response(db, unique_code)
    questionnaire = require_questionnaire(catalog, response.questionnaire_id)

    try:
        outcome = recalculate_response(db=db, response=response, questionnaire=questionnaire, resolver=registry)
    except (ConfigurationError, ScoreOutOfRange) as e:
        db.commit() # keep the failure event; the previous result stays in place
        raise domain_error(e, unique_code=unique_code)
    db.commit()

    notify_if_flagged(notifier, response, outcome)

    return {
        "unique_code": unique_code,
        "result": outcome.result.to_dict(),
        "meta": build_meta(),
    }


@router.get("/scoring/configs/{questionnaire_id}")
def get_scoring_config(
    questionnaire_id: str,
    catalog: QuestionCatalog = Depends(get_catalog),
    registry: ScoringConfigResolver = Depends(get_registry),
):
    questionnaire = catalog.get(questionnaire_id)
    try:
        config = registry.resolve(
            questionnaire_id=questionnaire_id,
            questionnaire_type=questionnaire.questionnaire_type if questionnaire else None,
        )
    except ConfigurationError as e:
        raise domain_error(e)

    return {
        "config": show_config(config),
        "recommendations": {r.risk_level: recommendation_for(config, r.risk_level) for r in config.ranges},
        "descriptions": {r.risk_level: describe_range(config, r.risk_level) for r in config.ranges},
        "meta": build_meta(),
    }
