# HTTP Routes for the question catalog (read-only) + shared payload helpers
from fastapi import APIRouter, Depends, HTTPException
from datetime import datetime, timezone
from typing import Any, Optional

from mindscreen.api.deps import get_catalog
from mindscreen.core import config
from mindscreen.services.catalog import QuestionCatalog, QuestionDefinition, Questionnaire, format_option_value
from mindscreen.services.errors import MindscreenError, ValidationError

router = APIRouter() # Routers = modular endpoints (keeps code organized by endpoints)


def build_meta() -> dict: # Returning server_authored metadata with an ISO-8601 UTC timestamp

    now_utc = datetime.now(timezone.utc) # timezone aware UTC
    ts = now_utc.isoformat(timespec="milliseconds").replace("+00:00", "Z")

    return {
        "version": config.SURVEY_VERSION,
        "timestamp": ts
    }


def api_error(status_code: int, code: str, message: str, **extra: Any) -> HTTPException:
    error = {"code": code, "message": message}
    error.update({k: v for k, v in extra.items() if v is not None})
    return HTTPException(status_code=status_code, detail={"error": error, "meta": build_meta()})


ERROR_STATUS = {
    "INVALID_TRANSITION": 409,
    "CONFIG_NOT_FOUND": 422,
    "SCORE_OUT_OF_RANGE": 422,
    "BROKEN_CONFIG": 500,
}


def domain_error(exc: MindscreenError, **extra: Any) -> HTTPException:
    # ValidationError -> 400 with its own code; everything else by code
    if isinstance(exc, ValidationError):
        return api_error(
            400,
            exc.code,
            exc.message,
            question_id=exc.question_id,
            index=exc.index,
            missing=exc.missing or None,
            **extra,
        )
    return api_error(ERROR_STATUS.get(exc.code, 500), exc.code, exc.message, **extra)


def show_question(question: QuestionDefinition) -> dict:
    payload = {
        "id": question.id,
        "index": question.index,
        "text": question.text,
        "type": question.type.value,
        "constraints": {"required": question.required},
    }

    # Only include options for questions that declare them
    if question.options:
        payload["options"] = [
            {"value": format_option_value(o.value), "label": o.label} for o in question.options
        ]
    if question.description:
        payload["description"] = question.description

    return payload


def show_questionnaire(questionnaire: Questionnaire, with_questions: bool = True) -> dict:
    payload = {
        "id": questionnaire.id,
        "title": questionnaire.title,
        "type": questionnaire.questionnaire_type,
        "question_count": len(questionnaire.questions),
    }
    if with_questions:
        payload["questions"] = [show_question(q) for q in questionnaire.questions]
    return payload


def require_questionnaire(catalog: QuestionCatalog, questionnaire_id: Optional[str]) -> Questionnaire:
    questionnaire = catalog.get(questionnaire_id) if questionnaire_id else None
    if questionnaire is None:
        raise api_error(404, "UNKNOWN_QUESTIONNAIRE", f"Questionnaire '{questionnaire_id}' not found.")
    return questionnaire


@router.get("/questionnaires")
def list_questionnaires(catalog: QuestionCatalog = Depends(get_catalog)):
    return {
        "questionnaires": [show_questionnaire(q, with_questions=False) for q in catalog.list()],
        "meta": build_meta(),
    }


@router.get("/questionnaires/{questionnaire_id}")
def get_questionnaire(questionnaire_id: str, catalog: QuestionCatalog = Depends(get_catalog)):
    questionnaire = require_questionnaire(catalog, questionnaire_id)
    return {"questionnaire": show_questionnaire(questionnaire), "meta": build_meta()}
