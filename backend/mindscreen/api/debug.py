from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from mindscreen.db.session import get_db
from mindscreen.db.models import Response, ResponseEventLog

router = APIRouter(prefix="/debug", tags=["debug"])

@router.get("/latest")
def latest(db: Session = Depends(get_db)):
    response = db.query(Response).order_by(Response.submitted_at.desc()).first()
    if not response:
        return {"response": None, "events": []}

    events = (
        db.query(ResponseEventLog).filter(ResponseEventLog.response_id == response.id).order_by(ResponseEventLog.occurred_at.asc()).all()
    )

    return {
        "response": {
            "id": str(response.id),
            "unique_code": response.unique_code,
            "questionnaire_id": response.questionnaire_id,
            "submitted_at": response.submitted_at,
            "status": response.status.value if hasattr(response.status, "value") else str(response.status),
            "risk_level": response.risk_level,
            "flagged_for_review": response.flagged_for_review,
        },
        "events": [
            {
                "id": str(e.id),
                "event_type": e.event_type.value if hasattr(e.event_type, "value") else str(e.event_type),
                "occurred_at": e.occurred_at,
                "actor_type": e.actor_type.value if hasattr(e.actor_type, "value") else str(e.actor_type),
                "actor_id": e.actor_id,
                "reason": e.reason,
                "payload": e.payload,
            }
            for e in events
        ],
    }
