from datetime import datetime, timezone
import uuid
import enum
from sqlalchemy import (
    Column,
    String,
    DateTime,
    ForeignKey,
    Enum,
    JSON,
    Boolean,
    Float,
    Text,
    Uuid,
)
from sqlalchemy.orm import relationship

from mindscreen.db.base import Base


def utc_now():
    return datetime.now(timezone.utc)


class ResponseStatus(str, enum.Enum): # current status snapshot
    SUBMITTED = "submitted"           # answers stored, not scored yet
    SCORED = "scored"
    SCORING_FAILED = "scoring_failed" # config missing or score out of range; never shown as scored

class EventType(str, enum.Enum): # what happened
    RESPONSE_SUBMITTED = "response.submitted"
    RESPONSE_SCORED = "response.scored"
    RESPONSE_RESCORED = "response.rescored"
    SCORING_FAILED = "response.scoring_failed"
    RESPONSE_FLAGGED = "response.flagged"

class ActorType(str, enum.Enum): # who caused it
    RESPONDENT = "respondent"
    USER = "user"
    SYSTEM = "system"
    API = "api"


class Response(Base): # the "current state" record
    __tablename__ = "responses"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    unique_code = Column(String(32), nullable=False, unique=True, index=True)
    questionnaire_id = Column(String, nullable=False, index=True)

    respondent_email = Column(String, nullable=False)
    respondent_name = Column(String, nullable=True)

    status = Column(Enum(ResponseStatus), nullable=False, default=ResponseStatus.SUBMITTED)

    # FinalizedAnswerList snapshot; written once at submission, never updated
    answers = Column(JSON, nullable=False, default=list)

    # latest ScoringResult (overwritten by recalculation)
    score = Column(Float, nullable=True)
    risk_level = Column(String, nullable=True, index=True)
    answer_scores = Column(JSON, nullable=True)
    flagged_for_review = Column(Boolean, nullable=False, default=False, index=True)
    scoring_config_key = Column(String, nullable=True)

    submitted_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    scored_at = Column(DateTime(timezone=True), nullable=True)

    events = relationship(
        "ResponseEventLog",
        back_populates="response",
        order_by="ResponseEventLog.occurred_at.asc()",
        cascade="all, delete-orphan",
    )

class ResponseEventLog(Base): # the "history" record, append-only
    __tablename__ = "response_event_log"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    response_id = Column(Uuid, ForeignKey("responses.id"), nullable=False, index=True)

    event_type = Column(Enum(EventType), nullable=False)
    occurred_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    actor_type = Column(Enum(ActorType), nullable=False, default=ActorType.SYSTEM)
    actor_id = Column(String, nullable=True) # user id, api key id, service id, etc.

    payload = Column(JSON, nullable=False, default=dict)
    reason = Column(Text, nullable=True)

    response = relationship("Response", back_populates="events")

class ScoringConfigRecord(Base): # read by DatabaseScoringRegistry; edited by the config store, not here
    __tablename__ = "scoring_configs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    key = Column(String, nullable=False, unique=True)
    questionnaire_id = Column(String, nullable=True, index=True)
    questionnaire_type = Column(String, nullable=True, index=True)

    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    scoring_method = Column(String, nullable=False)
    max_score = Column(Float, nullable=False)
    passing_score = Column(Float, nullable=True)

    ranges = Column(JSON, nullable=False, default=list)
    rules = Column(JSON, nullable=True)
    recommendations = Column(JSON, nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
