# Scoring configuration registry. Resolution is by an explicit questionnaire ->
# config mapping (or a unique questionnaire type match) and fails closed:
# no mapping means ConfigurationNotFound, never a borrowed default.

import logging
from typing import Any, Dict, Iterable, Mapping, Optional, Protocol

from sqlalchemy.orm import Session

from mindscreen.db.models import ScoringConfigRecord
from mindscreen.services.errors import ConfigurationError, ConfigurationNotFound
from mindscreen.services.scoring import RiskRange, ScoringConfig

logger = logging.getLogger(__name__)


class ScoringConfigResolver(Protocol):
    def resolve(
        self,
        questionnaire_id: Optional[str] = None,
        questionnaire_type: Optional[str] = None,
    ) -> ScoringConfig: ...


def _not_found(questionnaire_id: Optional[str], questionnaire_type: Optional[str]) -> ConfigurationNotFound:
    return ConfigurationNotFound(
        f"No scoring configuration found for questionnaire '{questionnaire_id}' (type '{questionnaire_type}')"
    )


class InMemoryScoringRegistry:
    def __init__(self, configs: Iterable[ScoringConfig], mapping: Optional[Mapping[str, str]] = None) -> None:
        self._configs: Dict[str, ScoringConfig] = {c.key: c for c in configs}
        self._mapping: Dict[str, str] = dict(mapping or {})

        for qid, key in self._mapping.items():
            if key not in self._configs:
                raise ConfigurationError(f"questionnaire '{qid}' is mapped to unknown config '{key}'")

    def get(self, key: str) -> ScoringConfig:
        if key not in self._configs:
            raise ConfigurationNotFound(f"No scoring configuration with key '{key}'")
        return self._configs[key]

    def resolve(
        self,
        questionnaire_id: Optional[str] = None,
        questionnaire_type: Optional[str] = None,
    ) -> ScoringConfig:
        if questionnaire_id is not None and questionnaire_id in self._mapping:
            return self._configs[self._mapping[questionnaire_id]]

        if questionnaire_type:
            matches = [c for c in self._configs.values() if c.questionnaire_type == questionnaire_type]
            if len(matches) == 1:
                return matches[0]
            if len(matches) > 1:
                raise ConfigurationError(
                    f"Questionnaire type '{questionnaire_type}' matches {len(matches)} configs; map it explicitly"
                )

        logger.warning("scoring config lookup failed: questionnaire=%s type=%s", questionnaire_id, questionnaire_type)
        raise _not_found(questionnaire_id, questionnaire_type)


# ---- database-backed resolver ----

def config_from_record(record: Mapping[str, Any]) -> ScoringConfig:
    """Build a validated ScoringConfig from a stored row or a plain dict."""
    ranges = tuple(
        RiskRange(
            min=r["min"],
            max=r["max"],
            label=r["label"],
            risk_level=r["risk_level"],
            severity_rank=int(r.get("severity_rank", i)),
            description=r.get("description", ""),
        )
        for i, r in enumerate(record.get("ranges") or [])
    )
    return ScoringConfig(
        key=record["key"],
        name=record.get("name") or record["key"],
        questionnaire_type=record.get("questionnaire_type") or "",
        method=record["method"],
        max_score=record["max_score"],
        ranges=ranges,
        passing_score=record.get("passing_score"),
        rules=dict(record.get("rules") or {}),
        recommendations=dict(record.get("recommendations") or {}),
        description=record.get("description") or "",
    )


def _row_to_dict(row: ScoringConfigRecord) -> Dict[str, Any]:
    return {
        "key": row.key,
        "name": row.name,
        "description": row.description,
        "questionnaire_type": row.questionnaire_type,
        "method": row.scoring_method,
        "max_score": row.max_score,
        "passing_score": row.passing_score,
        "ranges": row.ranges,
        "rules": row.rules,
        "recommendations": row.recommendations,
    }


class DatabaseScoringRegistry:
    def __init__(self, db: Session) -> None:
        self.db = db

    def resolve(
        self,
        questionnaire_id: Optional[str] = None,
        questionnaire_type: Optional[str] = None,
    ) -> ScoringConfig:
        active = self.db.query(ScoringConfigRecord).filter(ScoringConfigRecord.is_active.is_(True))

        row = None
        if questionnaire_id is not None:
            row = (
                active.filter(ScoringConfigRecord.questionnaire_id == questionnaire_id)
                .order_by(ScoringConfigRecord.created_at.desc())
                .first()
            )

        if row is None and questionnaire_type:
            rows = active.filter(ScoringConfigRecord.questionnaire_type == questionnaire_type).all()
            if len(rows) > 1:
                raise ConfigurationError(
                    f"Questionnaire type '{questionnaire_type}' matches {len(rows)} configs; map it explicitly"
                )
            row = rows[0] if rows else None

        if row is None:
            logger.warning("scoring config lookup failed: questionnaire=%s type=%s", questionnaire_id, questionnaire_type)
            raise _not_found(questionnaire_id, questionnaire_type)

        return config_from_record(_row_to_dict(row))


# ---- built-in configurations ----

SCORING_CONFIG_DEFINITIONS = {
    "phq9": {
        "key": "phq9",
        "name": "PHQ-9 Depression Scoring",
        "description": "Standard scoring system for the PHQ-9 depression assessment",
        "questionnaire_type": "depression",
        "method": "sum",
        "max_score": 27,
        "ranges": [
            {"min": 0, "max": 4, "label": "Minimal", "risk_level": "minimal", "severity_rank": 0, "description": "Minimal depression"},
            {"min": 5, "max": 9, "label": "Mild", "risk_level": "mild", "severity_rank": 1, "description": "Mild depression"},
            {"min": 10, "max": 14, "label": "Moderate", "risk_level": "moderate", "severity_rank": 2, "description": "Moderate depression"},
            {"min": 15, "max": 19, "label": "Moderately Severe", "risk_level": "moderately severe", "severity_rank": 3, "description": "Moderately severe depression"},
            {"min": 20, "max": 27, "label": "Severe", "risk_level": "severe", "severity_rank": 4, "description": "Severe depression"},
        ],
        "recommendations": {
            "minimal": "Continue with self-care practices and monitor for any changes in symptoms.",
            "mild": "Consider discussing symptoms with a healthcare provider. Self-help strategies may be beneficial.",
            "moderate": "Consultation with a healthcare provider is recommended. Treatment options may include therapy or medication.",
            "moderately severe": "Prompt consultation with a healthcare provider is strongly recommended. Treatment is likely necessary.",
            "severe": "Immediate consultation with a healthcare provider is necessary. Active treatment with a combination of medication and therapy is typically indicated.",
        },
    },
    "gad7": {
        "key": "gad7",
        "name": "GAD-7 Anxiety Scoring",
        "description": "Standard scoring system for the GAD-7 anxiety assessment",
        "questionnaire_type": "anxiety",
        "method": "sum",
        "max_score": 21,
        "ranges": [
            {"min": 0, "max": 4, "label": "Minimal", "risk_level": "minimal", "severity_rank": 0, "description": "Minimal anxiety"},
            {"min": 5, "max": 9, "label": "Mild", "risk_level": "mild", "severity_rank": 1, "description": "Mild anxiety"},
            {"min": 10, "max": 14, "label": "Moderate", "risk_level": "moderate", "severity_rank": 2, "description": "Moderate anxiety"},
            {"min": 15, "max": 21, "label": "Severe", "risk_level": "severe", "severity_rank": 4, "description": "Severe anxiety"},
        ],
        "recommendations": {
            "minimal": "Continue with self-care practices and monitor for any changes in symptoms.",
            "mild": "Consider discussing symptoms with a healthcare provider. Relaxation techniques and stress management may be helpful.",
            "moderate": "Consultation with a healthcare provider is recommended. Treatment options may include therapy, stress management, or medication.",
            "severe": "Prompt consultation with a healthcare provider is strongly recommended. Treatment with therapy, medication, or a combination approach is typically indicated.",
        },
    },
    "stress": {
        "key": "stress",
        "name": "Perceived Stress Scale Scoring",
        "description": "Scoring system for the Perceived Stress Scale",
        "questionnaire_type": "stress",
        "method": "sum",
        "max_score": 40,
        "ranges": [
            {"min": 0, "max": 13, "label": "Low", "risk_level": "low", "severity_rank": 0, "description": "Low stress"},
            {"min": 14, "max": 26, "label": "Moderate", "risk_level": "moderate", "severity_rank": 2, "description": "Moderate stress"},
            {"min": 27, "max": 40, "label": "High", "risk_level": "high", "severity_rank": 3, "description": "High stress"},
        ],
        "recommendations": {
            "low": "Your stress levels appear to be manageable. Continue with healthy coping strategies and self-care practices.",
            "moderate": "Your stress levels are elevated. Consider implementing stress reduction techniques such as mindfulness, exercise, and improved time management.",
            "high": "Your stress levels are high. It is recommended to consult with a healthcare provider about stress management strategies and potential support resources.",
        },
    },
}

QUESTIONNAIRE_CONFIG_MAP = {
    "phq-9": "phq9",
    "gad-7": "gad7",
    "pss-10": "stress",
}


def default_registry() -> InMemoryScoringRegistry:
    return InMemoryScoringRegistry(
        (config_from_record(d) for d in SCORING_CONFIG_DEFINITIONS.values()),
        QUESTIONNAIRE_CONFIG_MAP,
    )
