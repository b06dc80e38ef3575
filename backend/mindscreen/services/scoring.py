# Scoring engine, risk classifier and review-flag policy.
# Everything here is pure: same FinalizedAnswerList + ScoringConfig -> same ScoringResult.

import logging
import math
from types import MappingProxyType
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Sequence, Tuple

from mindscreen.services.answers import (
    Boolean,
    Choice,
    DateValue,
    FinalizedAnswer,
    Numeric,
    OptionSet,
    Text,
)
from mindscreen.services.catalog import SCORABLE_TYPES, QuestionDefinition
from mindscreen.services.errors import ConfigurationError, ScoreOutOfRange

logger = logging.getLogger(__name__)

SCORING_METHODS = {"sum", "average", "weighted_average", "custom"}

# Shared severity vocabulary. Flagging is decided on the tag alone, so any
# questionnaire whose top bands use these tags is flagged the same way.
REVIEW_TAGS = frozenset({"moderately severe", "severe", "high", "very high"})

DEFAULT_RECOMMENDATION = "Please consult with a healthcare provider for personalized recommendations."


@dataclass(frozen=True)
class RiskRange:
    min: float
    max: float
    label: str
    risk_level: str
    severity_rank: int
    description: str = ""

    def contains(self, score: float) -> bool:
        return self.min <= score <= self.max


@dataclass(frozen=True)
class ScoringConfig:
    key: str
    name: str
    questionnaire_type: str
    method: str
    max_score: float
    ranges: Tuple[RiskRange, ...]
    passing_score: Optional[float] = None
    rules: Mapping[str, Any] = field(default_factory=dict)
    recommendations: Mapping[str, str] = field(default_factory=dict)
    description: str = ""

    def __post_init__(self) -> None:
        if self.method not in SCORING_METHODS:
            raise ConfigurationError(f"{self.key}: unknown scoring method '{self.method}'")
        object.__setattr__(self, "ranges", tuple(sorted(self.ranges, key=lambda r: r.min)))
        object.__setattr__(self, "rules", MappingProxyType(dict(self.rules)))
        object.__setattr__(self, "recommendations", MappingProxyType(dict(self.recommendations)))
        validate_ranges(self.key, self.ranges, self.max_score)

    def __hash__(self) -> int:
        # mapping fields are read-only views and not hashable themselves
        return hash((self.key, self.method, self.max_score, self.ranges))


def validate_ranges(key: str, ranges: Sequence[RiskRange], max_score: float) -> None:
    """Ranges must tile [0, max_score] with no gaps or overlaps, in severity order."""
    if not ranges:
        raise ConfigurationError(f"{key}: at least one risk range is required")
    if ranges[0].min != 0:
        raise ConfigurationError(f"{key}: lowest range must start at 0, not {ranges[0].min}")
    if ranges[-1].max != max_score:
        raise ConfigurationError(f"{key}: highest range must end at max score {max_score}, not {ranges[-1].max}")

    flagged_seen = False
    for i, r in enumerate(ranges):
        if r.min > r.max:
            raise ConfigurationError(f"{key}: range '{r.label}' has min > max")
        if i > 0:
            prev = ranges[i - 1]
            if not (prev.max < r.min <= prev.max + 1):
                raise ConfigurationError(
                    f"{key}: ranges '{prev.label}' ({prev.min}-{prev.max}) and '{r.label}' ({r.min}-{r.max}) "
                    "overlap or leave a gap"
                )
            if r.severity_rank < prev.severity_rank:
                raise ConfigurationError(f"{key}: severity rank decreases at '{r.label}'")
        if should_flag(r.risk_level):
            flagged_seen = True
        elif flagged_seen:
            raise ConfigurationError(f"{key}: '{r.label}' sits above a flagged range but is not flagged")


@dataclass(frozen=True)
class ScoringResult:
    score: float
    risk_level: str
    risk_label: str
    severity_rank: int
    per_question: Tuple[Tuple[str, float], ...]
    flagged_for_review: bool
    max_score: float
    passing_score: Optional[float]
    config_key: str

    @property
    def answer_scores(self) -> Dict[str, float]:
        return dict(self.per_question)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "risk_level": self.risk_level,
            "risk_label": self.risk_label,
            "severity_rank": self.severity_rank,
            "answer_scores": dict(sorted(self.per_question)),
            "flagged_for_review": self.flagged_for_review,
            "max_score": self.max_score,
            "passing_score": self.passing_score,
            "config_key": self.config_key,
        }


CustomRule = Callable[[Sequence[FinalizedAnswer], Mapping[str, QuestionDefinition], ScoringConfig], float]


# ---- helpers ----

def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def _normalize(x: float) -> float:
    if isinstance(x, float) and x.is_integer():
        return int(x)
    return x


def _answer_key(answer: FinalizedAnswer) -> str:
    # string form used by rule tables keyed on answer values
    v = answer.value
    if isinstance(v, Choice):
        return v.value
    if isinstance(v, Numeric):
        return str(v.value)
    if isinstance(v, Boolean):
        return "true" if v.value else "false"
    if isinstance(v, DateValue):
        return v.value.isoformat()
    if isinstance(v, OptionSet):
        return ",".join(sorted(v.values))
    if isinstance(v, Text):
        return v.text
    return str(v)


# ---- custom rules ----

def question_scores_rule(answers, questions, config) -> float:
    """Points per answer value, e.g.

    rules = {"rule": "question_scores",
             "question_scores": {"q1": {"values": {"2": 5}, "default": 1}}}
    """
    table = config.rules.get("question_scores") or {}
    total = 0
    for answer in answers:
        rule = table.get(answer.question_id)
        if not rule:
            continue
        values = rule.get("values") or {}
        key = _answer_key(answer)
        if key in values:
            total += values[key]
        elif rule.get("default"):
            total += rule["default"]
    return total


CUSTOM_RULES: Dict[str, CustomRule] = {
    "question_scores": question_scores_rule,
}


# ---- engine ----

def _whole(x: float) -> bool:
    return float(x).is_integer()


def check_sum_weights(config: ScoringConfig, questions: Iterable[QuestionDefinition]) -> None:
    """Whole-number bands leave gaps such as (4, 5); a fractional weight could score into one."""
    if not all(_whole(r.min) and _whole(r.max) for r in config.ranges):
        return
    for q in questions:
        if q.scorable and not _whole(q.scoring_weight):
            raise ConfigurationError(
                f"{config.key}: question {q.id} has weight {q.scoring_weight}; "
                "sum scoring over whole-number ranges needs whole-number weights"
            )


def score(
    config: ScoringConfig,
    answers: Iterable[FinalizedAnswer],
    questions: Iterable[QuestionDefinition],
    custom_rules: Optional[Mapping[str, CustomRule]] = None,
) -> Tuple[float, Dict[str, float]]:
    answers = tuple(answers)
    by_id = {q.id: q for q in questions}
    per_question = {a.question_id: a.contribution for a in answers}

    scorable = [a for a in answers if a.question_type in SCORABLE_TYPES]

    if config.method == "sum":
        check_sum_weights(config, by_id.values())
        total = 0
        for a in scorable:
            q = by_id.get(a.question_id)
            weight = q.scoring_weight if q is not None else 1.0
            total += a.contribution * weight
        return _normalize(total), per_question

    if config.method == "average":
        if not scorable:
            return 0, per_question
        total = sum(a.contribution for a in scorable)
        return round_half_up(total / len(scorable)), per_question

    if config.method == "weighted_average":
        weighted = 0
        total_weight = 0
        for a in scorable:
            q = by_id.get(a.question_id)
            weight = q.scoring_weight if q is not None else 1.0
            weighted += a.contribution * weight
            total_weight += weight
        if total_weight == 0:
            return 0, per_question
        return round_half_up(weighted / total_weight), per_question

    # custom
    rules = dict(CUSTOM_RULES)
    rules.update(custom_rules or {})
    rule_name = config.rules.get("rule")
    rule = rules.get(rule_name)
    if rule is None:
        raise ConfigurationError(f"{config.key}: no custom scoring rule named '{rule_name}'")
    return rule(answers, by_id, config), per_question


def classify(config: ScoringConfig, value: float) -> RiskRange:
    for r in config.ranges:
        if r.contains(value):
            return r
    raise ScoreOutOfRange(value, config.key)


def should_flag(risk_level: str) -> bool:
    return (risk_level or "").strip().lower() in REVIEW_TAGS


def evaluate(
    config: ScoringConfig,
    answers: Iterable[FinalizedAnswer],
    questions: Iterable[QuestionDefinition],
    custom_rules: Optional[Mapping[str, CustomRule]] = None,
) -> ScoringResult:
    """score -> classify -> should_flag, packaged as an immutable ScoringResult."""
    numeric, per_question = score(config, answers, questions, custom_rules)
    band = classify(config, numeric)
    flagged = should_flag(band.risk_level)

    logger.debug("scored %s: %s -> %s (flagged=%s)", config.key, numeric, band.risk_level, flagged)

    return ScoringResult(
        score=numeric,
        risk_level=band.risk_level,
        risk_label=band.label,
        severity_rank=band.severity_rank,
        per_question=tuple(sorted(per_question.items())),
        flagged_for_review=flagged,
        max_score=config.max_score,
        passing_score=config.passing_score,
        config_key=config.key,
    )


def recommendation_for(config: ScoringConfig, risk_level: str) -> str:
    return config.recommendations.get(risk_level, DEFAULT_RECOMMENDATION)


def describe_range(config: ScoringConfig, risk_level: str) -> str:
    for r in config.ranges:
        if r.risk_level == risk_level:
            return r.description
    return "No description available"
