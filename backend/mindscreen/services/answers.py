# Answer values: draft coercion while collecting, and the tagged union that a
# draft is resolved into once, at finalization. Scoring never re-sniffs types.

import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, FrozenSet, List, Optional, Tuple, Union

from mindscreen.services.catalog import QuestionDefinition, QuestionType, format_option_value
from mindscreen.services.errors import ValidationError

ISO_DATE = re.compile(r"\d{4}-\d{2}-\d{2}")

TRUE_WORDS = {"true", "yes", "y", "1"}
FALSE_WORDS = {"false", "no", "n", "0"}

Draft = Union[None, str, int, FrozenSet[str]]


# ---- tagged union ----

@dataclass(frozen=True)
class Text:
    text: str
    kind = "text"


@dataclass(frozen=True)
class Choice:
    value: str
    numeric: float
    kind = "choice"


@dataclass(frozen=True)
class Numeric:
    value: int
    kind = "numeric"


@dataclass(frozen=True)
class OptionSet:
    values: FrozenSet[str]
    kind = "option_set"


@dataclass(frozen=True)
class Boolean:
    value: bool
    kind = "boolean"


@dataclass(frozen=True)
class DateValue:
    value: date
    kind = "date"


AnswerValue = Union[Text, Choice, Numeric, OptionSet, Boolean, DateValue]


@dataclass(frozen=True)
class FinalizedAnswer:
    question_id: str
    question_type: QuestionType
    value: AnswerValue
    contribution: float = 0


FinalizedAnswerList = Tuple[FinalizedAnswer, ...]


# ---- drafts ----

def _invalid(question: QuestionDefinition, message: str) -> ValidationError:
    return ValidationError(
        f"Invalid answer for {question.id}: {message}",
        code="INVALID_ANSWER",
        question_id=question.id,
        index=question.index,
    )


def _to_int(question: QuestionDefinition, raw: Any) -> int:
    if isinstance(raw, bool):
        raise _invalid(question, "expected a number")
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float) and raw.is_integer():
        return int(raw)
    if isinstance(raw, str) and re.fullmatch(r"\s*-?\d+\s*", raw):
        return int(raw)
    raise _invalid(question, "expected a whole number")


def coerce_draft(question: QuestionDefinition, raw: Any) -> Draft:
    """Turn a submitted value into the draft representation for its question type.

    None and blank strings clear the draft. Anything that cannot be stored for
    the question's type raises ValidationError(code="INVALID_ANSWER").
    """
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return None

    qtype = question.type

    if qtype == QuestionType.FREE_TEXT:
        if not isinstance(raw, str):
            raise _invalid(question, "expected text")
        return raw

    if qtype == QuestionType.SINGLE_CHOICE:
        if isinstance(raw, (list, tuple, set, frozenset, dict)) or isinstance(raw, bool):
            raise _invalid(question, "expected a single option")
        opt = question.option_for(raw)
        if opt is None:
            raise _invalid(question, f"'{raw}' is not an option")
        return format_option_value(opt.value)

    if qtype == QuestionType.MULTIPLE_CHOICE:
        if isinstance(raw, (str, bytes, dict)) or not hasattr(raw, "__iter__"):
            raise _invalid(question, "expected a list of options")
        chosen = set()
        for item in raw:
            opt = question.option_for(item)
            if opt is None:
                raise _invalid(question, f"'{item}' is not an option")
            chosen.add(format_option_value(opt.value))
        return frozenset(chosen) if chosen else None

    if qtype == QuestionType.YES_NO:
        if isinstance(raw, bool):
            return "true" if raw else "false"
        word = str(raw).strip().lower()
        if word in TRUE_WORDS:
            return "true"
        if word in FALSE_WORDS:
            return "false"
        raise _invalid(question, "expected yes or no")

    if qtype in (QuestionType.RATING, QuestionType.SCALE):
        value = _to_int(question, raw)
        if question.options and question.option_for(value) is None:
            raise _invalid(question, f"{value} is outside the allowed values")
        return value

    if qtype == QuestionType.DATE:
        if isinstance(raw, date):
            return raw.isoformat()
        text = str(raw).strip()
        if not ISO_DATE.fullmatch(text):
            raise _invalid(question, "use YYYY-MM-DD (e.g., 2025-09-01)")
        try:
            date.fromisoformat(text)
        except ValueError:
            raise _invalid(question, f"'{text}' is not a calendar date")
        return text

    raise _invalid(question, f"unsupported type {qtype}")


def is_empty(draft: Draft) -> bool:
    if draft is None:
        return True
    if isinstance(draft, str):
        return not draft.strip()
    if isinstance(draft, frozenset):
        return len(draft) == 0
    return False


# ---- finalization ----

def finalize_answer(question: QuestionDefinition, draft: Draft) -> FinalizedAnswer:
    """Resolve a non-empty draft into its tagged value plus per-answer contribution."""
    qtype = question.type

    if qtype == QuestionType.SINGLE_CHOICE:
        opt = question.option_for(draft)
        value = Choice(value=str(draft), numeric=opt.value)
        contribution = opt.value
    elif qtype in (QuestionType.RATING, QuestionType.SCALE):
        value = Numeric(value=int(draft))
        contribution = int(draft)
    elif qtype == QuestionType.MULTIPLE_CHOICE:
        value = OptionSet(values=frozenset(draft))
        contribution = 0
    elif qtype == QuestionType.YES_NO:
        value = Boolean(value=draft == "true")
        contribution = 0
    elif qtype == QuestionType.DATE:
        value = DateValue(value=date.fromisoformat(draft))
        contribution = 0
    else:
        value = Text(text=str(draft))
        contribution = 0

    return FinalizedAnswer(
        question_id=question.id,
        question_type=qtype,
        value=value,
        contribution=contribution,
    )


# ---- records (persistence collaborator) ----

def answer_to_record(answer: FinalizedAnswer) -> Dict[str, Any]:
    v = answer.value
    if isinstance(v, Text):
        raw: Any = v.text
    elif isinstance(v, Choice):
        raw = {"value": v.value, "numeric": v.numeric}
    elif isinstance(v, Numeric):
        raw = v.value
    elif isinstance(v, OptionSet):
        raw = sorted(v.values)
    elif isinstance(v, Boolean):
        raw = v.value
    else:
        raw = v.value.isoformat()

    return {
        "question_id": answer.question_id,
        "type": answer.question_type.value,
        "kind": v.kind,
        "value": raw,
        "contribution": answer.contribution,
    }


def answer_from_record(record: Dict[str, Any]) -> FinalizedAnswer:
    kind = record["kind"]
    raw = record["value"]

    if kind == "text":
        value: AnswerValue = Text(text=raw)
    elif kind == "choice":
        value = Choice(value=raw["value"], numeric=raw["numeric"])
    elif kind == "numeric":
        value = Numeric(value=int(raw))
    elif kind == "option_set":
        value = OptionSet(values=frozenset(raw))
    elif kind == "boolean":
        value = Boolean(value=bool(raw))
    elif kind == "date":
        value = DateValue(value=date.fromisoformat(raw))
    else:
        raise ValueError(f"unknown answer kind '{kind}'")

    return FinalizedAnswer(
        question_id=record["question_id"],
        question_type=QuestionType(record["type"]),
        value=value,
        contribution=record.get("contribution", 0),
    )


def answers_to_records(answers: FinalizedAnswerList) -> List[Dict[str, Any]]:
    return [answer_to_record(a) for a in answers]


def answers_from_records(records: Optional[List[Dict[str, Any]]]) -> FinalizedAnswerList:
    return tuple(answer_from_record(r) for r in (records or []))
