# Answer collection state machine: one instance per respondent session.
# Drives the respondent through the catalog in order, keeps the mutable drafts,
# and freezes them into a FinalizedAnswerList on successful submit().

import enum
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from mindscreen.services.answers import (
    Draft,
    FinalizedAnswerList,
    coerce_draft,
    finalize_answer,
    is_empty,
)
from mindscreen.services.catalog import QuestionDefinition, Questionnaire
from mindscreen.services.errors import TransitionError, ValidationError

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"\S+@\S+\.\S+")


class Phase(str, enum.Enum):
    COLLECTING_IDENTITY = "collecting_identity"
    ANSWERING = "answering"
    PENDING_SUBMIT = "pending_submit"
    REVIEWING_REQUIRED = "reviewing_required"
    SUBMITTED = "submitted"
    ABANDONED = "abandoned"


TERMINAL = {Phase.SUBMITTED, Phase.ABANDONED}
EDITABLE = {Phase.ANSWERING, Phase.PENDING_SUBMIT, Phase.REVIEWING_REQUIRED}


@dataclass(frozen=True)
class RespondentIdentity:
    email: str
    name: Optional[str] = None


class AnswerCollection:
    def __init__(self, questionnaire: Questionnaire) -> None:
        self.questionnaire = questionnaire
        self.questions = questionnaire.questions
        self.phase = Phase.COLLECTING_IDENTITY
        self.cursor = 0
        self.identity: Optional[RespondentIdentity] = None
        self.missing_index: Optional[int] = None
        self.finalized: Optional[FinalizedAnswerList] = None
        self._drafts: Dict[str, Draft] = {q.id: None for q in self.questions}

    # ---- reads ----

    @property
    def current_question(self) -> Optional[QuestionDefinition]:
        if self.phase != Phase.ANSWERING:
            return None
        return self.questions[self.cursor]

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL

    def draft(self, question_id: str) -> Draft:
        return self._drafts.get(question_id)

    def drafts(self) -> Dict[str, Draft]:
        return dict(self._drafts)

    @property
    def progress(self) -> Dict[str, int]:
        answered = sum(1 for d in self._drafts.values() if not is_empty(d))
        return {"answered": answered, "total": len(self.questions)}

    def missing_required(self) -> List[QuestionDefinition]:
        """Required questions without an answer, in catalog order."""
        return [q for q in self.questions if q.required and is_empty(self._drafts.get(q.id))]

    # ---- transitions ----

    def _require(self, *phases: Phase) -> None:
        if self.phase not in phases:
            allowed = ", ".join(p.value for p in phases)
            raise TransitionError(f"Cannot do that while {self.phase.value} (allowed: {allowed})")

    def set_identity(self, email: str, name: Optional[str] = None) -> None:
        self._require(Phase.COLLECTING_IDENTITY)
        email = (email or "").strip()
        if not EMAIL_PATTERN.fullmatch(email):
            raise ValidationError("Please enter a valid email address", code="INVALID_EMAIL")

        self.identity = RespondentIdentity(email=email, name=(name or "").strip() or None)
        if self.questions:
            self.phase = Phase.ANSWERING
            self.cursor = 0
        else:
            self.phase = Phase.PENDING_SUBMIT

    def set_answer(self, question_id: str, value: Any) -> Draft:
        self._require(*EDITABLE)
        question = self.questionnaire.question(question_id)
        if question is None:
            raise ValidationError(
                f"Invalid question ID: {question_id}",
                code="UNKNOWN_QUESTION",
                question_id=question_id,
            )
        draft = coerce_draft(question, value)   # raises before touching the stored draft
        self._drafts[question_id] = draft
        return draft

    def advance(self) -> None:
        self._require(Phase.ANSWERING)
        question = self.questions[self.cursor]
        if question.required and is_empty(self._drafts[question.id]):
            raise ValidationError(
                f"Missing answer for {question.id}: {question.text}",
                code="MISSING_ANSWER",
                question_id=question.id,
                index=question.index,
            )

        if self.cursor + 1 < len(self.questions):
            self.cursor += 1
        else:
            self.phase = Phase.PENDING_SUBMIT

    def retreat(self) -> None:
        self._require(Phase.ANSWERING, Phase.PENDING_SUBMIT)
        if self.phase == Phase.PENDING_SUBMIT:
            self.phase = Phase.ANSWERING
            self.cursor = len(self.questions) - 1
        elif self.cursor > 0:
            self.cursor -= 1

    def review_missing(self) -> QuestionDefinition:
        """Jump to the first missing required question found by the last submit()."""
        self._require(Phase.REVIEWING_REQUIRED)
        self.phase = Phase.ANSWERING
        self.cursor = self.missing_index if self.missing_index is not None else 0
        return self.questions[self.cursor]

    def submit(self) -> FinalizedAnswerList:
        self._require(Phase.PENDING_SUBMIT, Phase.REVIEWING_REQUIRED)

        missing = self.missing_required()
        if missing:
            first = missing[0]
            self.phase = Phase.REVIEWING_REQUIRED
            self.missing_index = self.questions.index(first)   # position, not the catalog's ordering key
            logger.info(
                "submit blocked for %s: %d required question(s) unanswered",
                self.questionnaire.id,
                len(missing),
            )
            raise ValidationError(
                f"Missing answer for {first.id}: {first.text}",
                code="REQUIRED_UNANSWERED",
                question_id=first.id,
                index=first.index,
                missing=[q.id for q in missing],
            )

        self.finalized = tuple(
            finalize_answer(q, self._drafts[q.id])
            for q in self.questions
            if not is_empty(self._drafts[q.id])
        )
        self.missing_index = None
        self.phase = Phase.SUBMITTED
        return self.finalized

    def abandon(self) -> None:
        if self.is_terminal:
            raise TransitionError(f"Cannot abandon a session that is {self.phase.value}")
        self.phase = Phase.ABANDONED
