# Question catalog: read-only, ordered question definitions per questionnaire.
# The questionnaire store is an external collaborator; QUESTIONNAIRE_DEFINITIONS
# is the seed it serves in this deployment.

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Protocol, Tuple


class QuestionType(str, Enum):
    FREE_TEXT = "free_text"
    SINGLE_CHOICE = "single_choice"
    MULTIPLE_CHOICE = "multiple_choice"
    YES_NO = "yes_no"
    RATING = "rating"
    SCALE = "scale"
    DATE = "date"


SCORABLE_TYPES = {QuestionType.SINGLE_CHOICE, QuestionType.RATING, QuestionType.SCALE}


@dataclass(frozen=True)
class QuestionOption:
    value: float
    label: str


@dataclass(frozen=True)
class QuestionDefinition:
    id: str
    index: int
    text: str
    type: QuestionType
    required: bool = True
    options: Tuple[QuestionOption, ...] = ()
    scoring_weight: float = 1.0
    description: Optional[str] = None

    def option_for(self, raw) -> Optional[QuestionOption]:
        """Match a submitted value ("2", 2 or 2.0) against the option set."""
        for opt in self.options:
            if str(raw).strip() == format_option_value(opt.value):
                return opt
            if not isinstance(raw, bool) and isinstance(raw, (int, float)) and raw == opt.value:
                return opt
        return None

    @property
    def scorable(self) -> bool:
        return self.type in SCORABLE_TYPES


@dataclass(frozen=True)
class Questionnaire:
    id: str
    title: str
    questionnaire_type: str
    questions: Tuple[QuestionDefinition, ...] = field(default_factory=tuple)

    def question(self, question_id: str) -> Optional[QuestionDefinition]:
        for q in self.questions:
            if q.id == question_id:
                return q
        return None


def format_option_value(value) -> str:
    # option values are numbers; 2.0 and 2 both render as "2"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class QuestionCatalog(Protocol):
    def get(self, questionnaire_id: str) -> Optional[Questionnaire]: ...

    def list(self) -> List[Questionnaire]: ...


class InMemoryQuestionCatalog:
    def __init__(self, questionnaires: Iterable[Questionnaire]) -> None:
        self._by_id: Dict[str, Questionnaire] = {q.id: q for q in questionnaires}

    def get(self, questionnaire_id: str) -> Optional[Questionnaire]:
        return self._by_id.get(questionnaire_id)

    def list(self) -> List[Questionnaire]:
        return list(self._by_id.values())


# ---- seed definitions ----

FREQUENCY_OPTIONS = [
    (0, "Not at all"),
    (1, "Several days"),
    (2, "More than half the days"),
    (3, "Nearly every day"),
]

PSS_OPTIONS = [
    (0, "Never"),
    (1, "Almost never"),
    (2, "Sometimes"),
    (3, "Fairly often"),
    (4, "Very often"),
]

# positively worded PSS items are reverse scored (Never = 4 ... Very often = 0)
PSS_REVERSED = [(4 - v, label) for v, label in PSS_OPTIONS]


QUESTIONNAIRE_DEFINITIONS = {
    "phq-9": {
        "title": "Patient Health Questionnaire (PHQ-9)",
        "type": "depression",
        "questions": [
            {"id": "phq9_1", "text": "Little interest or pleasure in doing things", "type": "single_choice", "options": FREQUENCY_OPTIONS},
            {"id": "phq9_2", "text": "Feeling down, depressed, or hopeless", "type": "single_choice", "options": FREQUENCY_OPTIONS},
            {"id": "phq9_3", "text": "Trouble falling or staying asleep, or sleeping too much", "type": "single_choice", "options": FREQUENCY_OPTIONS},
            {"id": "phq9_4", "text": "Feeling tired or having little energy", "type": "single_choice", "options": FREQUENCY_OPTIONS},
            {"id": "phq9_5", "text": "Poor appetite or overeating", "type": "single_choice", "options": FREQUENCY_OPTIONS},
            {"id": "phq9_6", "text": "Feeling bad about yourself, or that you are a failure or have let yourself or your family down", "type": "single_choice", "options": FREQUENCY_OPTIONS},
            {"id": "phq9_7", "text": "Trouble concentrating on things, such as reading the newspaper or watching television", "type": "single_choice", "options": FREQUENCY_OPTIONS},
            {"id": "phq9_8", "text": "Moving or speaking so slowly that other people could have noticed, or the opposite: being so fidgety or restless that you have been moving around a lot more than usual", "type": "single_choice", "options": FREQUENCY_OPTIONS},
            {"id": "phq9_9", "text": "Thoughts that you would be better off dead, or of hurting yourself in some way", "type": "single_choice", "options": FREQUENCY_OPTIONS},
            {"id": "phq9_notes", "text": "Is there anything else you would like us to know?", "type": "free_text", "required": False},
        ],
    },
    "gad-7": {
        "title": "Generalized Anxiety Disorder (GAD-7)",
        "type": "anxiety",
        "questions": [
            {"id": "gad7_1", "text": "Feeling nervous, anxious, or on edge", "type": "single_choice", "options": FREQUENCY_OPTIONS},
            {"id": "gad7_2", "text": "Not being able to stop or control worrying", "type": "single_choice", "options": FREQUENCY_OPTIONS},
            {"id": "gad7_3", "text": "Worrying too much about different things", "type": "single_choice", "options": FREQUENCY_OPTIONS},
            {"id": "gad7_4", "text": "Trouble relaxing", "type": "single_choice", "options": FREQUENCY_OPTIONS},
            {"id": "gad7_5", "text": "Being so restless that it is hard to sit still", "type": "single_choice", "options": FREQUENCY_OPTIONS},
            {"id": "gad7_6", "text": "Becoming easily annoyed or irritable", "type": "single_choice", "options": FREQUENCY_OPTIONS},
            {"id": "gad7_7", "text": "Feeling afraid, as if something awful might happen", "type": "single_choice", "options": FREQUENCY_OPTIONS},
        ],
    },
    "pss-10": {
        "title": "Perceived Stress Scale (PSS-10)",
        "type": "stress",
        "questions": [
            {"id": "pss_1", "text": "Been upset because of something that happened unexpectedly?", "type": "single_choice", "options": PSS_OPTIONS},
            {"id": "pss_2", "text": "Felt that you were unable to control the important things in your life?", "type": "single_choice", "options": PSS_OPTIONS},
            {"id": "pss_3", "text": "Felt nervous and stressed?", "type": "single_choice", "options": PSS_OPTIONS},
            {"id": "pss_4", "text": "Felt confident about your ability to handle your personal problems?", "type": "single_choice", "options": PSS_REVERSED},
            {"id": "pss_5", "text": "Felt that things were going your way?", "type": "single_choice", "options": PSS_REVERSED},
            {"id": "pss_6", "text": "Found that you could not cope with all the things that you had to do?", "type": "single_choice", "options": PSS_OPTIONS},
            {"id": "pss_7", "text": "Been able to control irritations in your life?", "type": "single_choice", "options": PSS_REVERSED},
            {"id": "pss_8", "text": "Felt that you were on top of things?", "type": "single_choice", "options": PSS_REVERSED},
            {"id": "pss_9", "text": "Been angered because of things that happened that were outside of your control?", "type": "single_choice", "options": PSS_OPTIONS},
            {"id": "pss_10", "text": "Felt difficulties were piling up so high that you could not overcome them?", "type": "single_choice", "options": PSS_OPTIONS},
        ],
    },
}


def build_questionnaire(questionnaire_id: str, definition: dict) -> Questionnaire:
    questions = []
    for idx, node in enumerate(definition["questions"]):
        questions.append(
            QuestionDefinition(
                id=node["id"],
                index=idx,
                text=node["text"],
                type=QuestionType(node["type"]),
                required=node.get("required", True),
                options=tuple(QuestionOption(value=v, label=label) for v, label in node.get("options", [])),
                scoring_weight=float(node.get("scoring_weight", 1.0)),
                description=node.get("description"),
            )
        )
    return Questionnaire(
        id=questionnaire_id,
        title=definition["title"],
        questionnaire_type=definition["type"],
        questions=tuple(questions),
    )


def default_catalog() -> InMemoryQuestionCatalog:
    return InMemoryQuestionCatalog(
        build_questionnaire(qid, definition) for qid, definition in QUESTIONNAIRE_DEFINITIONS.items()
    )
