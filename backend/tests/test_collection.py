import pytest

from mindscreen.services.answers import Choice, Text
from mindscreen.services.catalog import QuestionDefinition, QuestionType, Questionnaire, build_questionnaire
from mindscreen.services.collection import AnswerCollection, Phase
from mindscreen.services.errors import TransitionError, ValidationError


def started(questionnaire):
    machine = AnswerCollection(questionnaire)
    machine.set_identity("respondent@example.com", "Sam")
    return machine


def answer_through(machine, values):
    for value in values:
        question = machine.current_question
        machine.set_answer(question.id, value)
        machine.advance()


def test_starts_by_collecting_identity(phq9):
    machine = AnswerCollection(phq9)
    assert machine.phase == Phase.COLLECTING_IDENTITY
    assert machine.current_question is None

    with pytest.raises(TransitionError):
        machine.set_answer("phq9_1", 1)


@pytest.mark.parametrize("email", ["", "not-an-email", "a@b", "two words@example.com"])
def test_identity_requires_a_plausible_email(phq9, email):
    machine = AnswerCollection(phq9)
    with pytest.raises(ValidationError) as exc:
        machine.set_identity(email)
    assert exc.value.code == "INVALID_EMAIL"
    assert machine.phase == Phase.COLLECTING_IDENTITY


def test_identity_moves_to_first_question(phq9):
    machine = started(phq9)
    assert machine.phase == Phase.ANSWERING
    assert machine.current_question.id == "phq9_1"
    assert machine.identity.email == "respondent@example.com"
    assert machine.identity.name == "Sam"


def test_empty_questionnaire_goes_straight_to_pending_submit():
    empty = build_questionnaire("empty", {"title": "Empty", "type": "test", "questions": []})
    machine = started(empty)
    assert machine.phase == Phase.PENDING_SUBMIT
    assert machine.submit() == ()


def test_advance_blocks_on_required_question(phq9):
    machine = started(phq9)
    with pytest.raises(ValidationError) as exc:
        machine.advance()

    assert exc.value.code == "MISSING_ANSWER"
    assert exc.value.question_id == "phq9_1"
    assert machine.phase == Phase.ANSWERING
    assert machine.cursor == 0


def test_optional_question_can_be_skipped(phq9):
    machine = started(phq9)
    answer_through(machine, [1] * 9)
    assert machine.current_question.id == "phq9_notes"

    machine.advance()
    assert machine.phase == Phase.PENDING_SUBMIT


def test_invalid_answer_keeps_previous_draft(phq9):
    machine = started(phq9)
    machine.set_answer("phq9_1", 2)

    with pytest.raises(ValidationError) as exc:
        machine.set_answer("phq9_1", 7)

    assert exc.value.code == "INVALID_ANSWER"
    assert machine.draft("phq9_1") == "2"


def test_unknown_question_is_rejected(phq9):
    machine = started(phq9)
    with pytest.raises(ValidationError) as exc:
        machine.set_answer("phq9_42", 1)
    assert exc.value.code == "UNKNOWN_QUESTION"


def test_blank_answer_clears_the_draft(phq9):
    machine = started(phq9)
    machine.set_answer("phq9_1", "3")
    machine.set_answer("phq9_1", "   ")
    assert machine.draft("phq9_1") is None
    assert machine.progress == {"answered": 0, "total": 10}


def test_retreat_keeps_drafts_and_does_not_validate(phq9):
    machine = started(phq9)
    answer_through(machine, [1, 2, 3])
    assert machine.cursor == 3
    assert machine.draft("phq9_4") is None

    machine.retreat()

    assert machine.cursor == 2
    assert machine.drafts()["phq9_1"] == "1"
    assert machine.drafts()["phq9_2"] == "2"
    assert machine.drafts()["phq9_3"] == "3"
    assert machine.draft("phq9_4") is None


def test_retreat_at_first_question_is_a_noop(phq9):
    machine = started(phq9)
    machine.retreat()
    assert machine.phase == Phase.ANSWERING
    assert machine.cursor == 0


def test_retreat_from_pending_submit_returns_to_last_question(phq9):
    machine = started(phq9)
    answer_through(machine, [0] * 9 + ["all good"])
    assert machine.phase == Phase.PENDING_SUBMIT

    machine.retreat()

    assert machine.phase == Phase.ANSWERING
    assert machine.current_question.id == "phq9_notes"
    assert machine.draft("phq9_notes") == "all good"


def test_submit_with_missing_required_question_then_fix(phq9):
    machine = started(phq9)
    answer_through(machine, [1] * 9)
    machine.advance()
    machine.set_answer("phq9_5", None)

    with pytest.raises(ValidationError) as exc:
        machine.submit()

    assert exc.value.code == "REQUIRED_UNANSWERED"
    assert exc.value.question_id == "phq9_5"
    assert exc.value.missing == ["phq9_5"]
    assert machine.phase == Phase.REVIEWING_REQUIRED
    assert machine.missing_index == 4

    machine.set_answer("phq9_5", 1)
    answers = machine.submit()

    assert machine.phase == Phase.SUBMITTED
    assert [a.question_id for a in answers] == [f"phq9_{i}" for i in range(1, 10)]


def test_review_missing_jumps_to_first_gap(phq9):
    machine = started(phq9)
    answer_through(machine, [1] * 9)
    machine.advance()
    machine.set_answer("phq9_7", None)
    machine.set_answer("phq9_3", None)

    with pytest.raises(ValidationError) as exc:
        machine.submit()
    assert exc.value.missing == ["phq9_3", "phq9_7"]

    question = machine.review_missing()

    assert question.id == "phq9_3"
    assert machine.phase == Phase.ANSWERING
    assert machine.cursor == 2


def test_submit_freezes_tagged_values(phq9):
    machine = started(phq9)
    answer_through(machine, [2] * 9 + ["tired lately"])
    answers = machine.submit()

    assert isinstance(answers, tuple)
    assert answers[0].value == Choice(value="2", numeric=2)
    assert answers[0].contribution == 2
    assert answers[-1].value == Text(text="tired lately")
    assert answers[-1].contribution == 0


def test_submitted_and_abandoned_are_terminal(phq9):
    machine = started(phq9)
    answer_through(machine, [0] * 9)
    machine.advance()
    machine.submit()

    for op, args in [
        (machine.set_answer, ("phq9_1", 1)),
        (machine.advance, ()),
        (machine.retreat, ()),
        (machine.submit, ()),
        (machine.abandon, ()),
    ]:
        with pytest.raises(TransitionError):
            op(*args)

    other = started(phq9)
    other.abandon()
    assert other.phase == Phase.ABANDONED
    assert other.is_terminal
    with pytest.raises(TransitionError):
        other.submit()


def test_submit_not_allowed_while_answering(phq9):
    machine = started(phq9)
    with pytest.raises(TransitionError):
        machine.submit()


def test_review_uses_list_position_when_catalog_indexes_are_sparse():
    sparse = Questionnaire(
        id="sparse",
        title="Sparse",
        questionnaire_type="test",
        questions=tuple(
            QuestionDefinition(id=f"s{n}", index=n * 10, text=f"item {n}", type=QuestionType.RATING)
            for n in (1, 2, 3)
        ),
    )
    machine = started(sparse)
    answer_through(machine, [1, 2, 3])
    machine.set_answer("s2", None)

    with pytest.raises(ValidationError) as exc:
        machine.submit()
    assert exc.value.question_id == "s2"
    assert machine.missing_index == 1

    assert machine.review_missing().id == "s2"
    assert machine.current_question.id == "s2"
