import pytest

from core.answers import AnswerBuffer, AnswerKind, kind_for
from core.question_set import QuestionRecord, QuestionSet, is_placeholder_id


def make_set():
    return QuestionSet(
        [
            QuestionRecord(question_type="coding", difficulty="medium", question_text="Two sum"),
            QuestionRecord(question_type="logical", difficulty="easy", question_text="Next number?",
                           options=["1", "2", "3", "4"], expected_answer="2"),
            QuestionRecord(question_type="hr", difficulty="hard", question_text="Tell me about a conflict"),
        ]
    )


def test_answer_field_follows_question_type():
    assert kind_for("coding") is AnswerKind.CODING
    assert kind_for("verbal") is AnswerKind.MULTIPLE_CHOICE
    assert kind_for("hr") is AnswerKind.FREE_TEXT
    assert AnswerKind.CODING.field == "user_code"
    assert AnswerKind.FREE_TEXT.field == "user_answer"
    with pytest.raises(ValueError):
        kind_for("essay")


def test_write_answer_targets_the_kind_specific_field():
    questions = make_set()
    questions.write_answer(0, "return []")
    questions.write_answer(1, "2")
    assert questions[0].user_code == "return []"
    assert questions[0].user_answer is None
    assert questions[1].user_answer == "2"


def test_placeholders_are_tagged_by_position():
    questions = make_set()
    questions.assign_placeholders()
    assert [q.id for q in questions] == ["temp-0", "temp-1", "temp-2"]
    persisted, placeholders = questions.partition()
    assert persisted == []
    assert [position for position, _ in placeholders] == [0, 1, 2]
    assert is_placeholder_id(None)
    assert not is_placeholder_id("6f1c5b44-0000-4000-8000-000000000000")


def test_finalized_view_flushes_buffer_and_leaves_question_set_untouched():
    questions = make_set()
    questions.write_answer(1, "2")
    view = questions.finalized_view(2, "I listened first")

    assert view[2].user_answer == "I listened first"
    assert view[0].user_code == ""
    assert questions[2].user_answer is None


def test_evaluation_payload_includes_real_ids_only():
    questions = make_set()
    questions.assign_ids(["a", "b", "c"])
    questions[2].id = "temp-2"
    payloads = [q.evaluation_payload() for q in questions]
    assert payloads[0]["id"] == "a"
    assert "id" not in payloads[2]
    assert payloads[1]["options"] == ["1", "2", "3", "4"]


def test_assign_ids_requires_matching_count():
    with pytest.raises(ValueError):
        make_set().assign_ids(["only-one"])


def test_buffer_append_space_joins_and_load_handles_none():
    buffer = AnswerBuffer()
    buffer.append("hello")
    buffer.append("  world ")
    assert buffer.value == "hello world"
    buffer.load(None)
    assert buffer.value == ""


def test_partition_pairs_questions_with_their_positions():
    questions = make_set()
    questions.assign_ids(["a", "b", "c"])
    questions[1].id = "temp-1"
    persisted, placeholders = questions.partition()
    assert [(p, q.id) for p, q in persisted] == [(0, "a"), (2, "c")]
    assert [(p, q.id) for p, q in placeholders] == [(1, "temp-1")]


def test_buffer_keeps_scalar_answers_as_text():
    buffer = AnswerBuffer()
    buffer.set(0)
    assert buffer.value == "0"
    buffer.set(None)
    assert buffer.value == ""
