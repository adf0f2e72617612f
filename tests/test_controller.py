import pytest

from core.controller import SessionController, SessionState
from core.media import MediaHandle, MediaSession
from core.timer import QuestionTimer
from core.voice import RelayRecognizer
from models import Interview, InterviewQuestion, db
from services.errors import EvaluatorUnavailable, GeneratorUnavailable, InterviewNotFound, InvalidTransition
from services.evaluation_service import evaluate_interview
from services.persistence_service import PersistenceAdapter

from support import FlakyPersistence


def aptitude_set(difficulty="medium"):
    return [
        {
            "question_type": "aptitude",
            "difficulty": difficulty,
            "question_text": f"Question {i}",
            "options": ["A", "B", "C", "D"],
            "expected_answer": "B",
        }
        for i in range(4)
    ]


def hr_set():
    return [
        {"question_type": "hr", "difficulty": "medium", "question_text": f"HR {i}", "expected_answer": "STAR"}
        for i in range(4)
    ]


def full_marks(question):
    return {"score": 100, "is_correct": True, "feedback": "Correct."}


class CountingEvaluator:
    """Evaluator stub that can fail a number of times before delegating."""

    def __init__(self, failures=0, grader=full_marks):
        self.failures = failures
        self.grader = grader
        self.calls = []

    def __call__(self, interview_id, questions_data=None):
        self.calls.append([dict(q) for q in questions_data or []])
        if self.failures > 0:
            self.failures -= 1
            raise EvaluatorUnavailable("Evaluation service unreachable")
        return evaluate_interview(interview_id, questions_data=questions_data, grader=self.grader)


def build(interview_id, questions=None, persistence=None, evaluator=None, **kwargs):
    kwargs.setdefault("timer", QuestionTimer(clock=lambda: 0.0))
    questions = questions if questions is not None else aptitude_set()
    kwargs.setdefault("context_loader", lambda user_id: ("", []))
    return SessionController(
        interview_id,
        persistence=persistence or PersistenceAdapter(backoff_seconds=0, sleep=lambda s: None),
        generator=lambda *args, **kw: [dict(q) for q in questions],
        evaluator=evaluator or CountingEvaluator(),
        **kwargs,
    )


def test_initialize_generates_and_persists_questions(make_interview):
    interview_id = make_interview("aptitude")
    controller = build(interview_id)

    assert controller.initialize() is SessionState.ACTIVE
    assert len(controller.questions) == 4
    assert not any(q.is_placeholder for q in controller.questions)
    assert InterviewQuestion.query.filter_by(interview_id=interview_id).count() == 4
    assert controller.drain_notices()[0]["level"] == "success"


def test_initialize_resumes_existing_questions_with_first_answer(make_interview):
    interview_id = make_interview("aptitude")
    first = build(interview_id)
    first.initialize()
    first.update_answer("C")
    first.save_current()

    resumed = build(interview_id, questions=[])
    assert resumed.initialize() is SessionState.ACTIVE
    assert resumed.buffer.value == "C"
    assert [q.id for q in resumed.questions] == [q.id for q in first.questions]


def test_initialize_unknown_interview_raises_not_found(ctx):
    with pytest.raises(InterviewNotFound):
        build("does-not-exist").initialize()


def test_generator_outage_is_retryable(make_interview):
    interview_id = make_interview("aptitude")
    attempts = []

    def flaky_generator(*args, **kwargs):
        attempts.append(1)
        if len(attempts) == 1:
            raise GeneratorUnavailable("Rate limit exceeded. Please try again later.")
        return aptitude_set()

    controller = SessionController(
        interview_id,
        persistence=PersistenceAdapter(backoff_seconds=0),
        generator=flaky_generator,
        context_loader=lambda user_id: ("", []),
    )
    assert controller.initialize() is SessionState.ERROR
    assert controller.drain_notices() == [
        {"level": "error", "message": "Rate limit exceeded. Please try again later."}
    ]
    with pytest.raises(InvalidTransition):
        controller.next()

    assert controller.initialize() is SessionState.ACTIVE
    assert len(controller.questions) == 4


def test_navigation_never_loses_an_edit_even_when_saves_fail(make_interview):
    interview_id = make_interview("aptitude")
    persistence = FlakyPersistence()
    persistence.backoff_seconds = 0
    controller = build(interview_id, persistence=persistence)
    controller.initialize()
    persistence.update_failures = 100

    controller.update_answer("A")
    controller.next()
    controller.update_answer("D")
    controller.go_to(3)
    controller.update_answer("B")
    controller.prev()
    assert controller.buffer.value == ""
    controller.go_to(0)
    assert controller.buffer.value == "A"
    controller.go_to(1)
    assert controller.buffer.value == "D"
    controller.go_to(3)
    assert controller.buffer.value == "B"


def test_navigation_clamps_at_boundaries_but_still_saves(make_interview):
    interview_id = make_interview("aptitude")
    controller = build(interview_id)
    controller.initialize()
    controller.update_answer("C")

    assert controller.prev() == 0
    first_id = controller.questions[0].id
    assert db.session.get(InterviewQuestion, first_id).user_answer == "C"

    assert controller.go_to(99) == 3
    assert controller.next() == 3


def test_each_navigation_persists_before_index_changes(make_interview):
    interview_id = make_interview("aptitude")
    persistence = FlakyPersistence()
    controller = build(interview_id, persistence=persistence)
    controller.initialize()

    controller.update_answer("A")
    controller.next()
    controller.update_answer("B")
    controller.next()

    first, second = controller.questions[0].id, controller.questions[1].id
    assert persistence.update_calls == [
        (first, {"user_answer": "A"}),
        (second, {"user_answer": "B"}),
    ]


def test_repeated_save_is_idempotent(make_interview):
    interview_id = make_interview("aptitude")
    controller = build(interview_id)
    controller.initialize()
    controller.update_answer("D")
    for _ in range(3):
        assert controller.save_current() is True
    assert db.session.get(InterviewQuestion, controller.questions[0].id).user_answer == "D"


def test_timer_switches_with_navigation(make_interview):
    interview_id = make_interview("aptitude")
    timer = QuestionTimer(clock=lambda: 0.0)
    controller = build(interview_id, timer=timer)
    controller.initialize()
    timer.tick(7)
    controller.next()
    timer.tick(3)
    controller.prev()

    assert timer.question_times == {0: 7, 1: 3}
    assert timer.current_index == 0
    assert timer.total_seconds == 10


def test_happy_path_scores_all_medium_questions(make_interview):
    interview_id = make_interview("aptitude")
    controller = build(interview_id)
    controller.initialize()
    for index in range(4):
        controller.go_to(index)
        controller.update_answer("B")

    result = controller.finish()

    assert result["totalScore"] == 80
    assert result["maxScore"] == 80
    assert controller.state is SessionState.COMPLETED
    interview = db.session.get(Interview, interview_id)
    assert interview.status == "completed"
    assert interview.completed_at is not None
    assert (interview.total_score, interview.max_score) == (80, 80)
    assert all(q.score == 20 and q.is_correct for q in controller.questions)
    stored = InterviewQuestion.query.filter_by(interview_id=interview_id).all()
    assert all(row.score == 20 for row in stored)


def test_finish_records_time_per_question(make_interview):
    interview_id = make_interview("aptitude")
    timer = QuestionTimer(clock=lambda: 0.0)
    controller = build(interview_id, timer=timer)
    controller.initialize()
    timer.tick(4)
    controller.next()
    timer.tick(9)
    controller.finish()

    rows = (
        InterviewQuestion.query.filter_by(interview_id=interview_id)
        .order_by(InterviewQuestion.position)
        .all()
    )
    assert [row.time_taken_seconds for row in rows] == [4, 9, 0, 0]


def test_finish_is_retryable_after_evaluator_failure(make_interview):
    interview_id = make_interview("aptitude")
    evaluator = CountingEvaluator(failures=1)
    controller = build(interview_id, evaluator=evaluator)
    controller.initialize()
    controller.update_answer("B")

    assert controller.finish() is None
    assert controller.state is SessionState.ERROR
    assert db.session.get(Interview, interview_id).status == "in_progress"
    assert controller.drain_notices()[-1]["level"] == "error"

    result = controller.finish()
    assert controller.state is SessionState.COMPLETED
    assert result["totalScore"] == 80
    assert evaluator.calls[0] == evaluator.calls[1]


def test_finish_releases_media_on_every_exit_path(make_interview):
    interview_id = make_interview("hr")
    released = []
    media = MediaSession(acquire=lambda kind: MediaHandle(kind, release=lambda: released.append(kind)))
    controller = build(interview_id, questions=hr_set(), media=media,
                       evaluator=CountingEvaluator(failures=1))
    controller.initialize()
    controller.toggle_video()
    controller.toggle_mic()

    controller.finish()

    assert controller.state is SessionState.ERROR
    assert sorted(released) == ["audio", "video"]
    assert media.handles == {}


def test_media_unavailable_degrades_to_text(make_interview):
    interview_id = make_interview("hr")
    controller = build(interview_id, questions=hr_set())
    controller.initialize()
    controller.drain_notices()

    assert controller.toggle_media("video") is False
    assert controller.drain_notices()[0]["level"] == "warning"
    controller.update_answer("still typing")
    assert controller.state is SessionState.ACTIVE


def test_hr_interview_survives_total_insert_failure(make_interview):
    interview_id = make_interview("hr")
    persistence = FlakyPersistence(insert_failures=3)
    evaluator = CountingEvaluator()
    controller = build(interview_id, questions=hr_set(), persistence=persistence, evaluator=evaluator)

    controller.initialize()
    assert [q.id for q in controller.questions] == ["temp-0", "temp-1", "temp-2", "temp-3"]
    assert persistence.sleeps == [1.5]

    for index in range(4):
        controller.go_to(index)
        controller.update_answer(f"Answer {index}")
    result = controller.finish()

    assert persistence.update_calls == []
    assert controller.state is SessionState.COMPLETED
    assert result["totalScore"] == 80
    submitted = evaluator.calls[0]
    assert [q["user_answer"] for q in submitted] == [f"Answer {i}" for i in range(4)]
    assert all("id" not in q for q in submitted)
    assert db.session.get(Interview, interview_id).status == "completed"


def test_placeholder_questions_are_inserted_at_finish_when_store_recovers(make_interview):
    interview_id = make_interview("hr")
    persistence = FlakyPersistence(insert_failures=2)
    controller = build(interview_id, questions=hr_set(), persistence=persistence)
    controller.initialize()
    controller.update_answer("Listened first, then agreed on next steps")

    controller.finish()

    assert not any(q.is_placeholder for q in controller.questions)
    rows = (
        InterviewQuestion.query.filter_by(interview_id=interview_id)
        .order_by(InterviewQuestion.position)
        .all()
    )
    assert len(rows) == 4
    assert rows[0].user_answer == "Listened first, then agreed on next steps"
    assert rows[0].score == 20


def test_no_questions_response_keeps_interview_open(make_interview):
    interview_id = make_interview("aptitude")
    controller = build(interview_id, evaluator=lambda interview_id, questions_data=None: {"error": "no_questions"})
    controller.initialize()

    assert controller.finish() is None
    assert controller.state is SessionState.ACTIVE
    assert "starting a new interview" in controller.drain_notices()[-1]["message"]
    assert db.session.get(Interview, interview_id).status == "in_progress"


def test_completed_session_rejects_further_edits(make_interview):
    interview_id = make_interview("aptitude")
    controller = build(interview_id)
    controller.initialize()
    controller.finish()
    with pytest.raises(InvalidTransition):
        controller.update_answer("late")


def test_voice_increments_flow_into_buffer_and_question(make_interview):
    interview_id = make_interview("hr")
    controller = build(interview_id, questions=hr_set(), recognizer=RelayRecognizer())
    controller.initialize()

    assert controller.start_voice() is True
    controller.voice_results([("hello", True)])
    controller.voice_results([("hello", True), ("world", True)], result_index=1)

    assert controller.buffer.value == "hello world"
    assert controller.questions[0].user_answer == "hello world"


def test_navigation_stops_voice_and_resets_transcript(make_interview):
    interview_id = make_interview("hr")
    controller = build(interview_id, questions=hr_set(), recognizer=RelayRecognizer())
    controller.initialize()
    controller.start_voice()
    controller.voice_results([("first answer", True)])

    controller.next()
    controller.voice_results([("stray", True)])
    controller.voice_ended()

    assert controller.voice.state.value == "idle"
    assert controller.voice.transcript == ""
    assert controller.buffer.value == ""
    assert controller.questions[0].user_answer == "first answer"


def test_voice_is_not_offered_outside_hr(make_interview):
    interview_id = make_interview("aptitude")
    controller = build(interview_id, recognizer=RelayRecognizer())
    controller.initialize()
    with pytest.raises(InvalidTransition):
        controller.start_voice()


def test_unsupported_speech_is_a_notice(make_interview):
    interview_id = make_interview("hr")
    controller = build(interview_id, questions=hr_set())
    controller.initialize()
    controller.drain_notices()
    assert controller.start_voice() is False
    assert controller.drain_notices()[0]["level"] == "warning"


def test_run_code_keeps_output_until_navigation(make_interview):
    interview_id = make_interview("coding", language="python")
    coding = [
        {"question_type": "coding", "difficulty": "easy", "question_text": f"Task {i}", "skill_name": "python"}
        for i in range(2)
    ]
    seen = []

    def runner(code, language):
        seen.append((code, language))
        return {"output": "3", "exitCode": 0}

    controller = build(interview_id, questions=coding, code_runner=runner)
    controller.initialize()
    controller.update_answer("print(1 + 2)")

    assert controller.run_code()["output"] == "3"
    assert seen == [("print(1 + 2)", "python")]
    assert controller.code_output == "3"
    controller.next()
    assert controller.code_output == ""
    assert controller.questions[0].user_code == "print(1 + 2)"


def test_run_code_rejected_for_multiple_choice(make_interview):
    interview_id = make_interview("aptitude")
    controller = build(interview_id)
    controller.initialize()
    with pytest.raises(InvalidTransition):
        controller.run_code()


def test_snapshot_hides_expected_answers(make_interview):
    interview_id = make_interview("aptitude")
    controller = build(interview_id)
    controller.initialize()
    snapshot = controller.snapshot()
    assert snapshot["state"] == "active"
    assert snapshot["question_count"] == 4
    assert "expected_answer" not in snapshot["question"]
    assert snapshot["timer"]["total"] == "00:00"


def test_completed_interview_cannot_be_reopened(make_interview):
    interview_id = make_interview("aptitude")
    first = build(interview_id)
    first.initialize()
    for index in range(4):
        first.go_to(index)
        first.update_answer("B")
    first.finish()

    reopened = build(interview_id)
    with pytest.raises(InvalidTransition):
        reopened.initialize()

    interview = db.session.get(Interview, interview_id)
    assert (interview.status, interview.total_score) == ("completed", 80)


def test_non_text_answer_is_kept_as_text_and_can_be_finished(make_interview):
    interview_id = make_interview("aptitude")
    controller = build(interview_id, evaluator=CountingEvaluator(grader=None))
    controller.initialize()

    assert controller.update_answer(1) == "1"
    result = controller.finish()

    assert controller.state is SessionState.COMPLETED
    assert result["totalScore"] == 0
    assert controller.questions[0].user_answer == "1"
