"""Interview session state machine.

The controller owns the Question Set, the Answer Buffer and the current
index. Every operation runs under one re-entrant lock, so a navigation never
starts before the previous save has settled, and voice increments and typed
edits to the buffer are serialised.
"""
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from core.answers import AnswerBuffer, AnswerKind
from core.media import MediaSession, held_media
from core.question_set import QuestionRecord, QuestionSet
from core.timer import QuestionTimer
from core.voice import SpeechRecognizer, VoiceCaptureAdapter
from services.code_service import execute_code
from services.errors import (
    EvaluatorUnavailable,
    GeneratorUnavailable,
    InterviewNotFound,
    InvalidTransition,
    MediaUnavailable,
)
from services.evaluation_service import NO_QUESTIONS, evaluate_interview
from services.persistence_service import PersistenceAdapter, backoff_for
from services.question_service import generate_questions
from services.skill_service import load_candidate_context


logger = logging.getLogger(__name__)

RETRY_MESSAGE = "Failed to submit interview. Please try again."
NO_QUESTIONS_MESSAGE = "No questions could be evaluated. Please try starting a new interview."


class SessionState(Enum):
    LOADING = "loading"
    GENERATING = "generating"
    ACTIVE = "active"
    SUBMITTING = "submitting"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class Notice:
    level: str
    message: str

    def to_dict(self) -> dict:
        return {"level": self.level, "message": self.message}


@dataclass(frozen=True)
class FlowPolicy:
    name: str
    voice_enabled: bool
    media_enabled: bool
    sends_resume: bool


GENERAL_FLOW = FlowPolicy(name="general", voice_enabled=False, media_enabled=False, sends_resume=False)
HR_FLOW = FlowPolicy(name="hr", voice_enabled=True, media_enabled=True, sends_resume=True)


def flow_for(interview_type: str) -> FlowPolicy:
    return HR_FLOW if interview_type == "hr" else GENERAL_FLOW


class SessionController:
    def __init__(
        self,
        interview_id: str,
        persistence: Optional[PersistenceAdapter] = None,
        generator: Callable[..., List[Dict]] = generate_questions,
        evaluator: Callable[..., Dict] = evaluate_interview,
        code_runner: Callable[[str, str], Dict] = execute_code,
        context_loader: Callable[[str], tuple] = load_candidate_context,
        timer: Optional[QuestionTimer] = None,
        recognizer: Optional[SpeechRecognizer] = None,
        media: Optional[MediaSession] = None,
    ):
        self.interview_id = interview_id
        self._owns_persistence = persistence is None
        self.persistence = persistence or PersistenceAdapter()
        self.generator = generator
        self.evaluator = evaluator
        self.code_runner = code_runner
        self.context_loader = context_loader
        self.timer = timer or QuestionTimer()
        self.voice = VoiceCaptureAdapter(recognizer, on_transcript=self._append_voice)
        self.media = media or MediaSession()

        self._lock = threading.RLock()
        self.state = SessionState.LOADING
        self.interview_type: Optional[str] = None
        self.language: Optional[str] = None
        self.flow = GENERAL_FLOW
        self.questions = QuestionSet()
        self.buffer = AnswerBuffer()
        self.current_index = 0
        self.code_output = ""
        self.notices: List[Notice] = []
        self.last_error: Optional[str] = None
        self.result: Optional[Dict] = None

    # Lifecycle

    def initialize(self) -> SessionState:
        with self._lock:
            if self.state not in (SessionState.LOADING, SessionState.ERROR) or len(self.questions):
                raise InvalidTransition(f"Cannot initialize a session that is {self.state.value}")
            self.state = SessionState.LOADING
            try:
                interview = self.persistence.fetch_interview(self.interview_id)
                existing = self.persistence.fetch_questions(self.interview_id)
            except SQLAlchemyError:
                logger.exception("Failed to load interview %s", self.interview_id)
                self._fail("Failed to load interview. Please try again.")
                return self.state

            if interview.status == "completed":
                # Scores are written exactly once.
                raise InvalidTransition("This interview has already been completed.")

            self.interview_type = interview.interview_type
            self.language = interview.language
            self.flow = flow_for(interview.interview_type)
            if self._owns_persistence:
                self.persistence.backoff_seconds = backoff_for(interview.interview_type)

            if existing:
                self.questions = QuestionSet(existing)
                return self._enter_active()

            self.state = SessionState.GENERATING
            generated = self._generate(interview)
            if not generated:
                return self.state

            self.questions = QuestionSet([QuestionRecord.from_generated(q) for q in generated])
            ids = self.persistence.insert_batch(self.interview_id, list(self.questions))
            if ids is None:
                self.questions.assign_placeholders()
                self._notify("info", "Questions loaded. Your answers will be saved when you finish the interview.")
            else:
                self.questions.assign_ids(ids)
                self._notify("success", "Questions generated successfully!")
            return self._enter_active()

    def close(self) -> None:
        """Stop capture and release devices; in-flight writes are left to finish."""
        with self._lock:
            self.timer.stop()
            self.voice.stop()
            self.media.release_all()

    # Editing and navigation

    def update_answer(self, value: Optional[str]) -> str:
        with self._lock:
            self._require_editable()
            self.buffer.set(value)
            return self.buffer.value

    def save_current(self) -> bool:
        with self._lock:
            self._require_editable()
            return self._flush_and_save()

    def go_to(self, index: int) -> int:
        with self._lock:
            self._require_editable()
            target = max(0, min(int(index), len(self.questions) - 1))
            self._flush_and_save()
            if target == self.current_index:
                return self.current_index
            # Stop capture first so late increments cannot land on the target.
            self.voice.stop()
            self.voice.reset_transcript()
            self.current_index = target
            self.buffer.load(self.questions.answer_at(target))
            self.code_output = ""
            self.timer.switch_to_question(target)
            return self.current_index

    def next(self) -> int:
        with self._lock:
            return self.go_to(self.current_index + 1)

    def prev(self) -> int:
        with self._lock:
            return self.go_to(self.current_index - 1)

    # Code execution

    def run_code(self, language: Optional[str] = None) -> Dict:
        with self._lock:
            self._require_editable()
            question = self.questions[self.current_index]
            if question.kind is not AnswerKind.CODING:
                raise InvalidTransition("The current question does not take code")
            index = self.current_index
            code = self.buffer.value
            self.code_output = "Running..."
        language = language or question.skill_name or self.language or "javascript"
        result = self.code_runner(code, language)
        with self._lock:
            if self.current_index == index:
                self.code_output = result.get("output") or "No output"
        return result

    # Voice capture

    def start_voice(self) -> bool:
        with self._lock:
            self._require_editable()
            if not self.flow.voice_enabled:
                raise InvalidTransition("Voice answers are only available in HR interviews")
            if not self.voice.is_supported:
                self._notify("warning", "Speech recognition is not supported here. Please type your answer.")
                return False
            started = self.voice.start()
            if not started:
                self._notify("warning", "Could not start speech recognition. Please type your answer.")
            return started

    def stop_voice(self) -> None:
        with self._lock:
            self.voice.stop()

    def voice_results(self, results, result_index: int = 0) -> List[str]:
        with self._lock:
            return self.voice.handle_results(results, result_index)

    def voice_ended(self) -> None:
        with self._lock:
            self.voice.handle_end()

    def voice_error(self, error: str) -> None:
        with self._lock:
            self.voice.handle_error(error)
            if error not in ("no-speech", "aborted"):
                self._notify("warning", "Microphone input stopped. You can keep typing your answer.")

    def _append_voice(self, increment: str) -> None:
        # Speech writes straight into the Question Set, not lazily at navigation.
        with self._lock:
            value = self.buffer.append(increment)
            if len(self.questions):
                self.questions.write_answer(self.current_index, value)

    # Media preview

    def toggle_media(self, kind: str) -> bool:
        with self._lock:
            if not self.flow.media_enabled:
                raise InvalidTransition("Media preview is only available in HR interviews")
            try:
                return self.media.toggle(kind)
            except MediaUnavailable as exc:
                logger.warning("Media %s unavailable: %s", kind, exc)
                device = "camera" if kind == "video" else "microphone"
                self._notify("warning", f"Could not access {device}. Please check permissions.")
                return False

    def toggle_video(self) -> bool:
        return self.toggle_media("video")

    def toggle_mic(self) -> bool:
        return self.toggle_media("audio")

    # Finish

    def finish(self) -> Optional[Dict]:
        with self._lock:
            self._require_editable()
            self.state = SessionState.SUBMITTING
            self.voice.stop()
            with held_media(self.media):
                try:
                    return self._submit()
                except Exception:
                    logger.exception("Finishing interview %s failed", self.interview_id)
                    return self._fail(RETRY_MESSAGE)

    def _submit(self) -> Optional[Dict]:
        index = self.current_index
        self.questions.write_answer(index, self.buffer.value)
        times = self.timer.cumulative_times(len(self.questions))
        for position, question in enumerate(self.questions):
            question.time_taken_seconds = times[position]

        final_view = self.questions.finalized_view(index, self.buffer.value)
        self._persist_final(final_view)

        payload = [question.evaluation_payload() for question in final_view]
        try:
            result = self.evaluator(self.interview_id, questions_data=payload)
        except EvaluatorUnavailable as exc:
            logger.warning("Evaluator unavailable for interview %s: %s", self.interview_id, exc)
            return self._fail(str(exc) or RETRY_MESSAGE)
        except Exception:
            logger.exception("Evaluation failed for interview %s", self.interview_id)
            return self._fail(RETRY_MESSAGE)

        if result.get("error") == NO_QUESTIONS:
            self.state = SessionState.ACTIVE
            self.last_error = NO_QUESTIONS_MESSAGE
            self._notify("error", NO_QUESTIONS_MESSAGE)
            return None
        if result.get("error"):
            logger.warning("Evaluator reported an error for %s: %s", self.interview_id, result["error"])
            return self._fail(RETRY_MESSAGE)

        try:
            self.persistence.finalize_interview(
                self.interview_id, result["totalScore"], result["maxScore"], result.get("feedback")
            )
        except (SQLAlchemyError, InterviewNotFound):
            logger.exception("Could not mark interview %s completed", self.interview_id)
            return self._fail(RETRY_MESSAGE)

        if result.get("questions"):
            self.questions.apply_results(result["questions"])
        self.result = result
        self.last_error = None
        self.timer.stop()
        self.state = SessionState.COMPLETED
        self._notify("success", "Interview completed!")
        return result

    def _persist_final(self, final_view: QuestionSet) -> None:
        # Durability only; the evaluator gets the in-memory view either way.
        persisted, placeholders = final_view.partition()
        for _, question in persisted:
            self.persistence.update_fields(
                question.id,
                **{question.kind.field: question.answer, "time_taken_seconds": question.time_taken_seconds},
            )

        if not placeholders:
            return
        positions = [position for position, _ in placeholders]
        pending = [question for _, question in placeholders]
        ids = self.persistence.insert_batch(self.interview_id, pending, retry=False, positions=positions)
        if ids is None:
            logger.warning(
                "Placeholder questions for %s not stored; evaluating from the submitted answers.",
                self.interview_id,
            )
            return
        for position, question_id in zip(positions, ids):
            final_view[position].id = question_id
            self.questions[position].id = question_id

    # Internals

    def _generate(self, interview) -> Optional[List[Dict]]:
        resume_text, skills = "", []
        try:
            resume_text, skills = self.context_loader(interview.user_id)
        except Exception:
            logger.exception("Could not load candidate context for %s", interview.user_id)
        try:
            generated = self.generator(
                interview.interview_type,
                skills=skills,
                interview_id=self.interview_id,
                difficulty=interview.difficulty,
                language=interview.language,
                resume_text=resume_text if self.flow.sends_resume else None,
            )
        except GeneratorUnavailable as exc:
            self._fail(str(exc) or "Failed to generate questions. Please try again.")
            return None
        if not generated:
            self._fail("No questions generated. Please try again.")
            return None
        return generated

    def _enter_active(self) -> SessionState:
        self.current_index = 0
        self.buffer.load(self.questions.answer_at(0))
        self.timer.start()
        self.state = SessionState.ACTIVE
        return self.state

    def _require_editable(self) -> None:
        if self.state is SessionState.ERROR and len(self.questions):
            self.state = SessionState.ACTIVE
        if self.state is not SessionState.ACTIVE:
            raise InvalidTransition(f"Session is {self.state.value}")

    def _flush_and_save(self) -> bool:
        question = self.questions.write_answer(self.current_index, self.buffer.value)
        saved = self.persistence.update_answer(question.id, question.kind.field, self.buffer.value)
        if not saved:
            logger.warning("Answer for question %s kept in memory only", question.id)
        return saved

    def _fail(self, message: str) -> None:
        self.state = SessionState.ERROR
        self.last_error = message
        self._notify("error", message)

    def _notify(self, level: str, message: str) -> None:
        self.notices.append(Notice(level, message))

    def drain_notices(self) -> List[Dict]:
        with self._lock:
            notices = [notice.to_dict() for notice in self.notices]
            self.notices = []
            return notices

    def snapshot(self) -> Dict:
        with self._lock:
            self.timer.advance()
            current = self.questions[self.current_index] if len(self.questions) else None
            return {
                "interview_id": self.interview_id,
                "interview_type": self.interview_type,
                "state": self.state.value,
                "current_index": self.current_index,
                "question_count": len(self.questions),
                "question": current.public_view() if current else None,
                "answer": self.buffer.value,
                "code_output": self.code_output,
                "timer": {
                    "question": self.timer.formatted_question_time,
                    "total": self.timer.formatted_total_time,
                    "per_question": [self.timer.formatted_time_for(i) for i in range(len(self.questions))],
                },
                "voice": {
                    "supported": self.voice.is_supported,
                    "state": self.voice.state.value,
                    "transcript": self.voice.transcript,
                },
                "media": {kind: self.media.is_on(kind) for kind in ("video", "audio")},
                "error": self.last_error,
                "result": self.result,
            }
