import time
from datetime import datetime
from typing import Callable, List, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from core.question_set import QuestionRecord, is_placeholder_id
from models import Interview, InterviewQuestion, db
from services.errors import InterviewNotFound


ANSWER_FIELDS = {"user_answer", "user_code", "time_taken_seconds"}


def backoff_for(interview_type: str) -> float:
    if interview_type == "hr":
        return float(current_app.config.get("HR_PERSIST_RETRY_BACKOFF_SECONDS", 1.5))
    return float(current_app.config.get("PERSIST_RETRY_BACKOFF_SECONDS", 1.0))


class PersistenceAdapter:
    """Store operations for interviews and their questions.

    Transient failures are retried once after ``backoff_seconds``; when the
    retry fails the caller gets a typed outcome instead of an exception.
    """

    def __init__(self, backoff_seconds: float = 1.0, sleep: Callable[[float], None] = time.sleep):
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep

    # Reads

    def fetch_interview(self, interview_id: str) -> Interview:
        interview = db.session.get(Interview, interview_id)
        if interview is None:
            raise InterviewNotFound(interview_id)
        return interview

    def fetch_questions(self, interview_id: str) -> List[QuestionRecord]:
        rows = (
            InterviewQuestion.query.filter_by(interview_id=interview_id)
            .order_by(InterviewQuestion.position)
            .all()
        )
        return [QuestionRecord.from_row(row) for row in rows]

    # Writes

    def insert_batch(self, interview_id: str, questions: List[QuestionRecord],
                     retry: bool = True, positions: Optional[List[int]] = None) -> Optional[List[str]]:
        """Insert all questions; returns their ids, or None to use placeholders."""
        if positions is None:
            positions = list(range(len(questions)))
        attempts = 2 if retry else 1
        for attempt in range(attempts):
            try:
                return self._insert_rows(interview_id, questions, positions)
            except SQLAlchemyError as exc:
                db.session.rollback()
                current_app.logger.warning(
                    "Question insert failed for interview %s (attempt %d): %s",
                    interview_id, attempt + 1, exc,
                )
                if attempt + 1 < attempts:
                    self._sleep(self.backoff_seconds)
        return None

    def update_answer(self, question_id: Optional[str], field: str, value) -> bool:
        return self.update_fields(question_id, **{field: value})

    def update_fields(self, question_id: Optional[str], **values) -> bool:
        """Single-row update; placeholder rows are skipped and count as saved."""
        unknown = set(values) - ANSWER_FIELDS
        if unknown:
            raise ValueError(f"Not an answer field: {sorted(unknown)}")
        if is_placeholder_id(question_id):
            return True
        for attempt in range(2):
            try:
                self._update_row(question_id, values)
                return True
            except SQLAlchemyError as exc:
                db.session.rollback()
                current_app.logger.warning(
                    "Answer update failed for question %s (attempt %d): %s",
                    question_id, attempt + 1, exc,
                )
                if attempt == 0:
                    self._sleep(self.backoff_seconds)
        return False

    def finalize_interview(self, interview_id: str, total_score: int, max_score: int, feedback) -> Interview:
        """Mark the interview completed; re-applying the same result is a no-op."""
        interview = self.fetch_interview(interview_id)
        total_score = max(0, int(total_score or 0))
        max_score = max(0, int(max_score or 0))
        if total_score > max_score:
            current_app.logger.warning(
                "Total score %s exceeds max score %s for interview %s; clamping.",
                total_score, max_score, interview_id,
            )
            total_score = max_score

        if (
            interview.status == "completed"
            and interview.total_score == total_score
            and interview.max_score == max_score
            and interview.feedback == feedback
        ):
            return interview

        interview.status = "completed"
        interview.completed_at = interview.completed_at or datetime.utcnow()
        interview.total_score = total_score
        interview.max_score = max_score
        interview.feedback = feedback
        try:
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise
        return interview

    # Row operations, overridable in tests to simulate an unreliable store.

    def _insert_rows(self, interview_id: str, questions: List[QuestionRecord],
                     positions: List[int]) -> List[str]:
        rows = []
        for position, question in zip(positions, questions):
            row = InterviewQuestion(interview_id=interview_id, position=position, **question.row_values())
            db.session.add(row)
            rows.append(row)
        db.session.commit()
        return [row.id for row in rows]

    def _update_row(self, question_id: str, values: dict) -> None:
        updated = InterviewQuestion.query.filter_by(id=question_id).update(values)
        db.session.commit()
        if not updated:
            current_app.logger.warning("Question %s no longer exists in the store.", question_id)
