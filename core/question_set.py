from dataclasses import dataclass, field, replace
from typing import Dict, Iterator, List, Optional, Tuple

from core.answers import AnswerKind, kind_for


PLACEHOLDER_PREFIX = "temp-"


def placeholder_id(position: int) -> str:
    return f"{PLACEHOLDER_PREFIX}{position}"


def is_placeholder_id(question_id: Optional[str]) -> bool:
    # A question without any id has never reached the store either.
    return not question_id or question_id.startswith(PLACEHOLDER_PREFIX)


@dataclass
class QuestionRecord:
    question_type: str
    difficulty: str
    question_text: str
    id: Optional[str] = None
    skill_name: Optional[str] = None
    expected_answer: Optional[str] = None
    options: Optional[List[str]] = None
    user_answer: Optional[str] = None
    user_code: Optional[str] = None
    is_correct: Optional[bool] = None
    score: Optional[int] = None
    ai_feedback: Optional[str] = None
    time_taken_seconds: Optional[int] = None

    @property
    def kind(self) -> AnswerKind:
        return kind_for(self.question_type)

    @property
    def is_placeholder(self) -> bool:
        return is_placeholder_id(self.id)

    @property
    def answer(self) -> Optional[str]:
        return getattr(self, self.kind.field)

    @answer.setter
    def answer(self, value: Optional[str]) -> None:
        setattr(self, self.kind.field, value)

    @classmethod
    def from_row(cls, row) -> "QuestionRecord":
        return cls(
            id=row.id,
            question_type=row.question_type,
            skill_name=row.skill_name,
            difficulty=row.difficulty,
            question_text=row.question_text,
            expected_answer=row.expected_answer,
            options=list(row.options) if row.options else None,
            user_answer=row.user_answer,
            user_code=row.user_code,
            is_correct=row.is_correct,
            score=row.score,
            ai_feedback=row.ai_feedback,
            time_taken_seconds=row.time_taken_seconds,
        )

    @classmethod
    def from_generated(cls, data: dict) -> "QuestionRecord":
        return cls(
            question_type=data["question_type"],
            skill_name=data.get("skill_name"),
            difficulty=data.get("difficulty") or "medium",
            question_text=data["question_text"],
            expected_answer=data.get("expected_answer"),
            options=list(data["options"]) if data.get("options") else None,
        )

    def row_values(self) -> dict:
        """Column values for inserting this question (without identity)."""
        return {
            "question_type": self.question_type,
            "skill_name": self.skill_name,
            "difficulty": self.difficulty,
            "question_text": self.question_text,
            "expected_answer": self.expected_answer,
            "options": self.options,
            "user_answer": self.user_answer,
            "user_code": self.user_code,
            "time_taken_seconds": self.time_taken_seconds,
        }

    def evaluation_payload(self) -> dict:
        payload = {
            "question_type": self.question_type,
            "difficulty": self.difficulty,
            "question_text": self.question_text,
            "expected_answer": self.expected_answer or "",
            "user_answer": self.user_answer or "",
            "user_code": self.user_code or "",
        }
        if self.options:
            payload["options"] = list(self.options)
        if not self.is_placeholder:
            payload["id"] = self.id
        return payload

    def public_view(self) -> dict:
        # Expected answers stay server side until evaluation.
        return {
            "id": self.id,
            "question_type": self.question_type,
            "skill_name": self.skill_name,
            "difficulty": self.difficulty,
            "question_text": self.question_text,
            "options": self.options,
            "answered": bool(self.answer),
        }


@dataclass
class QuestionSet:
    """Ordered questions of one interview; the in-memory source of truth."""

    questions: List[QuestionRecord] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.questions)

    def __iter__(self) -> Iterator[QuestionRecord]:
        return iter(self.questions)

    def __getitem__(self, index: int) -> QuestionRecord:
        return self.questions[index]

    def answer_at(self, index: int) -> Optional[str]:
        return self.questions[index].answer

    def write_answer(self, index: int, value: Optional[str]) -> QuestionRecord:
        question = self.questions[index]
        question.answer = value
        return question

    def assign_ids(self, ids: List[str]) -> None:
        if len(ids) != len(self.questions):
            raise ValueError("Identity count does not match question count")
        for question, question_id in zip(self.questions, ids):
            question.id = question_id

    def assign_placeholders(self) -> None:
        # Tagged by position so later lookups by index stay stable.
        for position, question in enumerate(self.questions):
            question.id = placeholder_id(position)

    def partition(self) -> Tuple[List[Tuple[int, QuestionRecord]], List[Tuple[int, QuestionRecord]]]:
        """Split into stored and placeholder questions, each paired with its position."""
        persisted, placeholders = [], []
        for position, question in enumerate(self.questions):
            (placeholders if question.is_placeholder else persisted).append((position, question))
        return persisted, placeholders

    def finalized_view(self, index: int, buffer_value: str) -> "QuestionSet":
        """Copy of every question with the in-buffer edit for ``index`` flushed in."""
        view = [replace(q) for q in self.questions]
        if 0 <= index < len(view):
            view[index].answer = buffer_value
        for question in view:
            if question.answer is None:
                question.answer = ""
        return QuestionSet(view)

    def apply_results(self, results: List[Dict]) -> None:
        for question, result in zip(self.questions, results):
            question.is_correct = result.get("is_correct")
            question.score = result.get("score")
            question.ai_feedback = result.get("ai_feedback")
