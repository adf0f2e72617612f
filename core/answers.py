from enum import Enum


class AnswerKind(Enum):
    """Closed set of answer shapes a question can take."""

    CODING = "coding"
    MULTIPLE_CHOICE = "multiple_choice"
    FREE_TEXT = "free_text"

    @property
    def field(self) -> str:
        # Column of the question record that holds "the" answer.
        if self is AnswerKind.CODING:
            return "user_code"
        return "user_answer"


QUESTION_TYPE_KINDS = {
    "coding": AnswerKind.CODING,
    "aptitude": AnswerKind.MULTIPLE_CHOICE,
    "logical": AnswerKind.MULTIPLE_CHOICE,
    "verbal": AnswerKind.MULTIPLE_CHOICE,
    "hr": AnswerKind.FREE_TEXT,
}


def kind_for(question_type: str) -> AnswerKind:
    try:
        return QUESTION_TYPE_KINDS[question_type]
    except KeyError:
        raise ValueError(f"Unknown question type: {question_type!r}") from None


def _as_text(value) -> str:
    # Clients may send an option index or other JSON scalar as the answer.
    return "" if value is None else str(value)


class AnswerBuffer:
    """Value being edited for the active question.

    Typed input replaces the whole value; voice input appends finalized
    increments joined by a single space.
    """

    def __init__(self, value: str = ""):
        self.value = _as_text(value)

    def set(self, value) -> None:
        self.value = _as_text(value)

    def load(self, stored) -> None:
        # Stored answers may be None for untouched questions.
        self.value = _as_text(stored)

    def append(self, increment: str) -> str:
        increment = (increment or "").strip()
        if increment:
            self.value = f"{self.value} {increment}" if self.value else increment
        return self.value
