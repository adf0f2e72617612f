from sqlalchemy.exc import OperationalError

from config import Config
from services.persistence_service import PersistenceAdapter


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    GEMINI_API_KEY = ""
    PERSIST_RETRY_BACKOFF_SECONDS = 0.0
    HR_PERSIST_RETRY_BACKOFF_SECONDS = 0.0


def store_down():
    return OperationalError("INSERT INTO interview_questions", {}, Exception("connection reset"))


class FlakyPersistence(PersistenceAdapter):
    """Adapter whose row operations fail a configurable number of times."""

    def __init__(self, insert_failures=0, update_failures=0):
        self.sleeps = []
        super().__init__(backoff_seconds=1.5, sleep=self.sleeps.append)
        self.insert_failures = insert_failures
        self.update_failures = update_failures
        self.insert_calls = 0
        self.update_calls = []

    def _insert_rows(self, interview_id, questions, positions):
        self.insert_calls += 1
        if self.insert_failures > 0:
            self.insert_failures -= 1
            raise store_down()
        return super()._insert_rows(interview_id, questions, positions)

    def _update_row(self, question_id, values):
        self.update_calls.append((question_id, dict(values)))
        if self.update_failures > 0:
            self.update_failures -= 1
            raise store_down()
        return super()._update_row(question_id, values)
