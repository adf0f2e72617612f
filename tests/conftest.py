import pytest

from app import create_app
from models import Interview, db

from support import TestConfig


@pytest.fixture
def app():
    app = create_app(TestConfig)
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_interview(ctx):
    def _make(interview_type="aptitude", user_id="user-1", difficulty="medium", language=None):
        interview = Interview(
            user_id=user_id,
            interview_type=interview_type,
            difficulty=difficulty,
            language=language,
            status="in_progress",
        )
        db.session.add(interview)
        db.session.commit()
        return interview.id

    return _make
