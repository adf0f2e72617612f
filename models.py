from datetime import datetime
from uuid import uuid4

from flask_sqlalchemy import SQLAlchemy


db = SQLAlchemy()


def _new_id() -> str:
    return str(uuid4())


class Interview(db.Model):
    __tablename__ = "interviews"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    user_id = db.Column(db.String(64), nullable=False, index=True)
    interview_type = db.Column(db.String(20), nullable=False)
    difficulty = db.Column(db.String(20), nullable=True)
    language = db.Column(db.String(30), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="in_progress")
    total_score = db.Column(db.Integer, nullable=True, default=0)
    max_score = db.Column(db.Integer, nullable=True, default=0)
    feedback = db.Column(db.Text, nullable=True)
    started_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    completed_at = db.Column(db.DateTime, nullable=True)

    questions = db.relationship(
        "InterviewQuestion",
        backref="interview",
        cascade="all, delete-orphan",
        order_by="InterviewQuestion.position",
    )


class InterviewQuestion(db.Model):
    __tablename__ = "interview_questions"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    interview_id = db.Column(db.String(36), db.ForeignKey("interviews.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)
    question_type = db.Column(db.String(20), nullable=False)
    skill_name = db.Column(db.String(100), nullable=True)
    difficulty = db.Column(db.String(10), nullable=False)
    question_text = db.Column(db.Text, nullable=False)
    expected_answer = db.Column(db.Text, nullable=True)
    options = db.Column(db.JSON, nullable=True)
    user_answer = db.Column(db.Text, nullable=True)
    user_code = db.Column(db.Text, nullable=True)
    is_correct = db.Column(db.Boolean, nullable=True)
    score = db.Column(db.Integer, nullable=True)
    ai_feedback = db.Column(db.Text, nullable=True)
    time_taken_seconds = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)


class Resume(db.Model):
    __tablename__ = "resumes"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    user_id = db.Column(db.String(64), nullable=False, index=True)
    file_name = db.Column(db.String(255), nullable=False)
    raw_text = db.Column(db.Text, nullable=True)
    uploaded_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    skills = db.relationship("ExtractedSkill", backref="resume", cascade="all, delete-orphan")


class ExtractedSkill(db.Model):
    __tablename__ = "extracted_skills"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    resume_id = db.Column(db.String(36), db.ForeignKey("resumes.id"), nullable=False)
    user_id = db.Column(db.String(64), nullable=False, index=True)
    skill_name = db.Column(db.String(100), nullable=False)
    proficiency_level = db.Column(db.String(20), nullable=False, default="beginner")
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
