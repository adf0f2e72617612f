import os

from dotenv import load_dotenv

load_dotenv()


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///interview.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
    GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")

    PISTON_API_URL = os.getenv("PISTON_API_URL", "https://emkc.org/api/v2/piston/execute")
    CODE_RUN_TIMEOUT_MS = int(os.getenv("CODE_RUN_TIMEOUT_MS", "10000"))
    CODE_REQUEST_TIMEOUT_SECONDS = float(os.getenv("CODE_REQUEST_TIMEOUT_SECONDS", "30"))

    # Delay before the single retry of a failed store write, per flow.
    PERSIST_RETRY_BACKOFF_SECONDS = float(os.getenv("PERSIST_RETRY_BACKOFF_SECONDS", "1.0"))
    HR_PERSIST_RETRY_BACKOFF_SECONDS = float(os.getenv("HR_PERSIST_RETRY_BACKOFF_SECONDS", "1.5"))

    # Live sessions untouched this long are closed and dropped from the registry.
    SESSION_IDLE_TIMEOUT_SECONDS = float(os.getenv("SESSION_IDLE_TIMEOUT_SECONDS", "3600"))

    RESUME_TEXT_LIMIT = int(os.getenv("RESUME_TEXT_LIMIT", "8000"))
    MAX_CONTENT_LENGTH = int(os.getenv("MAX_CONTENT_LENGTH", str(16 * 1024 * 1024)))
