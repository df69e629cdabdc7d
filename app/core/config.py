from pydantic_settings import BaseSettings
from typing import Literal


class Settings(BaseSettings):
    APP_NAME: str = "Coursework"
    AUTH_MODE: Literal["firebase", "mock"] = "mock"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    SUPABASE_URL: str = ""
    SUPABASE_KEY: str = ""
    SUPABASE_SERVICE_KEY: str = ""

    FIREBASE_CREDENTIALS_PATH: str = "./firebase-credentials.json"

    CORS_ORIGINS: str = "http://localhost:3000"

    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    # Document collections
    ASSIGNMENTS_TABLE: str = "assignments"
    SUBMISSIONS_TABLE: str = "assignment_submissions"

    # Submission lifecycle
    AUTOSAVE_DEBOUNCE_SECONDS: float = 3.0
    COUNTDOWN_INTERVAL_SECONDS: float = 1.0
    ENFORCE_REQUIRED_QUESTIONS: bool = False
    DRAFT_CLEANUP_ATTEMPTS: int = 2

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
