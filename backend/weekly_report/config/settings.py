"""
Configuration settings for the weekly test report backend.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).resolve().parents[2]
load_dotenv(ROOT_DIR / ".env")


class Settings:
    """Application settings loaded from environment."""

    # Database
    MONGODB_URL: str = os.environ.get("MONGODB_URI", "mongodb://localhost:27017")
    DATABASE_NAME: str = os.environ.get("DB_NAME", "weekly_report")
    DATASET_COLLECTION: str = "test_datasets"

    # API Keys
    GEMINI_API_KEY: str = os.environ.get("GEMINI_API_KEY", "")

    # Server
    PORT: int = int(os.environ.get("PORT", 8001))
    HOST: str = os.environ.get("HOST", "0.0.0.0")
    DEBUG: bool = os.environ.get("DEBUG", "False").lower() == "true"

    # AI Configuration
    GEMINI_MODEL: str = os.environ.get("GEMINI_MODEL", "gemini-2.5-flash")
    LLM_TIMEOUT: int = 120  # seconds
    LLM_TEMPERATURE: float = 0.1
    MAX_PROMPT_CHARS: int = 40000

    # Prompt budgets (characters of exam text sent to the model)
    UNIT_MAP_TEXT_BUDGET: int = 15000
    ANALYSIS_TEXT_BUDGET: int = 8000
    REFERENCE_TEXT_BUDGET: int = 4000

    # Questions at or below this answer rate (%) count as low-performing
    LOW_RATE_THRESHOLD: int = 40

    # Spreadsheet dialect
    NAME_HEADER_KEYWORDS: list = ["이름", "학생명", "성명", "학생", "student", "name"]
    SCORE_HEADER_KEYWORDS: list = ["총점", "점수", "score"]
    AGGREGATE_ROW_MARKERS: list = [
        "평균 점수 / 문항별 정답률",
        "평균점수/정답률",
        "평균",
        "정답률",
        "average score / per-question rate",
    ]
    CORRECT_MARKS: list = ["O"]
    INCORRECT_MARKS: list = ["X"]

    # File upload
    MAX_FILE_SIZE_MB: int = 50
    ALLOWED_EXTENSIONS: list = ["pdf", "csv", "xlsx"]
    PARSE_CONCURRENCY: int = 3

    # Logging
    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")

    def validate(self):
        """Validate critical settings."""
        if not self.MONGODB_URL:
            raise ValueError("MONGODB_URI environment variable not set")
        if not self.GEMINI_API_KEY:
            raise ValueError("GEMINI_API_KEY environment variable not set")
        return True


# Global settings instance
settings = Settings()
