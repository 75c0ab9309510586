from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    # App
    APP_NAME: str = "BillScan"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # CORS
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000"]

    # Supabase (field mappings)
    SUPABASE_URL: str = ""
    SUPABASE_SERVICE_KEY: str = ""

    # Language detection
    DEFAULT_LANGUAGE: str = "en"
    LANGUAGE_THRESHOLD: float = 0.15

    # Field extraction
    STEM_MATCH_THRESHOLD: float = 0.5
    STEM_BAIL_OUT_THRESHOLD: float = 0.3
    REGEX_MIN_KEYWORDS: int = 2

    # Confidence policy
    PDF_EARLY_EXIT_CONFIDENCE: float = 0.6
    TRUSTED_SOURCE_BONUS: float = 0.15
    MAX_CONFIDENCE: float = 0.95

    # Deduplication
    AMOUNT_TOLERANCE: float = 0.01  # 1% relative difference
    DATE_PROXIMITY_DAYS: int = 7

    # PDF text
    PDF_MAX_PAGES: int = 20

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
