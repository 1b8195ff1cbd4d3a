from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
import os


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    APP_NAME: str = "SCI Publication Tracker API"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = os.getenv(
        "DATABASE_URL",
        "sqlite+pysqlite:///" + os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "pubtrack.db")),
    )

    # CORS
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
    ]

    # Pagination defaults
    PAGE_SIZE_DEFAULT: int = 20
    PAGE_SIZE_MAX: int = 100

    # Tokens: signed JWT, purely time-based expiry
    JWT_SECRET: str = "change-me-in-production"
    JWT_ALGORITHM: str = "HS256"
    TOKEN_TTL_MINUTES: int = 120
    BCRYPT_ROUNDS: int = 12

    # Uploads / import
    UPLOAD_MAX_BYTES: int = 10 * 1024 * 1024
    IMPORT_MAX_ERRORS: int = 100

    # Statistics
    STATS_DECIMALS: int = 3
    HIGH_IMPACT_THRESHOLD: float = 10.0
    TOP_DEPARTMENTS_LIMIT: int = 10

    # API client: mode is resolved once and handed to the client constructor
    API_MODE: str = "live"  # live|demo
    API_BASE_URL: str = "http://127.0.0.1:8000"
    DEMO_API_BASE_URL: str = "http://127.0.0.1:8001"
    CLIENT_REFRESH_MARGIN_SECONDS: int = 300

    # Seed admin (scripts/seed_demo.py)
    ADMIN_USERNAME: str = "admin"
    ADMIN_PASSWORD: str = "admin123"
    ADMIN_EMAIL: str = "admin@hospital.local"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
