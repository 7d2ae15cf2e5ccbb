import os
from dataclasses import dataclass, field
from typing import List, Optional
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # Database
    database_url: Optional[str] = os.getenv("DATABASE_URL")
    database_name: str = os.getenv("DATABASE_NAME", "library")
    database_timeout_ms: int = int(os.getenv("DATABASE_TIMEOUT_MS", "5000"))

    # Circulation
    loan_period_days: int = int(os.getenv("LOAN_PERIOD_DAYS", "14"))

    # Membership cards
    student_id_prefix: str = os.getenv("STUDENT_ID_PREFIX", "GCMN")
    bcrypt_rounds: int = int(os.getenv("BCRYPT_ROUNDS", "10"))

    # Application
    app_name: str = os.getenv("APP_NAME", "Library Circulation API")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    debug: bool = _flag("DEBUG")
    port: int = int(os.getenv("PORT", "8000"))
    cors_origins: List[str] = field(
        default_factory=lambda: [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
    )


settings = Settings()
