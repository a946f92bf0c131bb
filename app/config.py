import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _resolve_database_url() -> str:
    database_url = os.getenv("DATABASE_URL")
    if database_url:
        return database_url

    environment = os.getenv("ENVIRONMENT", "").strip().lower()
    if environment == "development":
        return "postgresql+psycopg://localhost:5434/identity_visibility"

    raise ValueError(
        "DATABASE_URL is not set. Set DATABASE_URL for non-development "
        "environments or set ENVIRONMENT=development for local defaults."
    )


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    database_url: str = _resolve_database_url()
    db_pool_size: int = int(os.getenv("DB_POOL_SIZE", "5"))
    db_max_overflow: int = int(os.getenv("DB_MAX_OVERFLOW", "10"))
    db_pool_timeout: int = int(os.getenv("DB_POOL_TIMEOUT", "30"))
    db_pool_recycle: int = int(os.getenv("DB_POOL_RECYCLE", "1800"))

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Header set by the fronting auth layer once a session is validated
    contributor_header: str = os.getenv("CONTRIBUTOR_HEADER", "x-contributor-id")

    # Rendering
    feed_page_limit: int = int(os.getenv("FEED_PAGE_LIMIT", "50"))
    # Deprecated rank-max resolution for legacy feed consumers; pending
    # product confirmation before it can be deleted.
    legacy_rank_max_resolution: bool = _env_bool("LEGACY_RANK_MAX_RESOLUTION")
    # Run the capitalised-name detector over note bodies
    name_detection: bool = _env_bool("NAME_DETECTION", "true")


settings = Settings()
