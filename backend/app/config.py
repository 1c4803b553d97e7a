"""
backend/app/config.py

Purpose:
    Central settings loading for the settlement backend.

Dependencies:
    - pydantic-settings
    - pathlib
"""

from pathlib import Path

from pydantic_settings import BaseSettings

# Prefer backend/.env, fallback to project-root .env.
_BACKEND_ENV_FILE = Path(__file__).resolve().parent.parent / ".env"
_ROOT_ENV_FILE = Path(__file__).resolve().parent.parent.parent / ".env"


class Settings(BaseSettings):
    MONGO_URI: str = "mongodb://localhost:27017"
    MONGO_DB: str = "matka"
    BACKEND_CORS_ORIGINS: str = "http://localhost:5173"

    # Admin API key for result declaration and settlement endpoints
    ADMIN_API_KEY: str = ""
    LOG_LEVEL: str = "INFO"

    # Multi-document transactions need a replica set; disable for standalone dev servers
    MONGO_TRANSACTIONS_ENABLED: bool = True

    # Settlement
    SETTLEMENT_LOCK_TTL_SECONDS: int = 600
    SETTLEMENT_CREDIT_MAX_RETRIES: int = 3
    SETTLEMENT_CREDIT_BASE_DELAY_SECONDS: float = 0.5
    SETTLEMENT_CREDIT_MAX_DELAY_SECONDS: float = 30.0
    SETTLEMENT_CREDIT_CONCURRENCY: int = 8
    SETTLEMENT_BATCH_LIMIT: int = 50000

    # Payout ratio fallbacks (X:1) for markets without a payout_configs document
    DEFAULT_JODI_RATIO: int = 95
    DEFAULT_HARUF_RATIO: int = 9
    DEFAULT_CROSSING_RATIO: int = 95

    # Background workers
    AUTOMATION_ENABLED: bool = True
    SWEEPER_INTERVAL_MINUTES: int = 5
    RECONCILE_INTERVAL_MINUTES: int = 15

    # Event bus (in-process)
    EVENT_BUS_ENABLED: bool = True
    EVENT_BUS_INGRESS_QUEUE_MAXSIZE: int = 10000
    EVENT_BUS_HANDLER_QUEUE_MAXSIZE: int = 2000
    EVENT_BUS_HANDLER_DEFAULT_CONCURRENCY: int = 1
    EVENT_BUS_ERROR_BUFFER_SIZE: int = 200
    EVENT_HANDLER_RESULT_DECLARED_ENABLED: bool = True
    EVENT_HANDLER_DRAW_SETTLED_ENABLED: bool = True

    model_config = {
        "env_file": (str(_BACKEND_ENV_FILE), str(_ROOT_ENV_FILE)),
        "extra": "ignore",
    }


settings = Settings()
