"""
backend/app/config.py

Purpose:
    Central settings loading for the betslip generation backend.

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
    MONGO_DB: str = "betai"
    MONGO_MAX_POOL_SIZE: int = 25
    MONGO_SERVER_SELECTION_TIMEOUT_MS: int = 5000
    JWT_SECRET: str
    JWT_SECRET_OLD: str = ""  # Set during rotation; cleared after token expiry
    BACKEND_CORS_ORIGINS: str = "http://localhost:8081"
    LOG_LEVEL: str = "INFO"

    # Generative text service (Gemini REST)
    GEMINI_API_KEY: str = ""
    GEMINI_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta"
    GENERATION_MODEL: str = "gemini-2.5-flash"
    GENERATION_MAX_OUTPUT_TOKENS: int = 3000
    GENERATION_TEMPERATURE: float = 0.4
    GENERATION_TIMEOUT_SECONDS: float = 60.0
    GENERATION_MAX_RETRIES: int = 0  # single attempt per request

    # Credit metering
    GENERATION_COST: int = 100
    ADMIN_EXEMPT: bool = True
    REFUND_EMPTY_GENERATION: bool = False  # zero-betslip success keeps the charge
    REFUND_MAX_ATTEMPTS: int = 3
    REFUND_RETRY_DELAY_SECONDS: float = 0.2

    # Prompt / output policy
    MAX_PROMPT_FIXTURES: int = 30
    PROMPT_BETSLIP_COUNT: int = 5
    MAX_RETURNED_BETSLIPS: int = 3
    MIN_TARGET_ODD: float = 1.01
    MAX_TARGET_ODD: float = 1000.0
    DEFAULT_STAKE: float = 10.0
    STRICT_MANIFEST_LEGS: bool = True

    model_config = {
        "env_file": (str(_BACKEND_ENV_FILE), str(_ROOT_ENV_FILE)),
        "extra": "ignore",
    }


settings = Settings()
