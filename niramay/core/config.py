from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Required Secrets (No defaults, will fail fast if missing)
    DATABASE_URL: str
    SUPABASE_URL: str
    SUPABASE_KEY: str

    # Optional third-party keys. Without them the AI and maps calls degrade to defaults.
    GEMINI_API_KEY: Optional[str] = None
    GEMINI_MODEL: str = "gemini-2.0-flash"
    GOOGLE_MAPS_API_KEY: Optional[str] = None
    MAPS_TIMEOUT_SECONDS: float = 10.0

    # Storage
    STORAGE_BUCKET: str = "report-images"
    MAX_UPLOAD_SIZE_BYTES: int = 5 * 1024 * 1024
    MAX_AI_IMAGE_BYTES: int = 4 * 1024 * 1024
    AUTO_CREATE_TABLES: bool = False

    # Auth session bootstrap; a slower Supabase answer is treated as "no session"
    AUTH_TIMEOUT_SECONDS: float = 5.0

    # --- Business rules ---
    PROOF_RADIUS_METERS: float = 50.0
    MIN_ADDRESS_LENGTH: int = 10
    MIN_ADDRESS_TOKENS: int = 3
    NOTIFICATION_PAGE_SIZE: int = 50
    LEADERBOARD_SIZE: int = 20

    # --- Integrity scanner ---
    LEDGER_DRIFT_TOLERANCE: int = 0
    LARGE_TRANSACTION_THRESHOLD: int = 1000

    # --- Order confirmation email (aiosmtplib) ---
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USER: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_USE_TLS: bool = True
    EMAIL_FROM: str = "noreply@niramay.local"

    # Pydantic v2 config to read from .env file
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

# Instantiate as a singleton to be imported across the app
settings = Settings()

# Fail Fast validation for the required variables
if not settings.DATABASE_URL:
    raise RuntimeError("Missing required env var: DATABASE_URL")
if not settings.SUPABASE_URL:
    raise RuntimeError("Missing required env var: SUPABASE_URL")
if not settings.SUPABASE_KEY:
    raise RuntimeError("Missing required env var: SUPABASE_KEY")
