"""Application configuration and settings."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Settings loaded from FIRSTAID_* environment variables or .env."""

    # Content
    content_dir: Optional[str] = None

    # Firebase
    firebase_api_key: Optional[str] = None
    firebase_project_id: Optional[str] = None
    identity_base_url: str = "https://identitytoolkit.googleapis.com/v1"
    firestore_base_url: str = "https://firestore.googleapis.com/v1"
    verification_collection: str = "verification_codes"
    users_collection: str = "users"
    verification_code_ttl: int = 600  # seconds

    # Brevo transactional email
    brevo_api_key: Optional[str] = None
    brevo_base_url: str = "https://api.brevo.com/v3"
    sender_email: str = "no-reply@swiftaid.app"
    sender_name: str = "SwiftAid"

    http_timeout: float = 10.0

    # Timers
    resend_cooldown: int = 60
    metronome_bpm: int = 110

    # Logging
    log_level: str = "WARNING"
    log_file: Optional[str] = None

    class Config:
        env_prefix = "FIRSTAID_"
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
