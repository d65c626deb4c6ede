"""
Configuration settings for the UniChat backend.
Uses pydantic-settings for environment variable support.
"""

from pydantic_settings import BaseSettings
from pydantic import Field
from typing import List
import secrets
import os


def get_or_create_secret_key():
    """Get secret key from file or generate a new one."""
    secret_file = ".secret_key"
    if os.path.exists(secret_file):
        try:
            with open(secret_file, "r") as f:
                return f.read().strip()
        except OSError:
            pass

    # Generate new key
    key = secrets.token_urlsafe(32)
    try:
        with open(secret_file, "w") as f:
            f.write(key)
    except OSError:
        pass  # read-only fs, use the key for this process only

    return key


class Settings(BaseSettings):
    """Application configuration settings."""

    # Application
    APP_NAME: str = "UniChat"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = True

    # Database
    # resolved relative to this config file (backend/unichat/config.py -> backend/unichat.db)
    _BASE_DIR: str = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    DATABASE_URL: str = f"sqlite+aiosqlite:///{os.path.join(_BASE_DIR, 'unichat.db')}"

    # Bearer tokens from the identity provider
    SECRET_KEY: str = Field(default_factory=get_or_create_secret_key)
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24  # 24 hours

    # Messaging
    MESSAGE_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100
    MAX_MESSAGE_LENGTH: int = 4000
    ECHO_MATCH_WINDOW_SECONDS: float = 2.0

    # Typing / presence
    TYPING_IDLE_SECONDS: float = 3.0

    # Conversation list
    LIST_REFRESH_DEBOUNCE_SECONDS: float = 0.1

    # Logging
    LOG_JSON: bool = False
    LOG_LEVEL: str = "INFO"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    CORS_ORIGINS: List[str] = ["*"]

    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()
