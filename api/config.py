"""
API configuration settings.
"""

from typing import List, Optional

from pydantic_settings import BaseSettings


class APIConfig(BaseSettings):
    """API configuration settings."""

    # API Settings
    api_title: str = "Book Library API"
    api_version: str = "1.0.0"
    api_description: str = "API for managing books and authors"

    # Server Settings
    host: str = "0.0.0.0"
    port: int = 3000

    # Session Settings
    session_secret: str = "book-library-secret-key-change-in-production"
    session_cookie_name: str = "library.sid"
    session_ttl_seconds: int = 24 * 60 * 60

    # Authentication
    require_auth: bool = False  # Gate write endpoints behind a logged-in user

    # Google OAuth
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    google_callback_url: str = "http://localhost:3000/auth/google/callback"

    # CORS Settings
    cors_origins: List[str] = [
        "http://localhost:3000",
        "http://localhost:3001",
    ]
    cors_origin_regex: str = r"https://.*\.onrender\.com"
    cors_allow_methods: List[str] = ["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"]
    cors_allow_headers: List[str] = [
        "Content-Type", "Authorization", "x-demo-user", "X-Requested-With", "Accept"
    ]

    model_config = {
        "env_file": ".env",
        "extra": "ignore"  # Ignore extra fields from .env
    }

    def oauth_enabled(self) -> bool:
        """Whether Google OAuth credentials are configured."""
        return bool(self.google_client_id and self.google_client_secret)


# Global config instance
config = APIConfig()
