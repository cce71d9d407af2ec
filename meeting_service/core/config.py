"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or .env file."""
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Application
    app_name: str = "Meeting Service"
    debug: bool = False

    # Server
    host: str = "0.0.0.0"  # Bind to all interfaces for external access
    port: int = 8000
    allowed_origins: str = "*"  # Comma-separated origins, or "*" for all

    # Database
    database_url: str = "sqlite:///./meeting_service.db"

    # Zoom (Server-to-Server OAuth app)
    zoom_account_id: str = ""
    zoom_client_id: str = ""
    zoom_client_secret: str = ""
    zoom_api_base_url: str = "https://api.zoom.us/v2"
    zoom_oauth_url: str = "https://zoom.us/oauth/token"
    zoom_webhook_secret_token: str = ""
    webhook_replay_window_seconds: int = 300

    # Google Meet (Calendar API with conference data)
    google_client_id: str = ""
    google_client_secret: str = ""
    google_refresh_token: str = ""  # Obtained via scripts/get_token.py
    google_calendar_id: str = "primary"

    # Provider calls
    provider_timeout_seconds: float = 30.0

    # Occurrences
    occurrence_horizon_days: int = 365
    max_occurrences: int = 100
    occurrence_relevance_buffer_minutes: int = 40
    occurrence_refresh_interval_minutes: int = 60

    # Webhook reconciliation
    session_match_tolerance_seconds: int = 60


settings = Settings()
