"""Application configuration."""
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Telnyx Call Control
    telnyx_api_key: str
    telnyx_api_url: str = "https://api.telnyx.com/v2"
    call_control_app_id: str = ""
    telnyx_default_caller_id: str = ""
    call_control_webhook_url: Optional[str] = None
    call_control_timeout_seconds: float = 10.0

    # Hold music played to the customer while the agent consults
    hold_music_url: Optional[str] = None

    # Database
    database_url: str

    # Server
    base_url: Optional[str] = None
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def resolved_hold_music_url(self) -> Optional[str]:
        """Hold music URL, falling back to the bundled sound under BASE_URL."""
        if self.hold_music_url:
            return self.hold_music_url
        if self.base_url:
            return f"{self.base_url.rstrip('/')}/sounds/on-hold.mp3"
        return None

    @property
    def resolved_webhook_url(self) -> Optional[str]:
        """Webhook URL handed to the platform for legs we dial."""
        if self.call_control_webhook_url:
            return self.call_control_webhook_url
        if self.base_url:
            return f"{self.base_url.rstrip('/')}/webhooks/telnyx/voice"
        return None


settings = Settings()
