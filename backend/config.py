from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    database_url: str = "sqlite:///./financepal.db"
    secret_key: str = "default-secret-key-change-in-production"
    environment: str = "development"
    log_level: str = "INFO"

    # Where the OAuth callback sends the browser back to
    frontend_url: str = "http://localhost:5173"

    # TrueLayer credentials (generic pair and live-specific pair)
    truelayer_env: str = ""
    truelayer_use_live: bool = False
    truelayer_client_id: str = ""
    truelayer_client_secret: str = ""
    truelayer_client_id_live: str = ""
    truelayer_client_secret_live: str = ""
    truelayer_redirect_uri: str = "http://localhost:8000/api/banking/callback"
    truelayer_timeout: float = 30.0

    # Sync windows and scheduling
    manual_sync_days: int = 180
    scheduled_sync_days: int = 7
    sync_interval_hours: int = 24
    oauth_state_ttl_minutes: int = 10

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    class Config:
        env_file = ".env"


@lru_cache()
def get_settings():
    return Settings()
