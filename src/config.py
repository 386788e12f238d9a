"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings

from src.collector.base import SourceKind


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "HealthSync Collector"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Collection endpoint ---
    collection_endpoint_url: str = "http://localhost:8080/api"
    transmit_path: str = "/projects/{context_id}/health-data"
    collection_api_key: str = ""  # bearer token for the collection endpoint
    transmit_timeout_seconds: float = 10.0

    # --- Measurement source ---
    source_kind: SourceKind = SourceKind.APPLE
    measurement_source: str = "sensor_daemon"  # sensor_daemon | apple_export
    sensor_daemon_url: str = "http://127.0.0.1:8765"
    sensor_daemon_token: str = ""
    apple_export_path: str = "export.xml"

    # --- Session ---
    session_file: str = ""  # JSON {"email", "lastProjectId"}; overrides the static pair
    session_identity: str = ""
    session_context_id: int = 0  # 0 = no project selected

    # --- Startup ---
    autostart_scheduler: bool = True

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
