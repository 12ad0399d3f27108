from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./sheetbot.db"
    log_level: str = "INFO"
    debug: bool = False

    # Session / liveness
    session_timeout_seconds: int = 300
    response_timeout_seconds: int = 60
    asset_request_marker: str = "brochure"
    assets_path: Optional[str] = None

    # Content source (Google Sheets or local YAML)
    google_sheet_id: Optional[str] = None
    sheet_cache_seconds: int = 60
    content_path: str = "content.yaml"

    # AI
    groq_api_key: str = ""
    groq_model: str = "llama-3.1-8b-instant"
    groq_base_url: str = "https://api.groq.com/openai/v1"
    ai_history_limit: int = 10
    ai_timeout_seconds: float = 30.0
    ai_system_prompt: str = (
        "Eres un asistente comercial amable. Responde en español, de forma breve y clara."
    )

    # ChatFlow transport
    chatflow_token: Optional[str] = None
    chatflow_instance_id: Optional[str] = None
    chatflow_base_url: str = "https://app.chatflow.kz/api/v1"

    # HTTP surface
    webhook_secret: Optional[str] = None
    admin_token: Optional[str] = None
    cors_allow_origins: str = "*"

    # Background workers
    broadcast_interval_seconds: float = 60.0
    broadcast_max_attempts: int = 3
    housekeeping_interval_hours: float = 24.0
    history_max_age_days: int = 7

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
