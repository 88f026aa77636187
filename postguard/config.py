from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    environment: str = "development"
    log_level: str = "INFO"
    log_json: bool = False

    store_backend: str = "memory"
    redis_url: str = "redis://localhost:6379/0"
    database_url: str = "sqlite:///./postguard.db"
    store_lock_timeout_seconds: float = 5.0

    rate_limiting_enabled: bool = True
    rate_limit_fail_open: bool = True
    rate_limit_max_block_ms: int = 86_400_000
    rate_limit_max_progressive_delay_ms: int = 30_000

    attack_detection_enabled: bool = True
    attack_block_confidence: float = 0.7
    forensic_input_chars: int = 200
    long_content_threshold: int = 500
    benign_sources: list[str] = [
        "article_content",
        "user_comment",
        "search_query",
        "form_data",
        "api_response",
        "navigation",
        "user_input",
    ]

    event_log_capacity: int = 1000
    alert_capacity: int = 100
    event_retention_days: int = 7

    integrity_interval_seconds: float = 30.0
    integrity_max_snapshots: int = 20
    integrity_max_changes: int = 500
    integrity_auto_restore: bool = False
    integrity_authorized_types: list[str] = ["user_data"]
    integrity_size_gated_types: list[str] = ["key_value_store", "session_store"]
    integrity_unauthorized_types: list[str] = ["script", "configuration"]
    integrity_authorized_delta_bytes: int = 1024

    admin_api_prefix: str = "/api/"
    actor_header: str = "x-actor-id"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "POSTGUARD_"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
