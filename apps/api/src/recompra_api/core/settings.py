from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./recompra.db"
    redis_url: str = "redis://localhost:6379/0"
    celery_broker_url: str | None = None
    celery_result_backend: str | None = None
    celery_default_queue: str = "recompra-default"

    # Tracing
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    tracing_console_export: bool = False

    # Internal API security
    internal_api_key: str = ""

    # Cashback ledger
    cashback_default_expiration_days: int = 90
    cashback_expiration_worker_enabled: bool = False
    cashback_expiration_interval_seconds: int = 60 * 60
    cashback_expiration_task_queue: str = "cashback-expiration"

    # External sales feed import
    sales_import_worker_enabled: bool = False
    sales_import_interval_seconds: int = 15 * 60
    sales_import_lookback_days: int = 3
    sales_import_timeout_seconds: float = 20.0
    sales_import_task_queue: str = "sales-import"
    sales_import_organization_ids: list[str] = Field(default_factory=list)

    @field_validator("sales_import_organization_ids", mode="before")
    @classmethod
    def _parse_id_list(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip() for item in value if str(item).strip()]
        return []

    # Outbound messaging
    whatsapp_gateway_url: str = "https://graph.facebook.com/v21.0"
    whatsapp_gateway_timeout_seconds: float = 10.0
    interaction_dispatch_delay_seconds: float = 0.5
    interaction_dispatch_worker_enabled: bool = False
    interaction_dispatch_interval_seconds: int = 5 * 60
    interaction_dispatch_batch_size: int = 50
    interaction_dispatch_task_queue: str = "interaction-dispatch"


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
