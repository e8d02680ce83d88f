"""Central environment-driven settings for the payment service.

The process loads this once at startup. Behavior is controlled by environment
variables (see `.env.example`).
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "payments"
    log_level: str = "INFO"
    database_dsn: str = "sqlite:///./ticketpay.db"
    api_key: str = "dev-secret"
    auto_create_schema: bool = False
    gateway_mode: str = "mock"
    gateway_approval_rate: float = 0.9
    gateway_seed: int | None = None
    gateway_decline_reason: str = "Insufficient funds (mock failure)"
    pending_recovery_seconds: int = 300
    tracing_enabled: bool = True
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = CommonSettings()
