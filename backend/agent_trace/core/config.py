from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "agent-trace-collector"
    env: str = "dev"
    log_level: str = "INFO"

    # Standalone listeners
    host: str = "127.0.0.1"
    http_port: int = 8317
    otel_grpc_address: str = "127.0.0.1:4717"

    default_privacy_tier: int = 1
    enable_transcript_ingestion: bool = True
    processing_drain_timeout_seconds: float = 5.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="AGENT_TRACE_",
        extra="ignore",
    )

    @property
    def http_address(self) -> str:
        return f"{self.host}:{self.http_port}"


settings = Settings()
