from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Studify Mock Exams"
    env: str = "dev"
    cors_origins: str = "http://localhost:3000"
    api_prefix: str = "/api/mock-exams"
    log_level: str = "INFO"

    storage_backend: str = "inmemory"  # inmemory|mongo|supabase
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db: str = "studify"
    supabase_url: str | None = None
    supabase_key: str | None = None

    # Try the database-side routines (update_attempt_results / complete_exam_attempt)
    # before computing in-process.
    use_server_routines: bool = True

    # Tokens are issued by the hosted auth service; we only verify them.
    jwt_secret_key: str = "studify-secret-key-change-in-production"
    jwt_algorithm: str = "HS256"
    jwt_audience: str | None = None

    # Well-known test identity used when a request carries no token. Off unless
    # enabled for local development or tests.
    auth_fallback_enabled: bool = False
    auth_fallback_user_id: str = "00000000-0000-0000-0000-000000000001"

    default_subject: str = "General"
    default_passing_score: int = 60

    # Observability (OpenTelemetry)
    observability_enabled: bool = False
    otel_service_name: str = "studify-mock-exams"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_console: bool = False
    otel_sample_rate: float = 0.1


settings = Settings()
