from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Studyplan API"
    app_env: str = "development"
    log_level: str = "INFO"
    log_format: str = "json"  # json|text
    request_id_header: str = "X-Request-ID"
    cors_origins: str = "http://localhost:3000"
    cors_allow_credentials: bool = False

    aws_region: str = "us-east-1"
    # Structured (tool use) calls go to the pro model, free-text calls to the lite model.
    bedrock_model_id: str = "amazon.nova-pro-v1:0"
    bedrock_lite_model_id: str = "amazon.nova-lite-v1:0"
    bedrock_validate_model_ids_on_startup: bool = False
    structured_temperature: float = 0.0
    text_temperature: float = 0.3
    plan_max_output_tokens: int = 1500
    summary_max_output_tokens: int = 1000
    text_max_output_tokens: int = 800
    structured_max_attempts: int = 2
    log_raw_model_responses: bool = False

    plan_context_max_chars: int = 60000
    summary_context_max_chars: int = 15000
    reconcile_max_workers: int = 1

    content_root: str = "content"
    planning_extensions: str = ".md,.txt,.js,.json,.py,.java,.c,.cpp,.pdf"
    summary_extensions: str = ".md,.txt,.js,.json,.py,.java,.c,.cpp"

    database_url: str = "sqlite:///./studyplan.db"
    archive_backend: str = "local"  # local|s3|off
    archive_root: str = "data/responses"
    s3_bucket: str = "studyplan-dev"
    s3_prefix: str = "studyplan"
    upload_url_expiry_seconds: int = 300

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def planning_extensions_set(self) -> frozenset[str]:
        return _parse_extensions(self.planning_extensions)

    @property
    def summary_extensions_set(self) -> frozenset[str]:
        return _parse_extensions(self.summary_extensions)


def _parse_extensions(raw: str) -> frozenset[str]:
    extensions: set[str] = set()
    for item in raw.split(","):
        value = item.strip().lower()
        if not value:
            continue
        extensions.add(value if value.startswith(".") else f".{value}")
    return frozenset(extensions)


settings = Settings()
