from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Intel Export API"
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    cors_origins: str = "http://localhost:3000"
    cors_allow_credentials: bool = True
    log_level: str = "INFO"
    request_id_header: str = "X-Request-ID"

    export_default_limit: int = 200
    export_max_limit: int = 1000
    default_classification: str = "UNCLASS"
    # Strictly-greater-than comparison: a body of exactly this many UTF-8 bytes does not warn.
    body_size_warning_bytes: int = 200 * 1024
    tag_count_warning_threshold: int = 20
    max_title_length: int = 300
    summary_max_chars: int = 280
    report_source_cap: int = 50
    report_tag_cap: int = 100

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


settings = Settings()
