from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "IPO Allotment Status API"
    app_env: str = "development"
    api_prefix: str = "/api/v1"
    log_level: str = "INFO"

    request_timeout_seconds: float = 10
    registrar_verify_tls: bool = True
    registrar_max_body_bytes: int = 2_000_000

    rate_limit_requests: int = 10
    rate_limit_window_seconds: float = 60
    rate_limit_sweep_seconds: float = 300
    rate_limit_socket_fallback: bool = False

    registrars_file: str = ""
    ipos_file: str = ""
    check_log_max_entries: int = 10000

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


settings = Settings()
