from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "SpendWise API"
    database_url: str = ""
    db_pool_min_size: int = 1
    db_pool_max_size: int = 10
    # Comma-separated origins for CORS. Use "*" only for local development.
    cors_allow_origins: str = "*"
    jwt_secret_key: str
    jwt_algorithm: str = "HS256"
    # IANA zone used to decide what "today" is for budget periods.
    timezone: str = "UTC"
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore")


settings = Settings()
