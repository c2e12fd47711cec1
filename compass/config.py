from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str
    jwt_secret_key: str
    access_token_expire_minutes: int = 60 * 24

    anthropic_api_key: str = ""
    openai_api_key: str = ""
    tavily_api_key: str = ""
    alpha_vantage_api_key: str = ""

    ai_model_primary: str = "claude-3-5-haiku-20241022"
    ai_model_fallback: str = "gpt-4o-mini"
    ai_max_tokens: int = 4000

    http_timeout_seconds: float = 30.0
    provider_max_attempts: int = 2
    research_stage_timeout_seconds: float = 180.0

    max_upload_bytes: int = 10 * 1024 * 1024
    frontend_url: str = "http://localhost:3000"
    sentry_dsn: str = ""
    environment: str = ""
    debug: bool = False
    rate_limit_enabled: bool = True

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    return Settings()
