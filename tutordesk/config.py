from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='ignore')

    app_name: str = 'Tutordesk'
    app_env: str = 'local'
    app_timezone: str = 'Europe/Paris'
    database_url: str = 'sqlite:///./tutordesk.db'
    cors_origins: str = 'http://localhost:3000'
    auth_secret: str = 'change-me'
    auth_token_expiry_hours: int = 168
    auth_min_password_length: int = 6
    default_hourly_rate: float = 30.0
    cache_backend: str = 'memory'
    cache_redis_url: str | None = None
    default_cache_ttl: int = 60
    client_base_url: str = 'http://127.0.0.1:8000'
    client_cache_ttl: int = 300
    client_lessons_cache_ttl: int = 120
    client_revenue_cache_ttl: int = 60
    client_request_timeout_seconds: float = 15.0
    db_slow_query_ms: int = 100
    metrics_slow_ms: int = 200

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(',') if origin.strip()]


settings = Settings()
