from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='ignore')

    app_name: str = 'School Results Portal'
    app_env: str = 'local'
    database_url: str = 'sqlite:///./results_portal.db'
    auth_secret: str = 'change-me'
    auth_session_expiry_hours: int = 12
    auth_min_password_length: int = 8
    bootstrap_admin_username: str = ''
    bootstrap_admin_password: str = ''
    public_portal_base_url: str = 'http://localhost:5173'
    cors_allowed_origins: str = 'http://localhost:5173'
    db_slow_query_ms: int = 100
    metrics_slow_ms: int = 200

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.cors_allowed_origins.split(',') if origin.strip()]


settings = Settings()
