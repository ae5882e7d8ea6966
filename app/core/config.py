from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings

load_dotenv()


class Settings(BaseSettings):
    backend_api_url: str = Field("http://localhost:8000", alias="BACKEND_API_URL")
    request_timeout: float = Field(30.0, alias="REQUEST_TIMEOUT")  # seconds
    environment: str = Field("development", alias="ENVIRONMENT")
    secret_key: str = Field("dev-secret-change-me", alias="SECRET_KEY")
    session_cookie_name: str = Field("session", alias="SESSION_COOKIE_NAME")
    prefer_new_certificate_system: bool = Field(True, alias="PREFER_NEW_CERTIFICATE_SYSTEM")
    certificate_auto_sync: bool = Field(True, alias="CERTIFICATE_AUTO_SYNC")
    series_cache_ttl: int = Field(300, alias="SERIES_CACHE_TTL")  # seconds
    log_file: str = Field("app.log", alias="LOG_FILE")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    class Config:
        env_file = ".env"
        case_sensitive = False

    @property
    def api_base_url(self) -> str:
        base = self.backend_api_url.rstrip("/")
        if "/api/v1" in base:
            return base
        return f"{base}/api/v1"


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
