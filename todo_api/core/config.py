from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_env: str = Field(default="development", alias="APP_ENV")
    database_url: str = Field(default="sqlite:///./todo_dev.db", alias="DATABASE_URL")

    jwt_secret: str = Field(alias="JWT_SECRET", min_length=32)
    jwt_algo: str = Field(default="HS256", alias="JWT_ALGO")
    access_min: int = Field(default=15, alias="ACCESS_TOKEN_TTL_MIN", ge=1)
    refresh_days: int = Field(default=7, alias="REFRESH_TOKEN_TTL_DAYS", ge=1)

    smtp_host: str = Field(default="localhost", alias="SMTP_HOST")
    smtp_port: int = Field(default=587, alias="SMTP_PORT")
    smtp_username: str | None = Field(default=None, alias="SMTP_USERNAME")
    smtp_password: str | None = Field(default=None, alias="SMTP_PASSWORD")
    mail_from: str = Field(default="no-reply@localhost", alias="SMTP_FROM")
    mail_from_name: str = Field(default="Todo App", alias="SMTP_FROM_NAME")
    smtp_timeout_seconds: float = Field(default=20, alias="SMTP_TIMEOUT_SECONDS", gt=0)

    password_reset_url_base: str = Field(
        default="http://localhost:5173", alias="PASSWORD_RESET_URL_BASE"
    )
    password_reset_ttl_min: int = Field(default=30, alias="PASSWORD_RESET_TTL_MIN", ge=1)

    rate_limit_per_second: float = Field(default=20, alias="RATE_LIMIT_PER_SECOND", gt=0)
    rate_limit_burst: int = Field(default=40, alias="RATE_LIMIT_BURST", ge=1)
    trust_proxy_headers: bool = Field(default=False, alias="TRUST_PROXY_HEADERS")

    refresh_cookie_name: str = Field(default="todo_refresh", alias="REFRESH_COOKIE_NAME")
    refresh_cookie_secure: bool | None = Field(default=None, alias="REFRESH_COOKIE_SECURE")

    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        alias="ALLOWED_ORIGINS",
    )

    @field_validator("password_reset_url_base")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @model_validator(mode="after")
    def default_cookie_security(self) -> "Settings":
        if self.refresh_cookie_secure is None:
            self.refresh_cookie_secure = self.app_env == "production"
        return self

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    @property
    def refresh_max_age(self) -> int:
        return self.refresh_days * 24 * 60 * 60


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore
