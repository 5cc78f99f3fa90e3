from functools import lru_cache
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL

_ENV_CANDIDATES = (
    Path(__file__).resolve().parent.parent.parent / ".env",
    Path(__file__).resolve().parent.parent / ".env",
    Path.cwd() / ".env",
)

for env_path in _ENV_CANDIDATES:
    if env_path.is_file():
        load_dotenv(env_path, override=False)
        break


class Settings(BaseSettings):
    """Bot configuration sourced from environment variables."""

    bot_token: str | None = Field(default=None, alias="BOT_TOKEN")
    db_host: str = "localhost"
    db_port: int = 5432
    db_user: str = "postgre"
    db_password: str = "root"
    db_name: str = "db_admin"
    database_url: str | None = None
    concurrent_updates: bool = False
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=None, populate_by_name=True)

    @field_validator("log_level", mode="before")
    @classmethod
    def normalise_log_level(cls, value: object) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("Invalid log_level.")
        return value.strip().upper()

    @model_validator(mode="after")
    def populate_from_env(self) -> "Settings":
        # Older deployments exported the credential as TELEGRAM_BOT.
        if not self.bot_token:
            self.bot_token = os.getenv("TELEGRAM_BOT")
        return self

    @property
    def sqlalchemy_url(self) -> str:
        if self.database_url:
            return self.database_url
        url = URL.create(
            "postgresql+psycopg",
            username=self.db_user,
            password=self.db_password,
            host=self.db_host,
            port=self.db_port,
            database=self.db_name,
        )
        return url.render_as_string(hide_password=False)


@lru_cache
def get_settings() -> Settings:
    """Return cached settings to avoid repeated environment parsing."""
    return Settings()
