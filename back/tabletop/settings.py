from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


_PROJECT_ROOT = Path(__file__).resolve().parents[2]


class Settings(BaseSettings):
    """
    App configuration.

    Values come from the environment, then `config.env` / `.env` in the
    repository root or the current directory.
    """

    model_config = SettingsConfigDict(
        env_file=(
            str(_PROJECT_ROOT / "config.env"),
            str(_PROJECT_ROOT / ".env"),
            "config.env",
            ".env",
        ),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    db_host: str = Field(default="localhost", validation_alias="DB_HOST")
    db_port: int = Field(default=5432, validation_alias="DB_PORT")
    db_user: str = Field(default="tabletop", validation_alias="DB_USER")
    db_password: str = Field(default="tabletop", validation_alias="DB_PASSWORD")
    db_name: str = Field(default="tabletop", validation_alias="DB_NAME")
    # Full URL override, e.g. "sqlite://" for tests
    database_url_override: str | None = Field(default=None, validation_alias="DATABASE_URL")

    secret_key: str = Field(default="CHANGE_THIS_IN_PRODUCTION", validation_alias="SECRET_KEY")
    algorithm: str = Field(default="HS256", validation_alias="ALGORITHM")
    access_token_expire_minutes: int = Field(default=720, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES")
    environment: str = Field(default="development", validation_alias="ENVIRONMENT")

    cors_origins: str = Field(
        default="http://localhost:3000",
        validation_alias="CORS_ORIGINS"
    )

    redis_url: str = Field(default="redis://localhost:6379", validation_alias="REDIS_URL")

    # Origin printed into QR codes: {public_base_url}/order/{token}
    public_base_url: str = Field(default="http://localhost:3000", validation_alias="PUBLIC_BASE_URL")
    table_token_ttl_hours: int = Field(default=24, validation_alias="TABLE_TOKEN_TTL_HOURS")
    login_path: str = Field(default="/login", validation_alias="LOGIN_PATH")

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        # psycopg driver (v3)
        return (
            f"postgresql+psycopg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )


settings = Settings()
