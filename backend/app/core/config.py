from functools import lru_cache
from urllib.parse import quote_plus

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Stockroom"
    environment: str = "development"
    api_v1_prefix: str = "/api/v1"
    log_level: str = "INFO"

    secret_key: str = "change-this-secret-key"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24
    refresh_token_expire_minutes: int = 60 * 24 * 7

    database_url: str = ""
    db_host: str = Field(default="localhost", validation_alias=AliasChoices("DB_HOST", "PGHOST"))
    db_port: int = Field(default=5432, validation_alias=AliasChoices("DB_PORT", "PGPORT"))
    db_name: str = Field(default="inventory_management", validation_alias=AliasChoices("DB_NAME", "PGDATABASE"))
    db_user: str = Field(default="inventory_user", validation_alias=AliasChoices("DB_USER", "PGUSER"))
    db_password: str = Field(default="inventory_pass", validation_alias=AliasChoices("DB_PASSWORD", "PGPASSWORD"))
    db_sslmode: str = Field(default="", validation_alias=AliasChoices("DB_SSLMODE", "PGSSLMODE"))
    db_pool_size: int = 20
    db_max_overflow: int = 10

    cors_origins: str = "http://localhost:3000"
    seed_demo_data: bool = True

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def sqlalchemy_database_url(self) -> str:
        if self.database_url:
            url = self.database_url
            # Heroku/Railway style DSNs
            if url.startswith("postgres://"):
                url = "postgresql+psycopg2://" + url[len("postgres://"):]
            elif url.startswith("postgresql://"):
                url = "postgresql+psycopg2://" + url[len("postgresql://"):]
            return url

        return (
            f"postgresql+psycopg2://{quote_plus(self.db_user)}:{quote_plus(self.db_password)}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


@lru_cache
def get_settings() -> Settings:
    return Settings()
