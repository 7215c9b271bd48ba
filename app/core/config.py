from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(15, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    environment: Literal["local", "development", "production"] = Field("local", alias="ENVIRONMENT")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    # arq worker broker
    redis_url: str = Field("redis://localhost:6379/0", alias="REDIS_URL")

    # Billing defaults used when a school has no payment config row
    default_grace_period_days: int = Field(7, alias="DEFAULT_GRACE_PERIOD_DAYS")
    default_currency: str = Field("USD", alias="DEFAULT_CURRENCY")
    invoice_number_prefix: str = Field("INV", alias="INVOICE_NUMBER_PREFIX")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"
        populate_by_name = True


settings = Settings()
