from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    # M-Pesa Daraja (use https://api.safaricom.co.ke in production)
    mpesa_base_url: str = Field("https://sandbox.safaricom.co.ke", alias="MPESA_BASE_URL")
    mpesa_consumer_key: str = Field("", alias="MPESA_CONSUMER_KEY")
    mpesa_consumer_secret: str = Field("", alias="MPESA_CONSUMER_SECRET")
    mpesa_shortcode: str = Field("", alias="MPESA_SHORTCODE")
    mpesa_passkey: str = Field("", alias="MPESA_PASSKEY")
    mpesa_callback_url: str = Field("", alias="MPESA_CALLBACK_URL")
    mpesa_callback_token: Optional[str] = Field(None, alias="MPESA_CALLBACK_TOKEN")
    mpesa_transaction_type: str = Field("CustomerPayBillOnline", alias="MPESA_TRANSACTION_TYPE")
    mpesa_timeout_seconds: float = Field(12.0, alias="MPESA_TIMEOUT_SECONDS")
    mpesa_token_safety_margin_seconds: int = Field(60, alias="MPESA_TOKEN_SAFETY_MARGIN_SECONDS")

    phone_country_code: str = Field("254", alias="PHONE_COUNTRY_CODE")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
