from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(case_sensitive=False, extra="ignore")

    app_name: str = "FlightDesk"
    environment: str = "local"
    log_level: str = "INFO"

    # supplier
    supplier_base_url: str = "https://sandbox-api.seeru.travel/v1/flights"
    supplier_api_key: str | None = None
    supplier_enabled: bool = True
    supplier_source: str = "TOURTASTIC"
    search_timeout_seconds: float = 30.0
    results_timeout_seconds: float = 15.0
    booking_timeout_seconds: float = 10.0
    issue_timeout_seconds: float = 30.0

    # search polling
    poll_interval_seconds: float = Field(2.0, ge=0)
    poll_max_attempts: int = Field(15, ge=1)
    stall_poll_limit: int = Field(3, ge=1)
    stall_min_progress: float = Field(50.0, ge=0, le=100)
    search_initiate_retries: int = Field(2, ge=0)
    segment_retry_limit: int = Field(1, ge=0)
    max_passengers: int = 9

    # display pricing policy, not a fare rule
    child_fare_ratio: float = Field(0.75, ge=0)
    infant_fare_ratio: float = Field(0.10, ge=0)

    # bookings
    booking_id_prefix: str = "FB"
    booking_id_start: int = 1001
    lock_timeout_seconds: float = 5.0
    conflict_retries: int = Field(3, ge=1)

    # ticket issuance monitor
    monitor_enabled: bool = True
    monitor_interval_seconds: float = Field(30.0, gt=0)
    monitor_batch_size: int = Field(10, ge=1)
    monitor_max_issue_attempts: int = Field(48, ge=1)

    # payment gateway
    payment_gateway_url: str = "https://checkout.ecash-pay.com"
    terminal_key: str = ""
    merchant_key: str = ""
    merchant_secret: str = ""
    payment_currency: str = "SYP"
    server_public_url: str = ""

    # notifications
    notifier: str = "log"
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    smtp_from: str | None = None

    @property
    def supplier_configured(self) -> bool:
        return bool(self.supplier_api_key and self.supplier_base_url)

    @property
    def payment_configured(self) -> bool:
        return bool(self.terminal_key and self.merchant_key and self.merchant_secret)


@lru_cache()
def get_settings() -> Settings:
    load_dotenv(".env")
    return Settings()
