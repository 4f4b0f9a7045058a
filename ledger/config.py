from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "School Fee Ledger API"
    app_version: str = "0.1.0"
    frontend_url: str = "http://localhost:3000"
    database_url: str = "sqlite:///./local.db"
    redis_url: str = "redis://localhost:6379/0"
    log_level: str = "INFO"
    log_json: bool = False

    payment_lock_ttl_seconds: int = 15
    student_balance_cache_ttl_seconds: int = 300
    fiscal_year_offset: int = 57

    gateway_transaction_ttl_minutes: int = 30
    gateway_amount_tolerance: Decimal = Decimal("0.01")
    overdue_sweep_interval_seconds: int = 3600
    gateway_expiry_sweep_interval_seconds: int = 300

    esewa_secret_key: str = "8gBm/:&EnhH.1/q"
    esewa_product_code: str = "EPAYTEST"
    esewa_payment_url: str = "https://rc-epay.esewa.com.np/api/epay/main/v2/form"
    esewa_success_url: str = "http://localhost:8000/api/v1/gateway/esewa/callback"
    esewa_failure_url: str = "http://localhost:8000/api/v1/gateway/esewa/failure"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


settings = Settings()
