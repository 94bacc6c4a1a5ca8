from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables or a .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False)

    app_name: str = "Promo Engine API"
    app_version: str = "0.1.0"
    environment: str = "local"

    database_url: str = "sqlite+aiosqlite:///./promo_engine.db"
    database_echo: bool = False
    database_pool_size: int = 10
    secret_key: str = "dev-secret-key"
    jwt_algorithm: str = "HS256"
    access_token_exp_minutes: int = 30
    log_json: bool = False
    log_level: str = "INFO"

    cors_origins: list[str] = ["http://localhost:3000"]
    cors_allow_credentials: bool = True
    cors_allow_methods: list[str] = ["*"]
    cors_allow_headers: list[str] = ["*"]

    # Promo code validation bounds (business-tunable).
    promo_code_min_length: int = 3
    promo_code_max_length: int = 15
    promo_percentage_min: int = 2
    promo_percentage_max: int = 20
    promo_fixed_amount_min: int = 2000
    promo_fixed_amount_max: int = 100000

    # Catalog markup applied when an owner's promo code is activated.
    markup_coverage_1_week: float = 0.5
    markup_coverage_1_month: float = 0.75
    markup_coverage_3_months: float = 0.9
    markup_coverage_1_year: float = 1.0
    markup_fixed_reference_amount: int = 100000
    markup_max_rate: float = 0.5

    # Price the owner pays to activate a promo code.
    activation_base_price: int = 20000
    activation_fee_per_duration_unit: int = 5000
    activation_min_price: int = 2000
    activation_duration_factor_1_week: float = 0.4
    activation_duration_factor_1_month: float = 1.0
    activation_duration_factor_3_months: float = 3.5
    activation_duration_factor_1_year: float = 15.0
    activation_percentage_exponent: float = 2.5
    activation_fixed_amount_exponent: float = 1.2

    # Bulk pricing writes.
    catalog_chunk_size: int = 500
    storage_timeout_seconds: float = 10.0
    storage_max_retries: int = 3
    storage_retry_base_delay_seconds: float = 0.2
    advisory_lock_pool_size: int = 5
    leader_retry_seconds: float = 15.0

    expiry_scheduler_enabled: bool = True
    expiry_poll_interval_seconds: int = 300
    reconcile_on_read: bool = False
    reconcile_min_interval_seconds: int = 60


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
