from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    environment: str = "development"

    # Redis
    redis_url: str = "redis://localhost:6379/0"

    # Resend (email)
    resend_api_key: str = "re_placeholder"
    resend_from_email: str = "alerts@flightpricemonitor.com"
    feature_email_notifications: bool = True

    # Flight search provider
    flight_search_api_url: str = "http://localhost:8080/v1/flight-offers"
    flight_search_api_key: str = "placeholder-api-key"
    flight_search_timeout_seconds: float = Field(default=30.0, gt=0)

    # Price monitoring
    price_monitor_cron: str = "0 */6 * * *"
    price_monitor_timezone: str = "America/New_York"
    price_monitor_autostart: bool = True
    price_monitor_batch_size: int = Field(default=50, ge=1)
    price_monitor_max_concurrent: int = Field(default=5, ge=1)
    price_monitor_retry_attempts: int = Field(default=3, ge=1)
    price_monitor_retry_delay_seconds: float = Field(default=5.0, ge=0)
    price_monitor_cooldown_hours: float = Field(default=24.0, gt=0)

    # Admin
    admin_api_token: str = "change-this-admin-token"

    # Frontend
    frontend_url: str = "http://localhost:5173"

    # CORS
    cors_origins: str = "http://localhost:5173"

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",")]

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"


settings = Settings()
