from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    PROJECT_NAME: str = "Lab Booking Engine"
    API_V1_STR: str = "/api"

    # Server
    PORT: int = 8000
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Security (external event webhook)
    SECRET_KEY: str = "dev_secret_key"

    # Supabase (reservation store)
    SUPABASE_URL: str = ""
    SUPABASE_KEY: str = ""

    # Lab schedules
    LAB_CATALOG_PATH: str = "data/labs.json"
    DEFAULT_TIMEZONE: str = "UTC"
    DEFAULT_SLOT_INTERVAL_MINUTES: int = 30

    # Lifecycle rules
    CANCEL_MIN_HOURS: float = 24
    MODIFY_MIN_HOURS: float = 48
    EARLY_ACCESS_MINUTES: float = 5

    # Update coordinator
    REFRESH_DELAY_SECONDS: float = 0.2
    SETTLE_DELAY_SECONDS: float = 1.0

    # Numeric status table used by the remote system ("current" = 0-5, "legacy" = 0-4)
    STATUS_CODE_SCHEME: str = "current"

    class Config:
        env_file = ".env"
        case_sensitive = True

settings = Settings()
