from pydantic import Field
from pydantic_settings import BaseSettings
from typing import List

class Settings(BaseSettings):
    # API settings
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 3000
    LOG_LEVEL: str = "INFO"

    # CORS settings
    CORS_ORIGINS: List[str] = Field(default=["*"])

    # Google Calendar settings
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""
    GOOGLE_REDIRECT_URI: str = "http://localhost:3000/oauth2/callback"
    GOOGLE_CALENDAR_ID: str = "primary"

    # Public address Google pushes watch notifications to
    PUBLIC_BASE_URL: str = "http://localhost:3000"

    # Housecall Pro settings
    HCP_API_BASE: str = "https://api.housecallpro.com"
    HCP_API_KEY: str = ""
    HCP_CUSTOMER_ID: str = ""
    HCP_CUSTOMER_NAME: str = ""
    HCP_ASSIGNEE_EMAIL: str = ""
    HCP_REQUEST_TIMEOUT_SECONDS: float = 20.0
    HCP_MIN_CALL_INTERVAL_MS: int = 2000
    HCP_MAX_ATTEMPTS: int = 3
    HCP_BACKOFF_BASE_MS: int = 1000
    HCP_DIRECTORY_MAX_PAGES: int = 5
    HCP_PAGE_SIZE: int = 100

    # Sync engine settings
    DEFAULT_EVENT_DURATION_MINUTES: int = 60
    EVENT_TIMEZONE: str = "UTC"
    DEDUP_WINDOW_SIZE: int = 1000
    WATCH_RENEWAL_INTERVAL_MINUTES: int = 60
    WATCH_RENEWAL_THRESHOLD_HOURS: int = 24

    # Redis settings for sync state (file storage is used when REDIS_HOST is empty)
    REDIS_HOST: str = ""
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ""
    STORAGE_PATH: str = "./storage"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"

# Create settings instance
settings = Settings()
