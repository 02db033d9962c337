from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # API Settings
    PROJECT_NAME: str = "Group Settlement API"
    API_V1_STR: str = "/api/v1"
    PROJECT_VERSION: str = "0.1.0"
    DESCRIPTION: str = "Shared expense ledger and group debt settlement engine"

    # MongoDB
    MONGODB_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "groupsettle"
    # multi-document transactions need a replica set
    MONGODB_TRANSACTIONS: bool = True

    # External collaborators
    PAYMENT_RAIL_URL: str = "http://localhost:9000"
    PAYMENT_RAIL_API_KEY: str = ""
    IDENTITY_RESOLVER_URL: str = "http://localhost:9001"
    NOTIFICATION_WEBHOOK_URL: str = ""  # empty = log events only
    HTTP_TIMEOUT_SECONDS: float = 10.0

    # Settlement execution
    TRANSFER_TIMEOUT_SECONDS: float = 30.0
    TRANSFER_MAX_ATTEMPTS: int = 3
    TRANSFER_BACKOFF_SECONDS: float = 0.5
    TRANSFER_CONCURRENCY: int = 4

    # Notifications
    NOTIFICATION_TIMEOUT_SECONDS: float = 5.0

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env"
    )

settings = Settings()
