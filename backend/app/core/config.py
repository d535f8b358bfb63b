from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # MongoDB Configuration
    MONGODB_URI: str = "mongodb://localhost:27017"
    MONGODB_DB_NAME: str = "foodhub_db"

    # JWT Configuration (tokens are issued by the auth service)
    JWT_SECRET_KEY: str = "change-me"
    JWT_ALGORITHM: str = "HS256"

    # Cart pricing
    PACKING_CHARGE_SERVICE_TYPES: List[str] = ["Takeaway", "Delivery"]
    OFFER_TIMEZONE: str = "Asia/Kolkata"
    MAX_ITEM_QUANTITY: int = 50
    MAX_SELECTION_QUANTITY: int = 10

    # Cart sharing
    CART_CODE_PREFIX: str = "CART"
    CART_CODE_MAX_ATTEMPTS: int = 100

    # Optimistic concurrency on cart writes
    CART_WRITE_MAX_RETRIES: int = 5

    # Application Settings
    BACKEND_CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:8000"]
    API_V1_PREFIX: str = "/api"
    PROJECT_NAME: str = "Foodhub"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )


# Global settings instance
settings = Settings()
