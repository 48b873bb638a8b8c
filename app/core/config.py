from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "local"
    APP_NAME: str = "Smart Parking API"
    # Comma-separated origins for CORS. If empty, uses localhost defaults.
    CORS_ORIGINS: str = ""
    LOG_LEVEL: str = "INFO"

    SECRET_KEY: str = "dev-only-change-me"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    DATABASE_URL: str = "sqlite:///./parking.db"

    @field_validator("DATABASE_URL", mode="after")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """Render and others give postgres://; SQLAlchemy expects postgresql+psycopg2://."""
        if v and v.startswith("postgres://"):
            return "postgresql+psycopg2://" + v[11:]
        return v
    REDIS_URL: str = "redis://localhost:6379/0"

    # Fixed fleet created by the seed: A1..A6 on floor 1
    SLOT_COUNT: int = 6
    SLOT_PREFIX: str = "A"
    SLOT_FLOOR: int = 1

    # Bookings
    QR_CODE_PREFIX: str = "PARKING-"
    MIN_DURATION_HOURS: int = 1
    MAX_DURATION_HOURS: int = 24
    EXPIRY_SWEEP_SECONDS: float = 60.0

    # Bootstrap admin (reset + slot maintenance)
    ADMIN_EMAIL: str = "admin@parking.local"
    ADMIN_PASSWORD: str = "admin12345"


settings = Settings()
