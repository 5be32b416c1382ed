from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    APP_NAME: str = "Onus Health Records"
    VERSION: str = "1.0.0"
    SECRET_KEY: str = "change-me-in-production-use-strong-random-key"
    ALGORITHM: str = "HS256"
    # Idle session timeout: carried as the access token's ``exp`` claim
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7
    EMAIL_VERIFICATION_EXPIRE_HOURS: int = 24
    PASSWORD_RESET_EXPIRE_MINUTES: int = 60

    DATABASE_URL: str = "sqlite:///./onus.db"

    CORS_ORIGINS: List[str] = ["http://localhost:3000"]
    CLIENT_URL: str = "http://localhost:3000"

    # Admin accounts can only be registered with this key
    ADMIN_CREATION_KEY: Optional[str] = None

    # Document storage
    DOCUMENT_STORAGE_DIR: Optional[str] = None
    CLOUD_STORAGE_BUCKET: Optional[str] = None  # no cloud backend installed; uploads fail while set
    MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024
    ALLOWED_UPLOAD_MIMETYPES: List[str] = [
        "application/pdf",
        "image/jpeg",
        "image/png",
        "image/gif",
        "text/plain",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ]

    # Notification delivery (email service webhook)
    NOTIFICATION_WEBHOOK_URL: Optional[str] = None
    NOTIFICATION_TIMEOUT: int = 5
    NOTIFICATION_WORKERS: int = 4

    # Report AccessDenied and NotFound identically to clients
    CONCEAL_FORBIDDEN_AS_NOT_FOUND: bool = True

    SEED_DEMO_DATA: bool = False

    class Config:
        env_file = ".env"


settings = Settings()
