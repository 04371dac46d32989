from pydantic_settings import BaseSettings
from typing import Optional
import secrets


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "AssetDesk IPAM"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    SECRET_KEY: str = secrets.token_urlsafe(64)
    ALLOWED_ORIGINS: str = "*"
    HTTPS_ONLY: bool = False

    # Database
    DATABASE_URL: str = "postgresql+asyncpg://assetdesk:assetdesk@db:5432/assetdesk"

    # Redis (scheduler locks only; jobs still run when Redis is down)
    REDIS_URL: str = "redis://redis:6379/0"

    # JWT
    JWT_SECRET_KEY: str = secrets.token_urlsafe(64)
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # Security
    BCRYPT_ROUNDS: int = 12
    MAX_LOGIN_ATTEMPTS: int = 5
    ACCOUNT_LOCK_MINUTES: int = 30
    RATE_LIMIT_LOGIN: str = "10/minute"

    # Address pool
    MAX_SEGMENT_HOSTS: int = 4094  # /20
    RESERVATION_SWEEP_MINUTES: int = 15  # 0 = reservations never expire

    # Liveness probing
    PING_TIMEOUT_SECONDS: int = 2
    TCP_PROBE_TIMEOUT_SECONDS: float = 2.0
    ARP_LOOKUP_TIMEOUT_SECONDS: float = 5.0
    PING_CONCURRENCY: int = 20
    CONFLICT_WINDOW_MINUTES: int = 10
    PING_HISTORY_RETENTION_DAYS: int = 30
    PING_SWEEP_INTERVAL_SECONDS: int = 0  # 0 = no periodic sweep of in-use addresses

    # Network scan
    SCAN_CONCURRENCY: int = 50
    SCAN_PING_TIMEOUT_SECONDS: int = 1

    # Notifications (Telegram bot, optional)
    TELEGRAM_BOT_TOKEN: Optional[str] = None
    TELEGRAM_CHAT_ID: Optional[str] = None
    TELEGRAM_API_BASE: str = "https://api.telegram.org"
    NOTIFY_QUEUE_SIZE: int = 500
    NOTIFY_MAX_RETRIES: int = 3
    NOTIFY_BACKOFF_SECONDS: float = 2.0

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
