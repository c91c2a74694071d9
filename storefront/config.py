import os
from dotenv import load_dotenv

load_dotenv()


def _csv(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


class Settings:
    # Database
    POSTGRES_CONNECTION_STRING: str = os.getenv(
        "POSTGRES_CONNECTION_STRING", "sqlite+aiosqlite:///./storefront.db"
    )

    # Payments
    STRIPE_WEBHOOK_SECRET: str = os.getenv("STRIPE_WEBHOOK_SECRET", "")
    WEBHOOK_TOLERANCE_SECONDS: int = int(os.getenv("WEBHOOK_TOLERANCE_SECONDS", "300"))

    # Cron / admin
    CRON_SECRET: str = os.getenv("CRON_SECRET", "")
    ADMIN_JWT_SECRET: str = os.getenv("ADMIN_JWT_SECRET", "")
    ADMIN_JWT_ALGORITHM: str = os.getenv("ADMIN_JWT_ALGORITHM", "HS256")
    ADMIN_TOKEN_EXPIRE_DAYS: int = int(os.getenv("ADMIN_TOKEN_EXPIRE_DAYS", "7"))

    # Notifications
    NOTIFICATIONS_BASE_URL: str = os.getenv("NOTIFICATIONS_BASE_URL", "")
    NOTIFICATIONS_API_TOKEN: str = os.getenv("NOTIFICATIONS_API_TOKEN", "")
    NOTIFICATION_TIMEOUT_SECONDS: float = float(os.getenv("NOTIFICATION_TIMEOUT_SECONDS", "5.0"))
    OPERATOR_EMAILS: list[str] = _csv(os.getenv("OPERATOR_EMAILS", ""))
    STORE_URL: str = os.getenv("STORE_URL", "http://localhost:3000")

    # Inventory
    LOW_STOCK_THRESHOLD: int = int(os.getenv("LOW_STOCK_THRESHOLD", "10"))
    LOW_STOCK_ALERT_COOLDOWN_MINUTES: int = int(os.getenv("LOW_STOCK_ALERT_COOLDOWN_MINUTES", "0"))

    # Cart recovery
    RECOVERY_DISCOUNT_CODE: str = os.getenv("RECOVERY_DISCOUNT_CODE", "COMEBACK10")
    RECOVERY_DISCOUNT_PERCENT: float = float(os.getenv("RECOVERY_DISCOUNT_PERCENT", "10"))

    # Sweep worker
    SWEEP_INTERVAL_SECONDS: int = int(os.getenv("SWEEP_INTERVAL_SECONDS", "3600"))

    @property
    def DATABASE_URL(self) -> str:
        """Асинхронный URL для приложения"""
        return self.POSTGRES_CONNECTION_STRING.replace("postgres://", "postgresql+asyncpg://")

    @property
    def SYNC_DATABASE_URL(self) -> str:
        """Синхронный URL для Alembic"""
        return (
            self.POSTGRES_CONNECTION_STRING
            .replace("postgres://", "postgresql://")
            .replace("sqlite+aiosqlite://", "sqlite://")
        )


settings = Settings()
