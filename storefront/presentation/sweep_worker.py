import asyncio
import logging

from storefront.database import AsyncSessionLocal
from storefront.infrastructure.unit_of_work import UnitOfWork
from storefront.infrastructure.http_clients import build_notifications_client
from storefront.application.abandoned_carts import SweepAbandonedCartsUseCase
from storefront.application.inventory import SweepLowStockUseCase
from storefront.config import settings

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def build_sweeps(uow: UnitOfWork, notifications) -> list:
    return [
        SweepAbandonedCartsUseCase(
            uow,
            notifications,
            settings.STORE_URL,
            discount_code=settings.RECOVERY_DISCOUNT_CODE,
            discount_percent=settings.RECOVERY_DISCOUNT_PERCENT,
            notification_timeout=settings.NOTIFICATION_TIMEOUT_SECONDS
        ),
        SweepLowStockUseCase(
            uow,
            notifications,
            settings.OPERATOR_EMAILS,
            threshold=settings.LOW_STOCK_THRESHOLD,
            cooldown_minutes=settings.LOW_STOCK_ALERT_COOLDOWN_MINUTES,
            notification_timeout=settings.NOTIFICATION_TIMEOUT_SECONDS
        ),
    ]


async def run_sweeps_once(sweeps: list) -> None:
    for sweep in sweeps:
        try:
            result = await sweep()
            logger.info(f"{type(sweep).__name__}: {result.model_dump(exclude={'items'})}")
        except Exception as e:
            logger.error(f"Ошибка в {type(sweep).__name__}: {e}", exc_info=True)


async def sweep_worker(interval: float = settings.SWEEP_INTERVAL_SECONDS):
    """Периодический запуск обходов вместо внешнего планировщика. Только один экземпляр."""
    logger.info(f"Sweep worker запущен, интервал {interval}s")
    notifications = build_notifications_client(settings.NOTIFICATIONS_BASE_URL, settings.NOTIFICATIONS_API_TOKEN)
    sweeps = build_sweeps(UnitOfWork(AsyncSessionLocal), notifications)

    while True:
        await run_sweeps_once(sweeps)
        await asyncio.sleep(interval)


async def main():
    await sweep_worker()


if __name__ == "__main__":
    asyncio.run(main())
