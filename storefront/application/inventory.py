import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional
from pydantic import BaseModel

from storefront.domain.models import NotificationKind, Product, StockLevel
from storefront.application.interfaces import NotificationsService
from storefront.application.notify import deliver


logger = logging.getLogger(__name__)

DEFAULT_LOW_STOCK_THRESHOLD = 10


def classify(product: Product, threshold: int = DEFAULT_LOW_STOCK_THRESHOLD) -> StockLevel:
    """0: OUT_OF_STOCK, 1..threshold: LOW, больше или без учета остатков: HEALTHY"""
    stock = product.stock_quantity
    if stock is None:
        return StockLevel.HEALTHY
    if stock <= 0:
        return StockLevel.OUT_OF_STOCK
    if stock <= threshold:
        return StockLevel.LOW
    return StockLevel.HEALTHY


async def decrement(uow, product_id: str, quantity: int) -> bool:
    """Списание остатка с полом в ноль, атомарно на уровне базы"""
    if quantity <= 0:
        return False
    updated = await uow.products.decrement_stock(product_id, quantity)
    if updated:
        logger.info(f"Списано {quantity} шт. товара {product_id}")
    else:
        logger.info(f"Товар {product_id} не найден или без учета остатков, списание пропущено")
    return updated


class LowStockItem(BaseModel):
    id: str
    name: str
    stock: int
    level: StockLevel
    threshold: int
    price: float


class LowStockSweepResult(BaseModel):
    low_stock: int
    out_of_stock: int
    alerted_products: int
    alerts_sent: int
    items: List[LowStockItem]


class SweepLowStockUseCase:
    def __init__(
        self,
        unit_of_work,
        notifications: NotificationsService,
        operator_emails: List[str],
        threshold: int = DEFAULT_LOW_STOCK_THRESHOLD,
        cooldown_minutes: int = 0,
        notification_timeout: float = 5.0,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._uow = unit_of_work
        self._notifications = notifications
        self._operator_emails = operator_emails
        self._threshold = threshold
        self._cooldown = timedelta(minutes=cooldown_minutes)
        self._timeout = notification_timeout
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def __call__(self) -> LowStockSweepResult:
        now = self._clock()

        async with self._uow() as uow:
            products = await uow.products.list_all()

        flagged = []
        for product in products:
            level = classify(product, self._threshold)
            if level != StockLevel.HEALTHY:
                flagged.append((product, level))

        items = [
            LowStockItem(
                id=product.id,
                name=product.name,
                stock=product.stock_quantity or 0,
                level=level,
                threshold=self._threshold,
                price=product.price
            )
            for product, level in flagged
        ]
        result = LowStockSweepResult(
            low_stock=sum(1 for item in items if item.level == StockLevel.LOW),
            out_of_stock=sum(1 for item in items if item.level == StockLevel.OUT_OF_STOCK),
            alerted_products=0,
            alerts_sent=0,
            items=items
        )

        # Подавление повторов в пределах cooldown (0: алерт на каждом тике)
        to_alert = [item for (product, _), item in zip(flagged, items) if not self._in_cooldown(product, now)]
        if not to_alert:
            logger.info("Нет товаров с низким остатком для оповещения")
            return result

        if not self._operator_emails:
            logger.warning("Не заданы адреса операторов, оповещение о низком остатке не отправлено")
            return result

        payload = {
            "subject": self._subject(len(to_alert)),
            "threshold": self._threshold,
            "products": [item.model_dump(mode="json") for item in to_alert],
        }
        digest_key = f"low_stock_{now.strftime('%Y%m%d%H%M')}"

        # Один дайджест на получателя, а не на товар
        sent = 0
        for recipient in dict.fromkeys(self._operator_emails):
            if await self._send(recipient, payload, digest_key):
                sent += 1

        if sent:
            async with self._uow() as uow:
                await uow.products.mark_alerted([item.id for item in to_alert], now)
                await uow.commit()

        result.alerted_products = len(to_alert)
        result.alerts_sent = sent
        logger.info(f"Оповещение о низком остатке: {len(to_alert)} товаров, отправлено {sent}")
        return result

    def _in_cooldown(self, product: Product, now: datetime) -> bool:
        if not self._cooldown or product.low_stock_alerted_at is None:
            return False
        return now - product.low_stock_alerted_at < self._cooldown

    @staticmethod
    def _subject(count: int) -> str:
        suffix = "s" if count > 1 else ""
        return f"Low Inventory Alert - {count} Product{suffix} Need Attention"

    async def _send(self, recipient: str, payload: dict, digest_key: str) -> bool:
        return await deliver(
            self._notifications,
            recipient,
            NotificationKind.LOW_STOCK_DIGEST,
            payload,
            f"{digest_key}_{recipient}",
            timeout=self._timeout
        )


class InventoryReport(BaseModel):
    total_products: int
    in_stock: int
    low_stock: int
    out_of_stock: int
    total_value: float


class InventoryReportUseCase:
    def __init__(self, unit_of_work, threshold: int = DEFAULT_LOW_STOCK_THRESHOLD):
        self._uow = unit_of_work
        self._threshold = threshold

    async def __call__(self) -> InventoryReport:
        async with self._uow() as uow:
            products = await uow.products.list_all()

        levels = [classify(product, self._threshold) for product in products]
        total_value = sum((product.stock_quantity or 0) * product.price for product in products)
        return InventoryReport(
            total_products=len(products),
            in_stock=levels.count(StockLevel.HEALTHY),
            low_stock=levels.count(StockLevel.LOW),
            out_of_stock=levels.count(StockLevel.OUT_OF_STOCK),
            total_value=round(total_value, 2)
        )
