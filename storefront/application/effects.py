import logging
from typing import Iterable

from storefront.application.coupons import record_redemption
from storefront.application.interfaces import NotificationsService
from storefront.application import inventory
from storefront.application.notify import deliver
from storefront.domain.lifecycle import (
    DecrementStock, Effect, RedeemCoupon, SendNotification, StampDelivered, StampShipped,
)

logger = logging.getLogger(__name__)


async def apply_ledger_effects(uow, effects: Iterable[Effect]) -> None:
    """Купон и склад: внутри транзакции вызывающего"""
    for effect in effects:
        if isinstance(effect, RedeemCoupon):
            await record_redemption(uow, effect.code)
        elif isinstance(effect, DecrementStock):
            await inventory.decrement(uow, effect.product_id, effect.quantity)


def stamp_values(effects: Iterable[Effect]) -> dict:
    values = {}
    for effect in effects:
        if isinstance(effect, StampShipped):
            values["shipped_at"] = effect.at
        elif isinstance(effect, StampDelivered):
            values["delivered_at"] = effect.at
    return values


async def dispatch_notifications(
    notifications: NotificationsService,
    effects: Iterable[Effect],
    timeout: float = 5.0,
) -> int:
    """Вызывается после commit: сбой отправки не откатывает заказ"""
    sent = 0
    for effect in effects:
        if isinstance(effect, SendNotification):
            delivered = await deliver(
                notifications,
                effect.recipient,
                effect.template,
                effect.payload,
                effect.idempotency_key,
                timeout=timeout
            )
            if delivered:
                sent += 1
    return sent
