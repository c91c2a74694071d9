import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from pydantic import BaseModel

from storefront.domain.models import Cart, NotificationKind
from storefront.application.interfaces import NotificationsService
from storefront.application.notify import deliver


logger = logging.getLogger(__name__)

FIRST_REMINDER_AFTER = timedelta(hours=1)
FOLLOWUP_AFTER = timedelta(hours=24)
RECOVERY_WINDOW_END = timedelta(hours=48)


class AbandonedCartSweepResult(BaseModel):
    reminders_sent: int = 0
    followups_sent: int = 0
    skipped: int = 0
    failures: int = 0

    @property
    def emails_sent(self) -> int:
        return self.reminders_sent + self.followups_sent


class SweepAbandonedCartsUseCase:
    """Два письма по брошенной корзине.

    Первое: корзинам, не менявшимся от 1 до 24 часов, без скидки.
    Второе: от 24 до 48 часов, с кодом скидки. Перед отправкой флаг
    корзины переводится false -> true одним UPDATE; письмо шлет только тот
    запуск, который перевел флаг, поэтому пересекающиеся запуски не
    дублируют письма. Если отправка не удалась, флаг возвращается, и
    корзина попадет в следующий запуск.
    """

    def __init__(
        self,
        unit_of_work,
        notifications: NotificationsService,
        store_url: str,
        discount_code: str = "COMEBACK10",
        discount_percent: float = 10.0,
        notification_timeout: float = 5.0,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._uow = unit_of_work
        self._notifications = notifications
        self._store_url = store_url.rstrip("/")
        self._discount_code = discount_code
        self._discount_percent = discount_percent
        self._timeout = notification_timeout
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def __call__(self) -> AbandonedCartSweepResult:
        now = self._clock()
        result = AbandonedCartSweepResult()

        async with self._uow() as uow:
            first_band = await uow.carts.find_stale(
                updated_from=now - FOLLOWUP_AFTER,
                updated_before=now - FIRST_REMINDER_AFTER,
                recovery_email_sent=False,
            )
        for cart in first_band:
            await self._process(
                cart, "recovery_email_sent", NotificationKind.CART_RECOVERY,
                self._reminder_payload(cart), result
            )

        async with self._uow() as uow:
            followup_band = await uow.carts.find_stale(
                updated_from=now - RECOVERY_WINDOW_END,
                updated_before=now - FOLLOWUP_AFTER,
                recovery_email_sent=True,
                followup_email_sent=False,
            )
        for cart in followup_band:
            await self._process(
                cart, "followup_email_sent", NotificationKind.CART_RECOVERY_FOLLOWUP,
                self._followup_payload(cart), result
            )

        logger.info(
            f"Брошенные корзины: напоминаний {result.reminders_sent}, "
            f"повторных {result.followups_sent}, ошибок {result.failures}"
        )
        return result

    async def _process(
        self,
        cart: Cart,
        flag: str,
        template: NotificationKind,
        payload: dict,
        result: AbandonedCartSweepResult,
    ) -> None:
        if not cart.is_recoverable() or not cart.items:
            result.skipped += 1
            return

        # Ошибка по одной корзине не прерывает обход остальных
        try:
            async with self._uow() as uow:
                claimed = await uow.carts.claim_flag(cart.id, flag)
                await uow.commit()
            if not claimed:
                logger.info(f"Корзина {cart.id} уже обработана другим запуском ({flag})")
                result.skipped += 1
                return

            delivered = await deliver(
                self._notifications,
                cart.customer_email,
                template,
                payload,
                f"{template.value}_{cart.id}",
                timeout=self._timeout
            )
            if delivered:
                if template == NotificationKind.CART_RECOVERY:
                    result.reminders_sent += 1
                else:
                    result.followups_sent += 1
                return

            async with self._uow() as uow:
                await uow.carts.release_flag(cart.id, flag)
                await uow.commit()
            result.failures += 1
        except Exception as e:
            logger.error(f"Ошибка обработки брошенной корзины {cart.id}: {e}", exc_info=True)
            result.failures += 1

    def _recovery_url(self, cart: Cart, discount_code: Optional[str] = None) -> str:
        url = f"{self._store_url}/cart?session={cart.session_id}"
        if discount_code:
            url += f"&coupon={discount_code}"
        return url

    def _reminder_payload(self, cart: Cart) -> dict:
        return {
            "customer_name": cart.customer_name,
            "cart_items": [item.model_dump() for item in cart.items],
            "cart_total": cart.total,
            "recovery_url": self._recovery_url(cart),
        }

    def _followup_payload(self, cart: Cart) -> dict:
        payload = self._reminder_payload(cart)
        payload.update({
            "discount_code": self._discount_code,
            "discount_percent": self._discount_percent,
            "discount_amount": round(cart.total * self._discount_percent / 100, 2),
            "recovery_url": self._recovery_url(cart, self._discount_code),
        })
        return payload
