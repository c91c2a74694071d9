import logging
from datetime import datetime, timezone
from typing import Callable, Optional
from pydantic import BaseModel

from storefront.domain.models import Coupon
from storefront.domain.exceptions import CouponNotFoundError, CouponRejectedError, ValidationError


logger = logging.getLogger(__name__)


def normalize_code(code: str) -> str:
    return code.strip().upper()


class CouponValidation(BaseModel):
    coupon: Coupon
    discount: float
    final_total: float


def check_redeemable(coupon: Coupon, order_total: float, now: datetime) -> None:
    """Проверки в фиксированном порядке; первая не прошедшая дает текст отказа"""
    if not coupon.is_active:
        raise CouponRejectedError("Coupon is inactive")
    if coupon.start_date and now < coupon.start_date:
        raise CouponRejectedError("Coupon not yet valid")
    if coupon.end_date and now > coupon.end_date:
        raise CouponRejectedError("Coupon has expired")
    if coupon.is_exhausted():
        raise CouponRejectedError("Coupon usage limit reached")
    if coupon.min_order_amount is not None and order_total < coupon.min_order_amount:
        raise CouponRejectedError(f"Minimum order amount of ${coupon.min_order_amount:.2f} required")


class ValidateCouponUseCase:
    """Проверка купона без побочных эффектов: current_uses не меняется"""

    def __init__(self, unit_of_work, clock: Optional[Callable[[], datetime]] = None):
        self._uow = unit_of_work
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def __call__(self, code: Optional[str], order_total: Optional[float]) -> CouponValidation:
        if not code or not code.strip():
            raise ValidationError("Coupon code required", field="code")
        if order_total is None or order_total < 0:
            raise ValidationError("Order total must be a non-negative number", field="orderTotal")

        normalized = normalize_code(code)
        async with self._uow() as uow:
            coupon = await uow.coupons.get_by_code(normalized)

        if not coupon:
            logger.info(f"Купон {normalized} не найден")
            raise CouponNotFoundError("Invalid coupon code")

        check_redeemable(coupon, order_total, self._clock())

        discount = coupon.discount_for(order_total)
        final_total = max(0.0, round(order_total - discount, 2))
        return CouponValidation(coupon=coupon, discount=discount, final_total=final_total)


async def record_redemption(uow, code: str) -> bool:
    """Атомарный +1 к current_uses внутри транзакции заказа.

    Вызывается только при создании оплаченного заказа. Неудача (купон удален
    или исчерпан) логируется и не мешает созданию заказа.
    """
    normalized = normalize_code(code)
    redeemed = await uow.coupons.increment_uses(normalized)
    if redeemed:
        logger.info(f"Использование купона {normalized} учтено")
    else:
        logger.warning(f"Купон {normalized} не найден или исчерпан, использование не учтено")
    return redeemed
