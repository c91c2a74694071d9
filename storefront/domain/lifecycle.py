"""Жизненный цикл заказа: таблица переходов и эффекты переходов.

Любая смена статуса проходит через can_transition. Переход возвращает
список эффектов, которые исполняет application-слой, поэтому побочные
действия (уведомления, отметки времени, списание остатков) проверяются
без базы данных.
"""
from datetime import datetime
from typing import Literal, Optional, Union
from pydantic import BaseModel

from storefront.domain.exceptions import InvalidTransitionError
from storefront.domain.models import NotificationKind, Order, OrderStatus


TERMINAL_STATUSES = frozenset({
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
    OrderStatus.REFUNDED,
})

_ESCAPES = {OrderStatus.CANCELLED, OrderStatus.REFUNDED}

# Вперед по основной линии можно перескакивать, назад нельзя
TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PAID, *_ESCAPES}),
    OrderStatus.PAID: frozenset({
        OrderStatus.PROCESSING, OrderStatus.ORDERED_SUPPLIER, OrderStatus.SHIPPED, *_ESCAPES
    }),
    OrderStatus.PROCESSING: frozenset({OrderStatus.ORDERED_SUPPLIER, OrderStatus.SHIPPED, *_ESCAPES}),
    OrderStatus.ORDERED_SUPPLIER: frozenset({OrderStatus.SHIPPED, *_ESCAPES}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, *_ESCAPES}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in TRANSITIONS[current]


def is_terminal(status: OrderStatus) -> bool:
    return status in TERMINAL_STATUSES


# Эффекты

class SendNotification(BaseModel):
    kind: Literal["send_notification"] = "send_notification"
    template: NotificationKind
    recipient: str
    payload: dict
    idempotency_key: str


class StampShipped(BaseModel):
    kind: Literal["stamp_shipped"] = "stamp_shipped"
    at: datetime


class StampDelivered(BaseModel):
    kind: Literal["stamp_delivered"] = "stamp_delivered"
    at: datetime


class DecrementStock(BaseModel):
    kind: Literal["decrement_stock"] = "decrement_stock"
    product_id: str
    quantity: int


class RedeemCoupon(BaseModel):
    kind: Literal["redeem_coupon"] = "redeem_coupon"
    code: str


Effect = Union[SendNotification, StampShipped, StampDelivered, DecrementStock, RedeemCoupon]


def order_payload(order: Order) -> dict:
    """Данные заказа для шаблонов уведомлений"""
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "customer_name": order.shipping.name,
        "total": order.total,
        "subtotal": order.subtotal,
        "discount": order.discount,
        "items": [
            {
                "name": item.product_name,
                "image": item.product_image,
                "price": item.price,
                "quantity": item.quantity,
            }
            for item in order.items
        ],
        "shipping_address": order.shipping.model_dump(),
    }


def creation_effects(order: Order) -> list[Effect]:
    """Эффекты подтвержденной оплаты: купон, склад, подтверждение покупателю"""
    effects: list[Effect] = []
    if order.coupon_code:
        effects.append(RedeemCoupon(code=order.coupon_code))
    for item in order.items:
        if item.product_id:
            effects.append(DecrementStock(product_id=item.product_id, quantity=item.quantity))
    effects.append(SendNotification(
        template=NotificationKind.ORDER_CONFIRMATION,
        recipient=order.email,
        payload=order_payload(order),
        idempotency_key=f"order_confirmation_{order.id}",
    ))
    return effects


def transition_effects(
    order: Order,
    target: OrderStatus,
    now: datetime,
    tracking_number: Optional[str] = None,
    tracking_url: Optional[str] = None,
) -> list[Effect]:
    """Эффекты перехода order.status -> target.

    Повторная установка текущего статуса ничего не делает. Недопустимый
    переход поднимает InvalidTransitionError.
    """
    if target == order.status:
        return []
    if not can_transition(order.status, target):
        raise InvalidTransitionError(order.status, target)

    effects: list[Effect] = []
    if target == OrderStatus.SHIPPED:
        if order.shipped_at is None:
            effects.append(StampShipped(at=now))
        if tracking_number:
            payload = order_payload(order)
            payload["tracking_number"] = tracking_number
            payload["tracking_url"] = tracking_url or order.tracking_url
            effects.append(SendNotification(
                template=NotificationKind.SHIPPING_UPDATE,
                recipient=order.email,
                payload=payload,
                idempotency_key=f"shipping_update_{order.id}",
            ))
    elif target == OrderStatus.DELIVERED and order.delivered_at is None:
        effects.append(StampDelivered(at=now))
    return effects
