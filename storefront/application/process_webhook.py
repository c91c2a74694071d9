import json
import logging
from typing import Optional
from pydantic import BaseModel, ValidationError as PydanticValidationError

from storefront.domain.models import ShippingAddress
from storefront.domain.exceptions import ValidationError
from storefront.application.create_order import (
    CreateOrderFromPaymentDTO, CreateOrderFromPaymentUseCase, PaymentLineItem,
)
from storefront.infrastructure.signatures import verify_signature


logger = logging.getLogger(__name__)

PAYMENT_COMPLETED_TYPES = frozenset({"payment_completed", "checkout.session.completed"})


class WebhookEvent(BaseModel):
    id: str
    type: str
    data: dict = {}


def _object(value, field: str) -> dict:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValidationError(f"Expected an object at {field}", field=field)
    return value


def _cents(value, field: str) -> float:
    if value is None:
        return 0.0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"Expected an amount in cents at {field}", field=field)
    return round(value / 100, 2)


def _line_items(value) -> list:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError("Expected a list at data.object.line_items", field="data.object.line_items")
    return [_object(item, f"data.object.line_items.{index}") for index, item in enumerate(value)]


def to_create_order_dto(event: WebhookEvent) -> CreateOrderFromPaymentDTO:
    """Платежный объект события -> команда создания заказа. Суммы приходят в центах."""
    obj = _object(event.data.get("object"), "data.object")
    details = _object(obj.get("customer_details"), "data.object.customer_details")
    address = _object(details.get("address"), "data.object.customer_details.address")
    metadata = _object(obj.get("metadata"), "data.object.metadata")
    line_items = _line_items(obj.get("line_items"))

    email = details.get("email") or obj.get("customer_email")
    if not email:
        raise ValidationError("Payment event has no customer email", field="customer_details.email")

    subtotal = _cents(obj.get("amount_subtotal", obj.get("amount_total")), "data.object.amount_subtotal")
    total = _cents(obj.get("amount_total"), "data.object.amount_total")
    shipping_cost = _cents(
        _object(obj.get("shipping_cost"), "data.object.shipping_cost").get("amount_total"),
        "data.object.shipping_cost.amount_total"
    )
    discount = _cents(
        _object(obj.get("total_details"), "data.object.total_details").get("amount_discount"),
        "data.object.total_details.amount_discount"
    )

    return CreateOrderFromPaymentDTO(
        payment_reference=obj.get("payment_intent") or obj.get("id") or event.id,
        event_id=event.id,
        event_type=event.type,
        email=email,
        customer_name=details.get("name"),
        shipping=ShippingAddress(
            name=details.get("name") or "",
            line1=address.get("line1") or "",
            line2=address.get("line2"),
            city=address.get("city") or "",
            state=address.get("state"),
            postal_code=address.get("postal_code") or "",
            country=address.get("country") or ""
        ),
        items=[
            PaymentLineItem(
                product_id=item.get("product_id"),
                name=item.get("name") or item.get("description") or "Item",
                image=item.get("image"),
                unit_price=_cents(item.get("unit_amount"), f"data.object.line_items.{index}.unit_amount"),
                quantity=item.get("quantity") or 1
            )
            for index, item in enumerate(line_items)
        ],
        subtotal=subtotal,
        discount=discount,
        shipping_cost=shipping_cost,
        total=total,
        coupon_code=metadata.get("couponCode") or metadata.get("coupon_code"),
        cart_session_id=metadata.get("cartSessionId") or metadata.get("cart_session_id")
    )


class ProcessPaymentWebhookUseCase:
    """Вход платежных событий: подпись, дедупликация, создание заказа.

    Неподписанные и неверно подписанные события отклоняются до любых
    побочных эффектов. Типы, кроме завершения оплаты, принимаются и
    игнорируются, иначе отправитель будет повторять их бесконечно.
    """

    def __init__(
        self,
        unit_of_work,
        create_order: CreateOrderFromPaymentUseCase,
        webhook_secret: str,
        tolerance_seconds: int = 300,
    ):
        self._uow = unit_of_work
        self._create_order = create_order
        self._secret = webhook_secret
        self._tolerance = tolerance_seconds

    async def __call__(self, payload: bytes, signature: Optional[str]) -> dict:
        verify_signature(payload, signature, self._secret, self._tolerance)

        try:
            event = WebhookEvent(**json.loads(payload))
        except (ValueError, TypeError, PydanticValidationError) as e:
            raise ValidationError(f"Malformed webhook payload: {e}", field="body")

        if event.type not in PAYMENT_COMPLETED_TYPES:
            logger.info(f"Событие {event.id} типа {event.type} пропущено")
            return {"received": True}

        async with self._uow() as uow:
            if await uow.processed_events.is_processed(event.id):
                logger.info(f"Событие {event.id} уже обработано")
                return {"received": True}

        try:
            dto = to_create_order_dto(event)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid payment event: {e}", field="data.object")

        order = await self._create_order(dto)
        logger.info(f"Событие {event.id} обработано, заказ {order.order_number}")
        return {"received": True}
