import logging
from datetime import datetime, timezone
from typing import Callable, Optional
from pydantic import BaseModel

from storefront.domain.lifecycle import transition_effects
from storefront.domain.models import Order, OrderStatus, PaymentStatus
from storefront.domain.exceptions import ConflictError, OrderNotFoundError, ValidationError
from storefront.application.effects import dispatch_notifications, stamp_values
from storefront.application.interfaces import NotificationsService


logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "tracking_number",
    "tracking_url",
    "supplier_order_id",
    "supplier_order_url",
    "admin_notes",
)


class UpdateOrderDTO(BaseModel):
    status: Optional[str] = None
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    supplier_order_id: Optional[str] = None
    supplier_order_url: Optional[str] = None
    admin_notes: Optional[str] = None


def parse_status(value: str) -> OrderStatus:
    try:
        return OrderStatus(value.strip().upper())
    except ValueError:
        raise ValidationError(f"Unknown order status: {value}", field="status")


class UpdateOrderStatusUseCase:
    """Изменение заказа администратором.

    Статус меняется только по таблице переходов; эффекты (отметки времени,
    письмо об отправке) срабатывают лишь при входе в новый статус.
    """

    def __init__(
        self,
        unit_of_work,
        notifications: NotificationsService,
        notification_timeout: float = 5.0,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._uow = unit_of_work
        self._notifications = notifications
        self._timeout = notification_timeout
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def __call__(self, order_id: str, dto: UpdateOrderDTO) -> Order:
        target = parse_status(dto.status) if dto.status is not None else None
        fields = {
            name: (value or None)
            for name, value in dto.model_dump(exclude_unset=True).items()
            if name in EDITABLE_FIELDS
        }

        async with self._uow() as uow:
            order = await uow.orders.get_by_id(order_id)
            if not order:
                raise OrderNotFoundError(f"Order {order_id} not found")

            if order.is_delivered():
                self._ensure_notes_only(order, fields)

            effects = []
            values = dict(fields)
            if target is not None:
                effects = transition_effects(
                    order,
                    target,
                    self._clock(),
                    tracking_number=fields.get("tracking_number"),
                    tracking_url=fields.get("tracking_url"),
                )
                if target != order.status:
                    values["status"] = target
                    if target == OrderStatus.REFUNDED:
                        values["payment_status"] = PaymentStatus.REFUNDED
                values.update(stamp_values(effects))

            if values:
                updated = await uow.orders.update_if_status(order.id, order.status, values)
                if not updated:
                    raise ConflictError("Order was modified by another request, reload and retry")
                await uow.commit()
                if "status" in values:
                    logger.info(f"Заказ {order.id}: {order.status.value} -> {target.value}")
                else:
                    logger.info(f"Заказ {order.id} обновлен: {', '.join(values)}")

            result = await uow.orders.get_by_id(order_id)

        await dispatch_notifications(self._notifications, effects, timeout=self._timeout)
        return result

    @staticmethod
    def _ensure_notes_only(order: Order, fields: dict) -> None:
        changed = [
            name for name, value in fields.items()
            if name != "admin_notes" and getattr(order, name) != value
        ]
        if changed:
            raise ConflictError(
                f"Delivered orders accept only admin notes changes (got: {', '.join(changed)})"
            )
