import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, List, Optional
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError

from storefront.domain.lifecycle import creation_effects
from storefront.domain.models import (
    Customer, Order, OrderItem, OrderStatus, PaymentStatus, ShippingAddress,
)
from storefront.application.coupons import normalize_code
from storefront.application.effects import apply_ledger_effects, dispatch_notifications
from storefront.application.interfaces import NotificationsService


logger = logging.getLogger(__name__)


class PaymentLineItem(BaseModel):
    product_id: Optional[str] = None
    name: str
    image: Optional[str] = None
    unit_price: float = Field(ge=0)
    base_price: float = 0.0
    quantity: int = Field(gt=0)


class CreateOrderFromPaymentDTO(BaseModel):
    payment_reference: str
    event_id: Optional[str] = None
    event_type: str = "payment_completed"
    email: str
    customer_name: Optional[str] = None
    shipping: ShippingAddress
    items: List[PaymentLineItem]
    subtotal: float = Field(ge=0)
    discount: float = Field(default=0.0, ge=0)
    shipping_cost: float = Field(default=0.0, ge=0)
    total: float = Field(ge=0)
    coupon_code: Optional[str] = None
    cart_session_id: Optional[str] = None


def generate_order_number() -> str:
    return f"ORD-{uuid.uuid4().hex[:8].upper()}"


class CreateOrderFromPaymentUseCase:
    """Создание оплаченного заказа по событию платежа.

    Клиент, учет купона, заказ с позициями, списание остатков, удаление
    корзины и отметка о событии идут одной транзакцией. Повтор того же
    платежа возвращает уже созданный заказ. Подтверждение покупателю
    уходит после commit.
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

    async def __call__(self, dto: CreateOrderFromPaymentDTO) -> Order:
        logger.info(f"Создание заказа по платежу {dto.payment_reference} для {dto.email}")

        try:
            async with self._uow() as uow:
                # 1. Проверка идемпотентности
                existing = await uow.orders.get_by_payment_reference(dto.payment_reference)
                if existing:
                    logger.info(f"Платеж {dto.payment_reference} уже обработан, заказ {existing.id}")
                    return existing

                # 2. Клиент
                customer = await self._find_or_create_customer(uow, dto)

                # 3. Заказ
                base_prices = await self._base_prices(uow, dto)
                order = self._build_order(dto, customer, base_prices)
                effects = creation_effects(order)
                await uow.orders.create(order)

                # 4. Купон и склад
                await apply_ledger_effects(uow, effects)

                # 5. Корзина сконвертирована
                if dto.cart_session_id:
                    await uow.carts.delete_by_session_id(dto.cart_session_id)

                await uow.processed_events.record(
                    dto.event_id or dto.payment_reference, dto.event_type, order.id
                )
                await uow.commit()
        except IntegrityError:
            # Параллельный повтор того же события успел создать заказ
            async with self._uow() as uow:
                existing = await uow.orders.get_by_payment_reference(dto.payment_reference)
            if existing:
                logger.info(f"Платеж {dto.payment_reference} обработан параллельно, заказ {existing.id}")
                return existing
            raise

        logger.info(f"Заказ создан: {order.order_number} ({order.id})")

        # 6. Уведомление
        await dispatch_notifications(self._notifications, effects, timeout=self._timeout)
        return order

    async def _find_or_create_customer(self, uow, dto: CreateOrderFromPaymentDTO) -> Customer:
        email = dto.email.strip().lower()
        customer = await uow.customers.get_by_email(email)
        if customer:
            return customer

        customer = Customer(
            id=str(uuid.uuid4()),
            email=email,
            name=dto.customer_name or dto.shipping.name or None,
            created_at=self._clock()
        )
        await uow.customers.create(customer)
        logger.info(f"Создан клиент {customer.id} ({email})")
        return customer

    async def _base_prices(self, uow, dto: CreateOrderFromPaymentDTO) -> dict:
        """Себестоимость из каталога, если событие ее не принесло"""
        prices = {}
        for item in dto.items:
            if item.product_id and not item.base_price and item.product_id not in prices:
                product = await uow.products.get_by_id(item.product_id)
                if product:
                    prices[item.product_id] = product.base_price
        return prices

    def _build_order(self, dto: CreateOrderFromPaymentDTO, customer: Customer, base_prices: dict) -> Order:
        now = self._clock()
        order_id = str(uuid.uuid4())
        return Order(
            id=order_id,
            order_number=generate_order_number(),
            customer_id=customer.id,
            email=customer.email,
            status=OrderStatus.PAID,
            payment_status=PaymentStatus.PAID,
            payment_reference=dto.payment_reference,
            subtotal=dto.subtotal,
            discount=dto.discount,
            shipping_cost=dto.shipping_cost,
            total=dto.total,
            coupon_code=normalize_code(dto.coupon_code) if dto.coupon_code else None,
            shipping=dto.shipping,
            items=[
                OrderItem(
                    id=str(uuid.uuid4()),
                    order_id=order_id,
                    product_id=item.product_id,
                    product_name=item.name,
                    product_image=item.image,
                    price=item.unit_price,
                    base_price=item.base_price or base_prices.get(item.product_id, 0.0),
                    quantity=item.quantity
                )
                for item in dto.items
            ],
            created_at=now,
            updated_at=now
        )
