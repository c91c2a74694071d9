import uuid
from typing import Optional, List
from datetime import datetime, timezone
from sqlalchemy import select, insert, update, delete, case, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.domain.models import (
    Cart, CartItem, Coupon, Customer, DiscountType, Order, OrderItem, OrderStatus,
    PaymentStatus, Product, ShippingAddress,
)
from storefront.infrastructure.db_schema import (
    carts_tbl, coupons_tbl, customers_tbl, order_items_tbl, orders_tbl,
    processed_events_tbl, products_tbl,
)
from storefront.application.interfaces import (
    CartRepository, CouponRepository, CustomerRepository, OrderRepository,
    ProcessedEventRepository, ProductRepository,
)

CART_FLAGS = {
    "recovery_email_sent": carts_tbl.c.recovery_email_sent,
    "followup_email_sent": carts_tbl.c.followup_email_sent,
}


class SQLAlchemyCustomerRepository(CustomerRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_email(self, email: str) -> Optional[Customer]:
        result = await self._session.execute(
            select(customers_tbl).where(customers_tbl.c.email == email)
        )
        row = result.fetchone()
        return self._to_domain(row) if row else None

    async def create(self, customer: Customer) -> None:
        await self._session.execute(
            insert(customers_tbl).values(
                id=customer.id,
                email=customer.email,
                name=customer.name,
                created_at=customer.created_at
            )
        )

    def _to_domain(self, row) -> Customer:
        return Customer(id=row.id, email=row.email, name=row.name, created_at=row.created_at)


class SQLAlchemyOrderRepository(OrderRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, order_id: str) -> Optional[Order]:
        result = await self._session.execute(
            select(orders_tbl).where(orders_tbl.c.id == order_id)
        )
        row = result.fetchone()
        return await self._to_domain(row) if row else None

    async def get_by_payment_reference(self, reference: str) -> Optional[Order]:
        result = await self._session.execute(
            select(orders_tbl).where(orders_tbl.c.payment_reference == reference)
        )
        row = result.fetchone()
        return await self._to_domain(row) if row else None

    async def create(self, order: Order) -> None:
        stmt = insert(orders_tbl).values(
            id=order.id,
            order_number=order.order_number,
            customer_id=order.customer_id,
            email=order.email,
            status=order.status,
            payment_status=order.payment_status,
            payment_reference=order.payment_reference,
            subtotal=order.subtotal,
            discount=order.discount,
            shipping_cost=order.shipping_cost,
            total=order.total,
            coupon_code=order.coupon_code,
            shipping_name=order.shipping.name,
            shipping_line1=order.shipping.line1,
            shipping_line2=order.shipping.line2,
            shipping_city=order.shipping.city,
            shipping_state=order.shipping.state,
            shipping_postal_code=order.shipping.postal_code,
            shipping_country=order.shipping.country,
            admin_notes=order.admin_notes,
            created_at=order.created_at,
            updated_at=order.updated_at
        )
        await self._session.execute(stmt)

        if order.items:
            await self._session.execute(
                insert(order_items_tbl),
                [
                    {
                        "id": item.id,
                        "order_id": order.id,
                        "product_id": item.product_id,
                        "product_name": item.product_name,
                        "product_image": item.product_image,
                        "price": item.price,
                        "base_price": item.base_price,
                        "quantity": item.quantity,
                    }
                    for item in order.items
                ]
            )

    async def update_if_status(self, order_id: str, expected: OrderStatus, values: dict) -> bool:
        stmt = (
            update(orders_tbl)
            .where(orders_tbl.c.id == order_id, orders_tbl.c.status == expected)
            .values(**values, updated_at=datetime.now(timezone.utc))
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def _load_items(self, order_id: str) -> List[OrderItem]:
        result = await self._session.execute(
            select(order_items_tbl).where(order_items_tbl.c.order_id == order_id)
        )
        return [
            OrderItem(
                id=row.id,
                order_id=row.order_id,
                product_id=row.product_id,
                product_name=row.product_name,
                product_image=row.product_image,
                price=row.price,
                base_price=row.base_price,
                quantity=row.quantity
            )
            for row in result.fetchall()
        ]

    async def _to_domain(self, row) -> Order:
        """Трансформация DB → Domain"""
        return Order(
            id=row.id,
            order_number=row.order_number,
            customer_id=row.customer_id,
            email=row.email,
            status=OrderStatus(row.status),
            payment_status=PaymentStatus(row.payment_status),
            payment_reference=row.payment_reference,
            subtotal=row.subtotal,
            discount=row.discount,
            shipping_cost=row.shipping_cost,
            total=row.total,
            coupon_code=row.coupon_code,
            shipping=ShippingAddress(
                name=row.shipping_name,
                line1=row.shipping_line1,
                line2=row.shipping_line2,
                city=row.shipping_city,
                state=row.shipping_state,
                postal_code=row.shipping_postal_code,
                country=row.shipping_country
            ),
            tracking_number=row.tracking_number,
            tracking_url=row.tracking_url,
            supplier_order_id=row.supplier_order_id,
            supplier_order_url=row.supplier_order_url,
            admin_notes=row.admin_notes,
            items=await self._load_items(row.id),
            created_at=row.created_at,
            updated_at=row.updated_at,
            shipped_at=row.shipped_at,
            delivered_at=row.delivered_at
        )


class SQLAlchemyCouponRepository(CouponRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_code(self, code: str) -> Optional[Coupon]:
        result = await self._session.execute(
            select(coupons_tbl).where(coupons_tbl.c.code == code)
        )
        row = result.fetchone()
        return self._to_domain(row) if row else None

    async def create(self, coupon: Coupon) -> None:
        await self._session.execute(
            insert(coupons_tbl).values(
                id=coupon.id,
                code=coupon.code,
                description=coupon.description,
                discount_type=coupon.discount_type,
                discount_value=coupon.discount_value,
                max_uses=coupon.max_uses,
                current_uses=coupon.current_uses,
                min_order_amount=coupon.min_order_amount,
                max_discount_amount=coupon.max_discount_amount,
                start_date=coupon.start_date,
                end_date=coupon.end_date,
                is_active=coupon.is_active
            )
        )

    async def increment_uses(self, code: str) -> bool:
        # Атомарно в одном UPDATE, лимит проверяет сама база
        stmt = (
            update(coupons_tbl)
            .where(
                coupons_tbl.c.code == code,
                or_(
                    coupons_tbl.c.max_uses.is_(None),
                    coupons_tbl.c.current_uses < coupons_tbl.c.max_uses
                )
            )
            .values(current_uses=coupons_tbl.c.current_uses + 1)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    def _to_domain(self, row) -> Coupon:
        return Coupon(
            id=row.id,
            code=row.code,
            description=row.description,
            discount_type=DiscountType(row.discount_type),
            discount_value=row.discount_value,
            max_uses=row.max_uses,
            current_uses=row.current_uses,
            min_order_amount=row.min_order_amount,
            max_discount_amount=row.max_discount_amount,
            start_date=row.start_date,
            end_date=row.end_date,
            is_active=row.is_active
        )


class SQLAlchemyProductRepository(ProductRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, product_id: str) -> Optional[Product]:
        result = await self._session.execute(
            select(products_tbl).where(products_tbl.c.id == product_id)
        )
        row = result.fetchone()
        return self._to_domain(row) if row else None

    async def list_all(self) -> List[Product]:
        result = await self._session.execute(
            select(products_tbl).order_by(products_tbl.c.name.asc())
        )
        return [self._to_domain(row) for row in result.fetchall()]

    async def create(self, product: Product) -> None:
        now = datetime.now(timezone.utc)
        await self._session.execute(
            insert(products_tbl).values(
                id=product.id,
                name=product.name,
                slug=product.slug,
                price=product.price,
                base_price=product.base_price,
                stock_quantity=product.stock_quantity,
                low_stock_alerted_at=product.low_stock_alerted_at,
                created_at=now,
                updated_at=now
            )
        )

    async def decrement_stock(self, product_id: str, quantity: int) -> bool:
        # Вычитание с полом в ноль одним UPDATE; NULL: неограниченный остаток
        stmt = (
            update(products_tbl)
            .where(
                products_tbl.c.id == product_id,
                products_tbl.c.stock_quantity.is_not(None)
            )
            .values(
                stock_quantity=case(
                    (products_tbl.c.stock_quantity > quantity, products_tbl.c.stock_quantity - quantity),
                    else_=0
                ),
                updated_at=datetime.now(timezone.utc)
            )
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def mark_alerted(self, product_ids: List[str], at: datetime) -> None:
        if not product_ids:
            return
        await self._session.execute(
            update(products_tbl)
            .where(products_tbl.c.id.in_(product_ids))
            .values(low_stock_alerted_at=at)
        )

    def _to_domain(self, row) -> Product:
        return Product(
            id=row.id,
            name=row.name,
            slug=row.slug,
            price=row.price,
            base_price=row.base_price,
            stock_quantity=row.stock_quantity,
            low_stock_alerted_at=row.low_stock_alerted_at
        )


class SQLAlchemyCartRepository(CartRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_session_id(self, session_id: str) -> Optional[Cart]:
        result = await self._session.execute(
            select(carts_tbl).where(carts_tbl.c.session_id == session_id)
        )
        row = result.fetchone()
        return self._to_domain(row) if row else None

    async def save(self, cart: Cart) -> None:
        values = dict(
            customer_email=cart.customer_email,
            customer_name=cart.customer_name,
            items=[item.model_dump() for item in cart.items],
            total=cart.total,
            last_updated=cart.last_updated,
            recovery_email_sent=cart.recovery_email_sent,
            followup_email_sent=cart.followup_email_sent
        )
        result = await self._session.execute(
            update(carts_tbl).where(carts_tbl.c.session_id == cart.session_id).values(**values)
        )
        if result.rowcount == 0:
            await self._session.execute(
                insert(carts_tbl).values(id=cart.id or str(uuid.uuid4()), session_id=cart.session_id, **values)
            )

    async def delete_by_session_id(self, session_id: str) -> bool:
        result = await self._session.execute(
            delete(carts_tbl).where(carts_tbl.c.session_id == session_id)
        )
        return result.rowcount > 0

    async def find_stale(
        self,
        updated_from: datetime,
        updated_before: datetime,
        recovery_email_sent: bool,
        followup_email_sent: Optional[bool] = None,
    ) -> List[Cart]:
        conditions = [
            carts_tbl.c.last_updated >= updated_from,
            carts_tbl.c.last_updated < updated_before,
            carts_tbl.c.recovery_email_sent == recovery_email_sent,
            carts_tbl.c.customer_email.is_not(None),
            carts_tbl.c.customer_email != "",
        ]
        if followup_email_sent is not None:
            conditions.append(carts_tbl.c.followup_email_sent == followup_email_sent)

        result = await self._session.execute(
            select(carts_tbl)
            .where(and_(*conditions))
            .order_by(carts_tbl.c.last_updated.asc())
        )
        return [self._to_domain(row) for row in result.fetchall()]

    async def claim_flag(self, cart_id: str, flag: str) -> bool:
        column = CART_FLAGS[flag]
        result = await self._session.execute(
            update(carts_tbl)
            .where(carts_tbl.c.id == cart_id, column.is_(False))
            .values({column: True})
        )
        return result.rowcount == 1

    async def release_flag(self, cart_id: str, flag: str) -> None:
        column = CART_FLAGS[flag]
        await self._session.execute(
            update(carts_tbl).where(carts_tbl.c.id == cart_id).values({column: False})
        )

    def _to_domain(self, row) -> Cart:
        return Cart(
            id=row.id,
            session_id=row.session_id,
            customer_email=row.customer_email,
            customer_name=row.customer_name,
            items=[CartItem(**item) for item in (row.items or [])],
            total=row.total,
            last_updated=row.last_updated,
            recovery_email_sent=row.recovery_email_sent,
            followup_email_sent=row.followup_email_sent
        )


class SQLAlchemyProcessedEventRepository(ProcessedEventRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def is_processed(self, idempotency_key: str) -> bool:
        result = await self._session.execute(
            select(processed_events_tbl.c.id)
            .where(processed_events_tbl.c.idempotency_key == idempotency_key)
        )
        return result.fetchone() is not None

    async def record(self, idempotency_key: str, event_type: str, order_id: Optional[str]) -> None:
        await self._session.execute(
            insert(processed_events_tbl).values(
                id=str(uuid.uuid4()),
                idempotency_key=idempotency_key,
                event_type=event_type,
                order_id=order_id,
                processed_at=datetime.now(timezone.utc)
            )
        )
