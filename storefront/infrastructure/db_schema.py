from datetime import timezone
from sqlalchemy import (
    Table, Column, String, Integer, Float, Boolean, Text, Enum, DateTime, JSON, MetaData,
    ForeignKey, TypeDecorator,
)
from sqlalchemy.sql import func

from storefront.domain.models import DiscountType, OrderStatus, PaymentStatus

metadata = MetaData()


class UTCDateTime(TypeDecorator):
    """DateTime, который всегда возвращает aware-время в UTC (SQLite теряет tzinfo)"""
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
            if dialect.name == "sqlite":
                value = value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


customers_tbl = Table(
    "customers",
    metadata,
    Column("id", String, primary_key=True),
    Column("email", String, unique=True, nullable=False, index=True),
    Column("name", String, nullable=True),
    Column("created_at", UTCDateTime, server_default=func.now()),
)


orders_tbl = Table(
    "orders",
    metadata,
    Column("id", String, primary_key=True),
    Column("order_number", String, unique=True, nullable=False),
    Column("customer_id", String, ForeignKey("customers.id"), nullable=True),
    Column("email", String, nullable=False),
    Column("status", Enum(OrderStatus), default=OrderStatus.PENDING, nullable=False),
    Column("payment_status", Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False),
    Column("payment_reference", String, unique=True, nullable=True, index=True),
    Column("subtotal", Float, nullable=False),
    Column("discount", Float, nullable=False, default=0),
    Column("shipping_cost", Float, nullable=False, default=0),
    Column("total", Float, nullable=False),
    Column("coupon_code", String, nullable=True),
    Column("shipping_name", String, nullable=False, default=""),
    Column("shipping_line1", String, nullable=False, default=""),
    Column("shipping_line2", String, nullable=True),
    Column("shipping_city", String, nullable=False, default=""),
    Column("shipping_state", String, nullable=True),
    Column("shipping_postal_code", String, nullable=False, default=""),
    Column("shipping_country", String, nullable=False, default=""),
    Column("tracking_number", String, nullable=True),
    Column("tracking_url", String, nullable=True),
    Column("supplier_order_id", String, nullable=True),
    Column("supplier_order_url", String, nullable=True),
    Column("admin_notes", Text, nullable=True),
    Column("created_at", UTCDateTime, server_default=func.now()),
    Column("updated_at", UTCDateTime, server_default=func.now(), onupdate=func.now()),
    Column("shipped_at", UTCDateTime, nullable=True),
    Column("delivered_at", UTCDateTime, nullable=True),
)


order_items_tbl = Table(
    "order_items",
    metadata,
    Column("id", String, primary_key=True),
    Column("order_id", String, ForeignKey("orders.id"), nullable=False, index=True),
    Column("product_id", String, nullable=True),
    Column("product_name", String, nullable=False),
    Column("product_image", String, nullable=True),
    Column("price", Float, nullable=False),
    Column("base_price", Float, nullable=False, default=0),
    Column("quantity", Integer, nullable=False),
)


coupons_tbl = Table(
    "coupons",
    metadata,
    Column("id", String, primary_key=True),
    Column("code", String, unique=True, nullable=False, index=True),
    Column("description", String, nullable=True),
    Column("discount_type", Enum(DiscountType), nullable=False),
    Column("discount_value", Float, nullable=False),
    Column("max_uses", Integer, nullable=True),
    Column("current_uses", Integer, nullable=False, default=0),
    Column("min_order_amount", Float, nullable=True),
    Column("max_discount_amount", Float, nullable=True),
    Column("start_date", UTCDateTime, nullable=True),
    Column("end_date", UTCDateTime, nullable=True),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", UTCDateTime, server_default=func.now()),
)


products_tbl = Table(
    "products",
    metadata,
    Column("id", String, primary_key=True),
    Column("name", String, nullable=False),
    Column("slug", String, unique=True, nullable=True),
    Column("price", Float, nullable=False),
    Column("base_price", Float, nullable=False, default=0),
    Column("stock_quantity", Integer, nullable=True),
    Column("low_stock_alerted_at", UTCDateTime, nullable=True),
    Column("created_at", UTCDateTime, server_default=func.now()),
    Column("updated_at", UTCDateTime, server_default=func.now(), onupdate=func.now()),
)


carts_tbl = Table(
    "carts",
    metadata,
    Column("id", String, primary_key=True),
    Column("session_id", String, unique=True, nullable=False, index=True),
    Column("customer_email", String, nullable=True),
    Column("customer_name", String, nullable=True),
    Column("items", JSON, nullable=False),
    Column("total", Float, nullable=False, default=0),
    Column("last_updated", UTCDateTime, nullable=False, index=True),
    Column("recovery_email_sent", Boolean, nullable=False, default=False),
    Column("followup_email_sent", Boolean, nullable=False, default=False),
)


processed_events_tbl = Table(
    "processed_webhook_events",
    metadata,
    Column("id", String, primary_key=True),
    Column("idempotency_key", String, unique=True, nullable=False),
    Column("event_type", String, nullable=False),
    Column("order_id", String, nullable=True),
    Column("processed_at", UTCDateTime, server_default=func.now()),
)
