from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    PROCESSING = "PROCESSING"
    ORDERED_SUPPLIER = "ORDERED_SUPPLIER"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class DiscountType(str, Enum):
    FIXED = "FIXED"
    PERCENTAGE = "PERCENTAGE"


class StockLevel(str, Enum):
    HEALTHY = "HEALTHY"
    LOW = "LOW"
    OUT_OF_STOCK = "OUT_OF_STOCK"


class ShippingAddress(BaseModel):
    """Value Object: адрес доставки"""
    name: str = ""
    line1: str = ""
    line2: Optional[str] = None
    city: str = ""
    state: Optional[str] = None
    postal_code: str = ""
    country: str = ""


class Customer(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
    created_at: datetime


class OrderItem(BaseModel):
    """Value Object: снимок позиции на момент создания заказа"""
    id: str
    order_id: str
    product_id: Optional[str] = None
    product_name: str
    product_image: Optional[str] = None
    price: float
    base_price: float = 0.0
    quantity: int

    @property
    def line_total(self) -> float:
        return round(self.price * self.quantity, 2)


class Order(BaseModel):
    """Domain Entity: заказ"""
    id: str
    order_number: str
    customer_id: Optional[str] = None
    email: str
    status: OrderStatus
    payment_status: PaymentStatus
    payment_reference: Optional[str] = None
    subtotal: float
    discount: float = 0.0
    shipping_cost: float = 0.0
    total: float = Field(ge=0)
    coupon_code: Optional[str] = None
    shipping: ShippingAddress
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    supplier_order_id: Optional[str] = None
    supplier_order_url: Optional[str] = None
    admin_notes: Optional[str] = None
    items: list[OrderItem] = []
    created_at: datetime
    updated_at: datetime
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None

    @property
    def profit(self) -> float:
        """Выручка минус себестоимость поставщика"""
        cost = sum(item.base_price * item.quantity for item in self.items)
        return round(self.total - cost, 2)

    def is_delivered(self) -> bool:
        return self.status == OrderStatus.DELIVERED


class Coupon(BaseModel):
    id: str
    code: str
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: float = Field(ge=0)
    max_uses: Optional[int] = None
    current_uses: int = 0
    min_order_amount: Optional[float] = None
    max_discount_amount: Optional[float] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: bool = True

    def is_exhausted(self) -> bool:
        return self.max_uses is not None and self.current_uses >= self.max_uses

    def discount_for(self, order_total: float) -> float:
        """Бизнес-правило: FIXED: фиксированная сумма, PERCENTAGE: процент с ограничением"""
        if self.discount_type == DiscountType.FIXED:
            discount = self.discount_value
        else:
            discount = order_total * self.discount_value / 100
            if self.max_discount_amount is not None:
                discount = min(discount, self.max_discount_amount)
        return round(discount, 2)


class Product(BaseModel):
    """Срез товара, нужный складскому учету"""
    id: str
    name: str
    slug: Optional[str] = None
    price: float
    base_price: float = 0.0
    stock_quantity: Optional[int] = None
    low_stock_alerted_at: Optional[datetime] = None

    def is_unlimited(self) -> bool:
        return self.stock_quantity is None


class CartItem(BaseModel):
    product_id: str
    name: str
    quantity: int
    price: float
    image: Optional[str] = None


class Cart(BaseModel):
    id: str
    session_id: str
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    items: list[CartItem] = []
    total: float = 0.0
    last_updated: datetime
    recovery_email_sent: bool = False
    followup_email_sent: bool = False

    def is_recoverable(self) -> bool:
        """Бизнес-правило: без email корзину не восстанавливаем"""
        return bool(self.customer_email)


class NotificationKind(str, Enum):
    ORDER_CONFIRMATION = "order_confirmation"
    SHIPPING_UPDATE = "shipping_update"
    CART_RECOVERY = "cart_recovery"
    CART_RECOVERY_FOLLOWUP = "cart_recovery_followup"
    LOW_STOCK_DIGEST = "low_stock_digest"
