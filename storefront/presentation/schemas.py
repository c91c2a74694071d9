from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from datetime import datetime
from typing import List, Optional

from storefront.domain.models import DiscountType, OrderStatus, PaymentStatus


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OrderItemResponse(CamelModel):
    id: str
    product_id: Optional[str] = None
    product_name: str
    product_image: Optional[str] = None
    price: float
    quantity: int


class ShippingAddressResponse(CamelModel):
    name: str
    line1: str
    line2: Optional[str] = None
    city: str
    state: Optional[str] = None
    postal_code: str
    country: str


class OrderResponse(CamelModel):
    id: str
    order_number: str
    email: str
    status: OrderStatus
    payment_status: PaymentStatus
    payment_reference: Optional[str] = None
    subtotal: float
    discount: float
    shipping_cost: float
    total: float
    profit: float
    coupon_code: Optional[str] = None
    shipping_address: ShippingAddressResponse
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    supplier_order_id: Optional[str] = None
    supplier_order_url: Optional[str] = None
    admin_notes: Optional[str] = None
    items: List[OrderItemResponse]
    created_at: datetime
    updated_at: datetime
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, order):
        return cls(
            id=order.id,
            order_number=order.order_number,
            email=order.email,
            status=order.status,
            payment_status=order.payment_status,
            payment_reference=order.payment_reference,
            subtotal=order.subtotal,
            discount=order.discount,
            shipping_cost=order.shipping_cost,
            total=order.total,
            profit=order.profit,
            coupon_code=order.coupon_code,
            shipping_address=ShippingAddressResponse(**order.shipping.model_dump()),
            tracking_number=order.tracking_number,
            tracking_url=order.tracking_url,
            supplier_order_id=order.supplier_order_id,
            supplier_order_url=order.supplier_order_url,
            admin_notes=order.admin_notes,
            items=[
                OrderItemResponse(
                    id=item.id,
                    product_id=item.product_id,
                    product_name=item.product_name,
                    product_image=item.product_image,
                    price=item.price,
                    quantity=item.quantity
                )
                for item in order.items
            ],
            created_at=order.created_at,
            updated_at=order.updated_at,
            shipped_at=order.shipped_at,
            delivered_at=order.delivered_at
        )


class UpdateOrderRequest(CamelModel):
    status: Optional[str] = None
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    supplier_order_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("supplierOrderId", "aliexpressOrderId", "supplier_order_id")
    )
    supplier_order_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("supplierOrderUrl", "aliexpressOrderUrl", "supplier_order_url")
    )
    admin_notes: Optional[str] = None


class ValidateCouponRequest(CamelModel):
    code: Optional[str] = None
    order_total: Optional[float] = None


class CouponSummary(CamelModel):
    id: str
    code: str
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: float


class CouponValidationResponse(CamelModel):
    coupon: CouponSummary
    discount: float
    final_total: float

    @classmethod
    def from_result(cls, result):
        coupon = result.coupon
        return cls(
            coupon=CouponSummary(
                id=coupon.id,
                code=coupon.code,
                description=coupon.description,
                discount_type=coupon.discount_type,
                discount_value=coupon.discount_value
            ),
            discount=result.discount,
            final_total=result.final_total
        )


class InventoryReportResponse(CamelModel):
    total_products: int
    in_stock: int
    low_stock: int
    out_of_stock: int
    total_value: float


class WebhookAck(BaseModel):
    received: bool


class AbandonedCartSweepResponse(CamelModel):
    success: bool
    emails_sent: int
    reminders_sent: int
    followups_sent: int
    failures: int
    timestamp: datetime


class LowStockSweepResponse(CamelModel):
    success: bool
    low_stock_products: int
    out_of_stock: int
    alerts_sent: int
    timestamp: datetime


class ErrorResponse(BaseModel):
    detail: dict
