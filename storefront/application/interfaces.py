from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, List

from storefront.domain.models import Cart, Coupon, Customer, NotificationKind, Order, OrderStatus, Product


class CustomerRepository(ABC):
    @abstractmethod
    async def get_by_email(self, email: str) -> Optional[Customer]:
        pass

    @abstractmethod
    async def create(self, customer: Customer) -> None:
        pass


class OrderRepository(ABC):
    @abstractmethod
    async def get_by_id(self, order_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def get_by_payment_reference(self, reference: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def create(self, order: Order) -> None:
        pass

    @abstractmethod
    async def update_if_status(self, order_id: str, expected: OrderStatus, values: dict) -> bool:
        """UPDATE ... WHERE status = expected. False, если статус уже сменили."""
        pass


class CouponRepository(ABC):
    @abstractmethod
    async def get_by_code(self, code: str) -> Optional[Coupon]:
        pass

    @abstractmethod
    async def create(self, coupon: Coupon) -> None:
        pass

    @abstractmethod
    async def increment_uses(self, code: str) -> bool:
        pass


class ProductRepository(ABC):
    @abstractmethod
    async def get_by_id(self, product_id: str) -> Optional[Product]:
        pass

    @abstractmethod
    async def list_all(self) -> List[Product]:
        pass

    @abstractmethod
    async def create(self, product: Product) -> None:
        pass

    @abstractmethod
    async def decrement_stock(self, product_id: str, quantity: int) -> bool:
        pass

    @abstractmethod
    async def mark_alerted(self, product_ids: List[str], at: datetime) -> None:
        pass


class CartRepository(ABC):
    @abstractmethod
    async def get_by_session_id(self, session_id: str) -> Optional[Cart]:
        pass

    @abstractmethod
    async def save(self, cart: Cart) -> None:
        pass

    @abstractmethod
    async def delete_by_session_id(self, session_id: str) -> bool:
        pass

    @abstractmethod
    async def find_stale(
        self,
        updated_from: datetime,
        updated_before: datetime,
        recovery_email_sent: bool,
        followup_email_sent: Optional[bool] = None,
    ) -> List[Cart]:
        pass

    @abstractmethod
    async def claim_flag(self, cart_id: str, flag: str) -> bool:
        """false -> true для флага; True только у того, кто перевел флаг"""
        pass

    @abstractmethod
    async def release_flag(self, cart_id: str, flag: str) -> None:
        pass


class ProcessedEventRepository(ABC):
    @abstractmethod
    async def is_processed(self, idempotency_key: str) -> bool:
        pass

    @abstractmethod
    async def record(self, idempotency_key: str, event_type: str, order_id: Optional[str]) -> None:
        pass


class UnitOfWork(ABC):
    customers: CustomerRepository
    orders: OrderRepository
    coupons: CouponRepository
    products: ProductRepository
    carts: CartRepository
    processed_events: ProcessedEventRepository

    @abstractmethod
    async def commit(self):
        pass

    @abstractmethod
    async def rollback(self):
        pass


class NotificationsService(ABC):
    @abstractmethod
    async def send(
        self,
        recipient: str,
        template: NotificationKind,
        payload: dict,
        idempotency_key: Optional[str] = None,
    ) -> bool:
        pass
