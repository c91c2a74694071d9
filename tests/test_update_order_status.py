"""Tests for admin-issued order updates and their transition-gated side effects."""

from datetime import timedelta

import pytest

from conftest import NOW, fixed_clock
from storefront.application.update_order_status import UpdateOrderDTO, UpdateOrderStatusUseCase
from storefront.domain.exceptions import ConflictError, OrderNotFoundError, ValidationError
from storefront.domain.models import NotificationKind, OrderStatus, PaymentStatus


@pytest.fixture
def update(uow, notifications):
    return UpdateOrderStatusUseCase(uow, notifications, notification_timeout=1.0, clock=fixed_clock())


class TestValidation:
    async def test_unknown_order(self, update):
        with pytest.raises(OrderNotFoundError):
            await update("missing", UpdateOrderDTO(status="SHIPPED"))

    async def test_unknown_status_is_field_error(self, seed, update):
        order = await seed.order()
        with pytest.raises(ValidationError) as exc_info:
            await update(order.id, UpdateOrderDTO(status="TELEPORTED"))
        assert exc_info.value.field == "status"

    async def test_pending_to_delivered_is_rejected(self, seed, update, uow):
        order = await seed.order(status=OrderStatus.PENDING, payment_status=PaymentStatus.PENDING)

        with pytest.raises(ConflictError):
            await update(order.id, UpdateOrderDTO(status="DELIVERED"))

        async with uow() as tx:
            unchanged = await tx.orders.get_by_id(order.id)
        assert unchanged.status == OrderStatus.PENDING
        assert unchanged.delivered_at is None

    async def test_status_is_case_insensitive(self, seed, update):
        order = await seed.order()
        updated = await update(order.id, UpdateOrderDTO(status="processing"))
        assert updated.status == OrderStatus.PROCESSING


class TestShipping:
    async def test_first_ship_stamps_and_notifies(self, seed, update, notifications):
        order = await seed.order(status=OrderStatus.ORDERED_SUPPLIER)

        updated = await update(order.id, UpdateOrderDTO(
            status="SHIPPED", tracking_number="1Z999", tracking_url="https://track/1Z999"
        ))

        assert updated.status == OrderStatus.SHIPPED
        assert updated.shipped_at == NOW
        assert updated.tracking_number == "1Z999"
        sent = notifications.of_kind(NotificationKind.SHIPPING_UPDATE)
        assert len(sent) == 1
        assert sent[0]["payload"]["tracking_number"] == "1Z999"
        assert sent[0]["payload"]["tracking_url"] == "https://track/1Z999"

    async def test_reapplying_shipped_does_not_restamp_or_renotify(self, seed, uow, notifications):
        order = await seed.order(status=OrderStatus.PAID)
        first = UpdateOrderStatusUseCase(uow, notifications, clock=fixed_clock(NOW))
        later = UpdateOrderStatusUseCase(uow, notifications, clock=fixed_clock(NOW + timedelta(days=2)))

        await first(order.id, UpdateOrderDTO(status="SHIPPED", tracking_number="1Z999"))
        again = await later(order.id, UpdateOrderDTO(status="SHIPPED", tracking_number="1Z999"))

        assert again.shipped_at == NOW
        assert len(notifications.of_kind(NotificationKind.SHIPPING_UPDATE)) == 1

    async def test_ship_without_tracking_sends_nothing(self, seed, update, notifications):
        order = await seed.order(status=OrderStatus.PAID)

        updated = await update(order.id, UpdateOrderDTO(status="SHIPPED"))

        assert updated.shipped_at == NOW
        assert notifications.sent == []


class TestDelivery:
    async def test_delivered_at_set_once(self, seed, uow, notifications):
        order = await seed.order(status=OrderStatus.SHIPPED, shipped_at=NOW)
        first = UpdateOrderStatusUseCase(uow, notifications, clock=fixed_clock(NOW + timedelta(days=1)))
        later = UpdateOrderStatusUseCase(uow, notifications, clock=fixed_clock(NOW + timedelta(days=5)))

        await first(order.id, UpdateOrderDTO(status="DELIVERED"))
        again = await later(order.id, UpdateOrderDTO(status="DELIVERED"))

        assert again.delivered_at == NOW + timedelta(days=1)

    async def test_delivered_order_accepts_admin_notes(self, seed, update):
        order = await seed.order(status=OrderStatus.DELIVERED, shipped_at=NOW, delivered_at=NOW)
        updated = await update(order.id, UpdateOrderDTO(admin_notes="Left at front desk"))
        assert updated.admin_notes == "Left at front desk"

    async def test_delivered_order_rejects_other_changes(self, seed, update):
        order = await seed.order(status=OrderStatus.DELIVERED, shipped_at=NOW, delivered_at=NOW)
        with pytest.raises(ConflictError):
            await update(order.id, UpdateOrderDTO(tracking_number="NEW123"))

    async def test_delivered_order_cannot_be_cancelled(self, seed, update):
        order = await seed.order(status=OrderStatus.DELIVERED, delivered_at=NOW)
        with pytest.raises(ConflictError):
            await update(order.id, UpdateOrderDTO(status="CANCELLED"))


class TestFieldEdits:
    async def test_fields_update_without_status(self, seed, update):
        order = await seed.order(status=OrderStatus.PROCESSING)

        updated = await update(order.id, UpdateOrderDTO(
            supplier_order_id="AE-555", supplier_order_url="https://supplier/AE-555"
        ))

        assert updated.status == OrderStatus.PROCESSING
        assert updated.supplier_order_id == "AE-555"
        assert updated.supplier_order_url == "https://supplier/AE-555"

    async def test_refund_marks_payment_refunded(self, seed, update):
        order = await seed.order(status=OrderStatus.PAID)
        updated = await update(order.id, UpdateOrderDTO(status="REFUNDED"))
        assert updated.status == OrderStatus.REFUNDED
        assert updated.payment_status == PaymentStatus.REFUNDED


class BrokenNotifications:
    async def send(self, recipient, template, payload, idempotency_key=None):
        raise ConnectionError("provider down")


class TestNotificationFailure:
    async def test_ship_commits_even_when_provider_fails(self, seed, uow):
        order = await seed.order(status=OrderStatus.PROCESSING)
        update = UpdateOrderStatusUseCase(uow, BrokenNotifications(), notification_timeout=1.0, clock=fixed_clock())

        updated = await update(order.id, UpdateOrderDTO(status="SHIPPED", tracking_number="1Z999"))

        assert updated.status == OrderStatus.SHIPPED
        async with uow() as tx:
            stored = await tx.orders.get_by_id(order.id)
        assert stored.status == OrderStatus.SHIPPED
        assert stored.shipped_at == NOW
        assert stored.tracking_number == "1Z999"
