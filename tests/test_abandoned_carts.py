"""Tests for the two-stage abandoned cart recovery sweep."""

import asyncio
from datetime import timedelta

from conftest import NOW, fixed_clock
from storefront.application.abandoned_carts import SweepAbandonedCartsUseCase
from storefront.domain.models import NotificationKind
from storefront.infrastructure.http_clients import UnconfiguredNotificationsClient, build_notifications_client


def _sweep(uow, notifications):
    return SweepAbandonedCartsUseCase(
        uow,
        notifications,
        "https://shop.example.com/",
        discount_code="COMEBACK10",
        discount_percent=10,
        notification_timeout=1.0,
        clock=fixed_clock(),
    )


async def _reload(uow, cart):
    async with uow() as tx:
        return await tx.carts.get_by_session_id(cart.session_id)


class TestFirstReminderBand:
    async def test_two_hour_old_cart_gets_reminder_and_flag(self, seed, uow, notifications):
        cart = await seed.cart(last_updated=NOW - timedelta(hours=2))

        result = await _sweep(uow, notifications)()

        assert result.reminders_sent == 1
        sent = notifications.of_kind(NotificationKind.CART_RECOVERY)
        assert [m["recipient"] for m in sent] == ["shopper@example.com"]
        assert "discount_code" not in sent[0]["payload"]
        assert sent[0]["payload"]["recovery_url"] == f"https://shop.example.com/cart?session={cart.session_id}"
        assert (await _reload(uow, cart)).recovery_email_sent is True

    async def test_flagged_cart_is_excluded_from_next_sweep(self, seed, uow, notifications):
        await seed.cart(last_updated=NOW - timedelta(hours=2))
        sweep = _sweep(uow, notifications)

        await sweep()
        second = await sweep()

        assert second.reminders_sent == 0
        assert len(notifications.of_kind(NotificationKind.CART_RECOVERY)) == 1

    async def test_fresh_cart_is_not_touched(self, seed, uow, notifications):
        await seed.cart(last_updated=NOW - timedelta(minutes=30))
        result = await _sweep(uow, notifications)()
        assert result.emails_sent == 0

    async def test_cart_without_email_is_never_eligible(self, seed, uow, notifications):
        await seed.cart(customer_email=None)
        await seed.cart(customer_email="")
        result = await _sweep(uow, notifications)()
        assert result.emails_sent == 0
        assert notifications.sent == []

    async def test_band_lower_bound_is_exclusive_at_one_hour(self, seed, uow, notifications):
        await seed.cart(last_updated=NOW - timedelta(hours=1))
        result = await _sweep(uow, notifications)()
        assert result.reminders_sent == 0

    async def test_overlapping_sweeps_send_one_reminder(self, seed, uow, notifications):
        await seed.cart(last_updated=NOW - timedelta(hours=3))
        sweep_a = _sweep(uow, notifications)
        sweep_b = _sweep(uow, notifications)

        await asyncio.gather(sweep_a(), sweep_b())

        assert len(notifications.of_kind(NotificationKind.CART_RECOVERY)) == 1


class TestFollowUpBand:
    async def test_followup_carries_discount(self, seed, uow, notifications):
        cart = await seed.cart(last_updated=NOW - timedelta(hours=30), recovery_email_sent=True, total=80.0)

        result = await _sweep(uow, notifications)()

        assert result.followups_sent == 1
        payload = notifications.of_kind(NotificationKind.CART_RECOVERY_FOLLOWUP)[0]["payload"]
        assert payload["discount_code"] == "COMEBACK10"
        assert payload["discount_amount"] == 8.0
        assert payload["recovery_url"].endswith("&coupon=COMEBACK10")
        assert (await _reload(uow, cart)).followup_email_sent is True

    async def test_followup_is_sent_once(self, seed, uow, notifications):
        await seed.cart(last_updated=NOW - timedelta(hours=30), recovery_email_sent=True)
        sweep = _sweep(uow, notifications)

        await sweep()
        await sweep()

        assert len(notifications.of_kind(NotificationKind.CART_RECOVERY_FOLLOWUP)) == 1

    async def test_cart_without_first_reminder_gets_no_followup(self, seed, uow, notifications):
        await seed.cart(last_updated=NOW - timedelta(hours=30), recovery_email_sent=False)
        result = await _sweep(uow, notifications)()
        assert result.emails_sent == 0

    async def test_cart_older_than_window_is_ignored(self, seed, uow, notifications):
        await seed.cart(last_updated=NOW - timedelta(hours=49), recovery_email_sent=True)
        result = await _sweep(uow, notifications)()
        assert result.emails_sent == 0


class FlakyNotifications:
    """Fails for one recipient, records the rest."""

    def __init__(self, failing_recipient):
        self.failing_recipient = failing_recipient
        self.sent = []

    async def send(self, recipient, template, payload, idempotency_key=None):
        if recipient == self.failing_recipient:
            raise ConnectionError("provider down")
        self.sent.append(recipient)
        return True


class TestFailureIsolation:
    async def test_one_failure_does_not_abort_other_carts(self, seed, uow):
        bad = await seed.cart(customer_email="bad@example.com", last_updated=NOW - timedelta(hours=2))
        await seed.cart(customer_email="good@example.com", last_updated=NOW - timedelta(hours=3))
        notifications = FlakyNotifications("bad@example.com")

        result = await _sweep(uow, notifications)()

        assert result.reminders_sent == 1
        assert result.failures == 1
        assert notifications.sent == ["good@example.com"]
        # the claim is released so a later tick retries the failed cart
        assert (await _reload(uow, bad)).recovery_email_sent is False


class TestWithoutProvider:
    async def test_unconfigured_provider_leaves_cart_for_retry(self, seed, uow):
        cart = await seed.cart(last_updated=NOW - timedelta(hours=2))
        notifications = build_notifications_client("", "")

        result = await _sweep(uow, notifications)()

        assert isinstance(notifications, UnconfiguredNotificationsClient)
        assert result.reminders_sent == 0
        assert result.failures == 1
        assert (await _reload(uow, cart)).recovery_email_sent is False
