"""Tests for stock classification, floor-clamped decrements, the low-stock sweep and the report."""

import asyncio
from datetime import timedelta

import pytest

from conftest import NOW, fixed_clock, make_product
from storefront.application.inventory import (
    InventoryReportUseCase, SweepLowStockUseCase, classify, decrement,
)
from storefront.domain.models import NotificationKind, StockLevel

OPERATORS = ["ops@example.com", "owner@example.com"]


class TestClassify:
    @pytest.mark.parametrize("stock,level", [
        (0, StockLevel.OUT_OF_STOCK),
        (1, StockLevel.LOW),
        (10, StockLevel.LOW),
        (11, StockLevel.HEALTHY),
        (None, StockLevel.HEALTHY),
    ])
    def test_levels_around_threshold(self, stock, level):
        assert classify(make_product(stock_quantity=stock)) == level

    def test_custom_threshold(self):
        assert classify(make_product(stock_quantity=15), threshold=20) == StockLevel.LOW


class TestDecrement:
    async def _stock(self, uow, product_id):
        async with uow() as tx:
            product = await tx.products.get_by_id(product_id)
        return product.stock_quantity

    async def test_subtracts_quantity(self, seed, uow):
        product = await seed.product(stock_quantity=20)
        async with uow() as tx:
            assert await decrement(tx, product.id, 3)
            await tx.commit()
        assert await self._stock(uow, product.id) == 17

    async def test_clamps_at_zero(self, seed, uow):
        product = await seed.product(stock_quantity=4)
        async with uow() as tx:
            await decrement(tx, product.id, 9)
            await tx.commit()
        assert await self._stock(uow, product.id) == 0

    async def test_unlimited_stock_is_untouched(self, seed, uow):
        product = await seed.product(stock_quantity=None)
        async with uow() as tx:
            assert await decrement(tx, product.id, 5) is False
            await tx.commit()
        assert await self._stock(uow, product.id) is None

    async def test_concurrent_decrements_never_go_negative(self, seed, uow):
        initial = 6
        product = await seed.product(stock_quantity=initial)

        async def take(quantity):
            async with uow() as tx:
                await decrement(tx, product.id, quantity)
                await tx.commit()

        # S + k units requested across concurrent orders
        await asyncio.gather(*(take(2) for _ in range(5)))

        assert await self._stock(uow, product.id) == 0

    async def test_concurrent_decrements_do_not_lose_updates(self, seed, uow):
        product = await seed.product(stock_quantity=100)

        async def take():
            async with uow() as tx:
                await decrement(tx, product.id, 1)
                await tx.commit()

        await asyncio.gather(*(take() for _ in range(8)))

        assert await self._stock(uow, product.id) == 92


class TestSweepLowStock:
    def _sweep(self, uow, notifications, **kwargs):
        return SweepLowStockUseCase(uow, notifications, OPERATORS, clock=fixed_clock(), **kwargs)

    async def test_one_digest_per_operator_bundling_all_products(self, seed, uow, notifications):
        await seed.product(name="Soap", stock_quantity=3)
        await seed.product(name="Candle", stock_quantity=0)
        await seed.product(name="Balm", stock_quantity=40)
        await seed.product(name="Gift card", stock_quantity=None)

        result = await self._sweep(uow, notifications)()

        assert result.low_stock == 1
        assert result.out_of_stock == 1
        assert result.alerts_sent == 2
        digests = notifications.of_kind(NotificationKind.LOW_STOCK_DIGEST)
        assert sorted(d["recipient"] for d in digests) == sorted(OPERATORS)
        names = {p["name"] for p in digests[0]["payload"]["products"]}
        assert names == {"Soap", "Candle"}
        assert digests[0]["payload"]["subject"] == "Low Inventory Alert - 2 Products Need Attention"

    async def test_nothing_low_sends_nothing(self, seed, uow, notifications):
        await seed.product(stock_quantity=100)
        result = await self._sweep(uow, notifications)()
        assert result.alerts_sent == 0
        assert notifications.sent == []

    async def test_realerts_every_tick_without_cooldown(self, seed, uow, notifications):
        await seed.product(stock_quantity=2)
        sweep = self._sweep(uow, notifications)

        await sweep()
        await sweep()

        assert len(notifications.of_kind(NotificationKind.LOW_STOCK_DIGEST)) == 4

    async def test_cooldown_suppresses_recent_alerts(self, seed, uow, notifications):
        await seed.product(name="Recent", stock_quantity=2, low_stock_alerted_at=NOW - timedelta(minutes=10))
        await seed.product(name="Stale", stock_quantity=2, low_stock_alerted_at=NOW - timedelta(hours=2))

        result = await self._sweep(uow, notifications, cooldown_minutes=60)()

        assert result.alerted_products == 1
        products = notifications.sent[0]["payload"]["products"]
        assert [p["name"] for p in products] == ["Stale"]

    async def test_operator_send_failure_is_swallowed(self, seed, uow, notifications):
        await seed.product(stock_quantity=1)
        notifications.configure(should_succeed=False)

        result = await self._sweep(uow, notifications)()

        assert result.alerts_sent == 0
        assert result.low_stock == 1


class TestInventoryReport:
    async def test_totals(self, seed, uow):
        await seed.product(stock_quantity=20, price=10.0)
        await seed.product(stock_quantity=5, price=2.0)
        await seed.product(stock_quantity=0, price=99.0)
        await seed.product(stock_quantity=None, price=7.0)

        report = await InventoryReportUseCase(uow)()

        assert report.total_products == 4
        assert report.in_stock == 2
        assert report.low_stock == 1
        assert report.out_of_stock == 1
        assert report.total_value == 210.0
