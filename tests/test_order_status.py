from datetime import timedelta

import pytest

from grocer import ErrorCode, ErrorKind, OrderStatus
from grocer.checkout import can_transition, parse_status, transition
from tests.conftest import ADDRESS, NOW, err, make_order, ok

S = OrderStatus


class TestCanTransition:
    @pytest.mark.parametrize(
        "current, target",
        [
            (S.PLACED, S.CONFIRMED),
            (S.CONFIRMED, S.PACKED),
            (S.PACKED, S.SHIPPED),
            (S.SHIPPED, S.DELIVERED),
            (S.PLACED, S.SHIPPED),
            (S.PLACED, S.CANCELLED),
            (S.SHIPPED, S.CANCELLED),
        ],
    )
    def test_allowed(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize(
        "current, target",
        [
            (S.CONFIRMED, S.PLACED),
            (S.SHIPPED, S.PACKED),
            (S.PACKED, S.PACKED),
            (S.DELIVERED, S.CANCELLED),
            (S.CANCELLED, S.PLACED),
            (S.CANCELLED, S.CANCELLED),
        ],
    )
    def test_rejected(self, current, target):
        assert not can_transition(current, target)


class TestTransition:
    def test_updates_status_and_timestamp(self):
        later = NOW + timedelta(hours=1)
        moved = ok(transition(make_order("o1"), S.CONFIRMED, later, reason="ignored"))

        assert moved.status == S.CONFIRMED
        assert moved.updated_at == later
        assert moved.placed_at == NOW
        assert moved.cancellation_reason is None

    def test_cancel_keeps_reason(self):
        cancelled = ok(transition(make_order("o1"), S.CANCELLED, NOW, "customer request"))
        assert cancelled.cancellation_reason == "customer request"

    def test_invalid(self):
        e = err(transition(make_order("o1", status=S.DELIVERED), S.SHIPPED, NOW))
        assert e.code == ErrorCode.INVALID_TRANSITION
        assert e.kind == ErrorKind.STATE
        assert e.details == {"order_id": "o1", "from": S.DELIVERED, "to": S.SHIPPED}


class TestParseStatus:
    def test_normalises(self):
        assert ok(parse_status(" Shipped ")) == S.SHIPPED

    def test_unknown(self):
        e = err(parse_status("lost"))
        assert e.code == ErrorCode.INVALID_STATUS
        assert e.kind == ErrorKind.VALIDATION


class TestUpdateStatus:
    @pytest.fixture
    async def order(self, stores):
        order = make_order("o1")
        ok(await stores.orders.insert(order))
        return order

    async def test_forward(self, shop, order, clock):
        clock.advance(minutes=5)
        updated = ok(await shop.update_order_status(order.id, "confirmed"))

        assert updated.status == S.CONFIRMED
        assert updated.updated_at == clock()
        assert ok(await shop.get_order("u1", order.id)).status == S.CONFIRMED

    async def test_forward_skip(self, shop, order):
        assert ok(await shop.update_order_status(order.id, "shipped")).status == S.SHIPPED

    async def test_backward_rejected(self, shop, order):
        ok(await shop.update_order_status(order.id, "confirmed"))

        e = err(await shop.update_order_status(order.id, "placed"))

        assert e.code == ErrorCode.INVALID_TRANSITION
        assert ok(await shop.get_order("u1", order.id)).status == S.CONFIRMED

    async def test_cancel_with_reason(self, shop, order):
        cancelled = ok(
            await shop.update_order_status(order.id, S.CANCELLED, reason="out of area")
        )

        assert cancelled.cancellation_reason == "out of area"
        e = err(await shop.update_order_status(order.id, "confirmed"))
        assert e.code == ErrorCode.INVALID_TRANSITION

    async def test_delivered_is_final(self, shop, order):
        ok(await shop.update_order_status(order.id, "delivered"))

        e = err(await shop.update_order_status(order.id, "cancelled"))

        assert e.code == ErrorCode.INVALID_TRANSITION

    async def test_unknown_status(self, shop, order):
        e = err(await shop.update_order_status(order.id, "teleported"))
        assert e.code == ErrorCode.INVALID_STATUS

    async def test_unknown_order(self, shop):
        e = err(await shop.update_order_status("missing", "confirmed"))
        assert e.code == ErrorCode.ORDER_NOT_FOUND


class TestQueries:
    async def test_foreign_order_is_not_found(self, shop, stores):
        ok(await stores.orders.insert(make_order("o1", user_id="u2")))

        e = err(await shop.get_order("u1", "o1"))

        assert e.code == ErrorCode.ORDER_NOT_FOUND
        assert e.kind == ErrorKind.NOT_FOUND

    async def test_list_newest_first(self, shop, stores):
        for day, order_id in enumerate(["o1", "o2", "o3"]):
            placed_at = NOW + timedelta(days=day)
            ok(await stores.orders.insert(make_order(order_id, placed_at=placed_at)))
        ok(await stores.orders.insert(make_order("other", user_id="u2")))

        orders = ok(await shop.list_orders("u1"))

        assert [o.id for o in orders] == ["o3", "o2", "o1"]

    async def test_list_all(self, shop, stores):
        ok(await stores.orders.insert(make_order("o1")))
        ok(await stores.orders.insert(make_order("o2", user_id="u2")))

        assert {o.id for o in ok(await shop.list_all_orders())} == {"o1", "o2"}

    async def test_duplicate_id_is_rejected(self, stores):
        ok(await stores.orders.insert(make_order("o1")))

        err(await stores.orders.insert(make_order("o1", user_id="u2")))

        assert ok(await stores.orders.get("o1")).user_id == "u1"

    async def test_cancel_does_not_restock(self, shop, stores):
        ok(await shop.add_cart_line("u1", "milk", 3))
        order = ok(await shop.place_order("u1", ADDRESS, "cod"))

        ok(await shop.update_order_status(order.id, "cancelled"))

        assert ok(await stores.products.get("milk")).stock == 17
