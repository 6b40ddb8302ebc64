"""
Tests for the cart and order workflow.
"""

from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from storefront.identity import Principal
from storefront.models import Order, OrderItem, OrderStatus, Product, RoleName
from storefront.orders import OrderService, calculate_total
from storefront.results import Outcome


async def pending_count(session, user_id):
    result = await session.execute(
        select(func.count(Order.id)).where(
            Order.user_id == user_id, Order.status == OrderStatus.PENDING.value
        )
    )
    return result.scalar_one()


class TestOrderTotals:
    """Tests for total calculation."""

    def test_total_is_sum_of_line_totals(self):
        items = [
            SimpleNamespace(quantity=2, unit_price=Decimal("10.00")),
            SimpleNamespace(quantity=1, unit_price=Decimal("25.50")),
            SimpleNamespace(quantity=3, unit_price=Decimal("5.00")),
        ]

        assert calculate_total(items) == Decimal("60.50")

    def test_empty_order_totals_zero(self):
        assert calculate_total([]) == Decimal("0.00")

    def test_float_prices_are_rounded_to_cents(self):
        items = [SimpleNamespace(quantity=3, unit_price=0.1)]

        assert calculate_total(items) == Decimal("0.30")


class TestCart:
    """Tests for cart mutations."""

    async def test_add_update_remove_example(self, session, make_user, make_product):
        user = await make_user()
        product = await make_product(price="10.00")
        service = OrderService(session)

        result = await service.add_item(user.id, product.id, 2)
        assert result.succeeded
        assert result.message == "Product added to cart."
        order = result.value
        assert order.total_amount == Decimal("20.00")
        item_id = order.items[0].id

        result = await service.update_item_quantity(user.id, item_id, 5)
        assert result.succeeded
        assert result.value.total_amount == Decimal("50.00")

        result = await service.remove_item(user.id, item_id)
        assert result.succeeded
        assert result.value.total_amount == Decimal("0.00")
        assert result.value.items == []

        cart = await service.get_cart(user.id)
        assert cart.id == order.id
        assert cart.items == []

    async def test_first_add_creates_pending_order(self, session, make_user, make_product):
        user = await make_user()
        product = await make_product()

        assert await OrderService(session).get_cart(user.id) is None

        result = await OrderService(session).add_item(user.id, product.id, 1)

        assert result.value.status == OrderStatus.PENDING.value
        assert result.value.user_id == user.id
        assert await pending_count(session, user.id) == 1

    async def test_adding_same_product_increments_quantity(self, session, make_user, make_product):
        user = await make_user()
        product = await make_product(price="12.50")
        service = OrderService(session)

        await service.add_item(user.id, product.id, 1)
        result = await service.add_item(user.id, product.id, 2)

        order = result.value
        assert len(order.items) == 1
        assert order.items[0].quantity == 3
        assert order.total_amount == Decimal("37.50")
        assert await pending_count(session, user.id) == 1

    async def test_unit_price_is_snapshot_at_add_time(self, session, make_user, make_product):
        user = await make_user()
        product = await make_product(price="10.00")
        service = OrderService(session)

        await service.add_item(user.id, product.id, 1)
        product.price = Decimal("99.00")
        await session.commit()

        result = await service.add_item(user.id, product.id, 1)

        assert result.value.items[0].unit_price == Decimal("10.00")
        assert result.value.total_amount == Decimal("20.00")

    @pytest.mark.parametrize("quantity", [0, -3])
    async def test_add_non_positive_quantity_is_rejected(self, session, make_user, make_product, quantity):
        user = await make_user()
        product = await make_product()

        result = await OrderService(session).add_item(user.id, product.id, quantity)

        assert result.outcome == Outcome.RULE_VIOLATION
        assert await OrderService(session).get_cart(user.id) is None

    async def test_add_unknown_product(self, session, make_user):
        user = await make_user()

        result = await OrderService(session).add_item(user.id, 999, 1)

        assert result.outcome == Outcome.NOT_FOUND

    async def test_update_to_zero_leaves_cart_unchanged(self, session, make_user, make_product):
        user = await make_user()
        product = await make_product(price="10.00")
        service = OrderService(session)
        order = (await service.add_item(user.id, product.id, 2)).value

        result = await service.update_item_quantity(user.id, order.items[0].id, 0)

        assert result.outcome == Outcome.RULE_VIOLATION
        assert result.message == "Quantity must be at least 1."
        cart = await service.get_cart(user.id)
        assert cart.items[0].quantity == 2
        assert cart.total_amount == Decimal("20.00")

    async def test_other_customer_cannot_update_or_remove_item(self, session, make_user, make_product):
        owner = await make_user("owner@example.com")
        intruder = await make_user("intruder@example.com")
        product = await make_product()
        service = OrderService(session)
        item_id = (await service.add_item(owner.id, product.id, 2)).value.items[0].id

        update = await service.update_item_quantity(intruder.id, item_id, 9)
        remove = await service.remove_item(intruder.id, item_id)

        assert update.outcome == Outcome.FORBIDDEN
        assert remove.outcome == Outcome.FORBIDDEN
        cart = await service.get_cart(owner.id)
        assert len(cart.items) == 1
        assert cart.items[0].quantity == 2

    async def test_update_and_remove_missing_item(self, session, make_user):
        user = await make_user()
        service = OrderService(session)

        assert (await service.update_item_quantity(user.id, 42, 1)).outcome == Outcome.NOT_FOUND
        assert (await service.remove_item(user.id, 42)).outcome == Outcome.NOT_FOUND

    async def test_placed_order_items_cannot_be_changed(self, session, make_user, make_product):
        user = await make_user()
        product = await make_product(stock=10)
        service = OrderService(session)
        item_id = (await service.add_item(user.id, product.id, 1)).value.items[0].id
        await service.place_order(user.id)

        result = await service.update_item_quantity(user.id, item_id, 4)

        assert result.outcome == Outcome.RULE_VIOLATION

    async def test_cart_summary(self, session, make_user, make_product, make_category):
        user = await make_user()
        category = await make_category()
        akira = await make_product("Akira", "10.00", category=category)
        watchmen = await make_product("Watchmen", "29.99", category=category)
        service = OrderService(session)
        await service.add_item(user.id, akira.id, 2)
        await service.add_item(user.id, watchmen.id, 1)

        summary = await service.cart_summary(user.id)

        assert summary.item_count == 3
        assert summary.total_amount == Decimal("49.99")
        assert summary.items == [("Akira", 2), ("Watchmen", 1)]

    async def test_cart_summary_without_cart(self, session, make_user):
        user = await make_user()

        summary = await OrderService(session).cart_summary(user.id)

        assert summary.item_count == 0
        assert summary.total_amount == Decimal("0.00")


class TestCheckout:
    """Tests for checkout."""

    async def test_place_order_decrements_stock(self, session, make_user, make_product):
        user = await make_user()
        product = await make_product(price="15.00", stock=5)
        service = OrderService(session)
        await service.add_item(user.id, product.id, 3)

        result = await service.place_order(user.id)

        assert result.succeeded
        assert result.message == "Order placed successfully."
        assert result.value.status == OrderStatus.PROCESSING.value
        assert result.value.total_amount == Decimal("45.00")
        await session.refresh(product)
        assert product.stock_quantity == 2
        assert await service.get_cart(user.id) is None

    async def test_insufficient_stock_changes_nothing(self, session, make_user, make_product, make_category):
        user = await make_user()
        category = await make_category()
        plenty = await make_product("Akira", stock=10, category=category)
        scarce = await make_product("Watchmen", stock=1, category=category)
        service = OrderService(session)
        await service.add_item(user.id, plenty.id, 2)
        await service.add_item(user.id, scarce.id, 2)

        result = await service.place_order(user.id)

        assert result.outcome == Outcome.RULE_VIOLATION
        assert result.message == "Not enough stock for Watchmen. Available: 1."
        await session.refresh(plenty)
        await session.refresh(scarce)
        assert plenty.stock_quantity == 10
        assert scarce.stock_quantity == 1
        cart = await service.get_cart(user.id)
        assert cart.status == OrderStatus.PENDING.value

    async def test_empty_cart_cannot_be_placed(self, session, make_user, make_product):
        user = await make_user()
        product = await make_product()
        service = OrderService(session)

        assert (await service.place_order(user.id)).message == "Your cart is empty."

        item_id = (await service.add_item(user.id, product.id, 1)).value.items[0].id
        await service.remove_item(user.id, item_id)

        assert (await service.place_order(user.id)).outcome == Outcome.RULE_VIOLATION
        assert (await service.checkout_summary(user.id)).outcome == Outcome.RULE_VIOLATION

    async def test_checkout_summary_returns_cart(self, session, make_user, make_product):
        user = await make_user()
        product = await make_product(price="7.25")
        service = OrderService(session)
        await service.add_item(user.id, product.id, 4)

        result = await service.checkout_summary(user.id)

        assert result.succeeded
        assert result.value.total_amount == Decimal("29.00")

    async def test_new_cart_after_checkout(self, session, make_user, make_product):
        user = await make_user()
        product = await make_product(stock=10)
        service = OrderService(session)
        await service.add_item(user.id, product.id, 1)
        placed = (await service.place_order(user.id)).value

        result = await service.add_item(user.id, product.id, 1)

        assert result.value.id != placed.id
        assert await pending_count(session, user.id) == 1


class TestOrderHistory:
    """Tests for order listings and detail access."""

    async def test_my_orders_excludes_cart(self, session, make_user, make_product):
        user = await make_user()
        product = await make_product(stock=10)
        service = OrderService(session)
        await service.add_item(user.id, product.id, 1)
        placed = (await service.place_order(user.id)).value
        await service.add_item(user.id, product.id, 1)

        orders = await service.my_orders(user.id)

        assert [o.id for o in orders] == [placed.id]

    async def test_admin_lists_split_archived(self, session, make_user, make_product):
        user = await make_user()
        product = await make_product(stock=10)
        service = OrderService(session)
        await service.add_item(user.id, product.id, 1)
        first = (await service.place_order(user.id)).value
        await service.add_item(user.id, product.id, 1)
        second = (await service.place_order(user.id)).value
        await service.update_status(first.id, OrderStatus.ARCHIVED.value)

        active = await service.list_orders()
        archived = await service.list_orders(archived=True)

        assert [o.id for o in active] == [second.id]
        assert [o.id for o in archived] == [first.id]
        assert archived[0].user.email == user.email

    async def test_order_detail_access(self, session, make_user, make_product):
        owner = await make_user("owner@example.com")
        other = await make_user("other@example.com")
        product = await make_product()
        service = OrderService(session)
        order = (await service.add_item(owner.id, product.id, 1)).value

        def principal(user, *roles):
            return Principal(user_id=user.id, email=user.email, name=user.name, roles=frozenset(roles))

        assert (await service.get_order_detail(principal(owner, "Customer"), order.id)).succeeded
        assert (await service.get_order_detail(principal(other, "Customer"), order.id)).outcome == Outcome.FORBIDDEN
        assert (await service.get_order_detail(principal(other, RoleName.ADMIN.value), order.id)).succeeded
        assert (await service.get_order_detail(principal(owner, "Customer"), 999)).outcome == Outcome.NOT_FOUND


class TestOrderStatus:
    """Tests for admin status updates and the one-cart rule."""

    async def test_update_status(self, session, make_user, make_product):
        user = await make_user()
        product = await make_product(stock=10)
        service = OrderService(session)
        await service.add_item(user.id, product.id, 1)
        order = (await service.place_order(user.id)).value

        result = await service.update_status(order.id, "Completed")

        assert result.succeeded
        assert result.message == f"Order #{order.id} status updated to Completed."
        assert result.value.status == OrderStatus.COMPLETED.value

    async def test_invalid_status_is_rejected(self, session, make_user, make_product):
        user = await make_user()
        product = await make_product(stock=10)
        service = OrderService(session)
        await service.add_item(user.id, product.id, 1)
        order = (await service.place_order(user.id)).value

        result = await service.update_status(order.id, "Shipped")

        assert result.outcome == Outcome.RULE_VIOLATION
        await session.refresh(order)
        assert order.status == OrderStatus.PROCESSING.value

    async def test_update_status_of_missing_order(self, session):
        result = await OrderService(session).update_status(404, "Completed")

        assert result.outcome == Outcome.NOT_FOUND

    async def test_reopening_order_refused_while_cart_exists(self, session, make_user, make_product):
        user = await make_user()
        product = await make_product(stock=10)
        service = OrderService(session)
        await service.add_item(user.id, product.id, 1)
        placed = (await service.place_order(user.id)).value
        await service.add_item(user.id, product.id, 1)

        result = await service.update_status(placed.id, OrderStatus.PENDING.value)

        assert result.outcome == Outcome.RULE_VIOLATION
        assert await pending_count(session, user.id) == 1

    async def test_reopening_order_allowed_without_cart(self, session, make_user, make_product):
        user = await make_user()
        product = await make_product(stock=10)
        service = OrderService(session)
        await service.add_item(user.id, product.id, 1)
        placed = (await service.place_order(user.id)).value

        result = await service.update_status(placed.id, OrderStatus.PENDING.value)

        assert result.succeeded
        assert (await service.get_cart(user.id)).id == placed.id

    async def test_database_rejects_second_pending_order(self, session, make_user):
        user = await make_user()
        user_id = user.id
        session.add(Order(user_id=user.id, status=OrderStatus.PENDING.value, total_amount=Decimal("0.00")))
        await session.commit()

        session.add(Order(user_id=user.id, status=OrderStatus.PENDING.value, total_amount=Decimal("0.00")))
        with pytest.raises(IntegrityError):
            await session.commit()
        await session.rollback()

        assert await pending_count(session, user_id) == 1

    async def test_non_pending_orders_are_not_limited(self, session, make_user):
        user = await make_user()
        created = datetime(2026, 1, 10, tzinfo=timezone.utc)
        for _ in range(3):
            session.add(Order(
                user_id=user.id,
                created_at=created,
                status=OrderStatus.COMPLETED.value,
                total_amount=Decimal("1.00")
            ))
        await session.commit()

        result = await session.execute(select(func.count(Order.id)).where(Order.user_id == user.id))
        assert result.scalar_one() == 3


class TestReferentialIntegrity:
    """Tests for foreign keys around order items."""

    async def test_order_item_requires_existing_product(self, session, make_user):
        user = await make_user()
        order = Order(user_id=user.id, status=OrderStatus.PENDING.value, total_amount=Decimal("0.00"))
        session.add(order)
        await session.commit()

        session.add(OrderItem(order_id=order.id, product_id=12345, quantity=1, unit_price=Decimal("1.00")))
        with pytest.raises(IntegrityError):
            await session.commit()
        await session.rollback()

        assert (await session.execute(select(func.count(Product.id)))).scalar_one() == 0

    async def test_deleting_order_deletes_its_items(self, session, make_user, make_product):
        user = await make_user()
        product = await make_product()
        order = (await OrderService(session).add_item(user.id, product.id, 2)).value
        order_id = order.id

        await session.delete(order)
        await session.commit()

        remaining = await session.execute(select(func.count(OrderItem.id)).where(OrderItem.order_id == order_id))
        assert remaining.scalar_one() == 0
        assert await session.get(Product, product.id) is not None
