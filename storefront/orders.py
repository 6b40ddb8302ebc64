"""
Cart and order workflow.

A user's "Pending" order is their shopping cart. Items are added, updated and
removed on that order, its total is recomputed after every change, and checkout
moves it to "Processing" after checking and decrementing stock. Admins move
orders between statuses afterwards.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from fastapi import APIRouter, Depends
from sqlalchemy import inspect, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .database import get_db
from .identity import Principal, require_admin, require_customer, require_roles
from .metrics import (
    record_cart_operation,
    record_checkout,
    record_order_transition,
    record_status_rejection,
)
from .models import CENT, Order, OrderItem, OrderStatus, Product, RoleName, to_money, utcnow
from .results import OperationResult, raise_for_result
from .schemas import (
    AddItemRequest,
    CartResponse,
    CartSummaryItem,
    CartSummaryResponse,
    OrderActionResponse,
    OrderItemResponse,
    OrderResponse,
    OrderStatusUpdate,
    UpdateQuantityRequest,
)

logger = logging.getLogger(__name__)


def calculate_total(items: Iterable[OrderItem]) -> Decimal:
    """Sum of quantity x unit price over the given line items."""
    total = sum(
        (Decimal(item.quantity) * to_money(item.unit_price) for item in items),
        Decimal("0.00")
    )
    return total.quantize(CENT)


def recalculate_total(order: Order) -> Decimal:
    """Write the derived total back onto the order."""
    order.total_amount = calculate_total(order.items)
    return order.total_amount


@dataclass
class CartSummary:
    item_count: int = 0
    total_amount: Decimal = Decimal("0.00")
    items: List[Tuple[Optional[str], int]] = field(default_factory=list)


class OrderService:
    """Cart mutations, checkout and order administration for one session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def _order_query():
        return select(Order).options(
            selectinload(Order.items).selectinload(OrderItem.product)
        ).execution_options(populate_existing=True)

    async def get_pending_order(self, user_id: str) -> Optional[Order]:
        """The user's cart with items and products, if any."""
        result = await self.db.execute(
            self._order_query().where(
                Order.user_id == user_id,
                Order.status == OrderStatus.PENDING.value
            )
        )
        return result.scalar_one_or_none()

    async def _get_order(self, order_id: int, with_user: bool = False) -> Optional[Order]:
        query = self._order_query().where(Order.id == order_id)
        if with_user:
            query = query.options(selectinload(Order.user))
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def _get_cart_item(self, item_id: int) -> Tuple[Optional[Order], Optional[OrderItem]]:
        """The order owning a line item, loaded with all its items, and that item."""
        result = await self.db.execute(select(OrderItem.order_id).where(OrderItem.id == item_id))
        order_id = result.scalar_one_or_none()
        if order_id is None:
            return None, None

        order = await self._get_order(order_id)
        if order is None:
            return None, None
        return order, next((i for i in order.items if i.id == item_id), None)

    # Cart
    async def add_item(self, user_id: str, product_id: int, quantity: int) -> OperationResult:
        """Add a product to the user's cart, creating the cart on first use."""
        if quantity <= 0:
            record_cart_operation("add", "rejected")
            return OperationResult.rejected("Quantity must be greater than zero.")

        product = await self.db.get(Product, product_id)
        if product is None:
            record_cart_operation("add", "not_found")
            return OperationResult.not_found("Product not found.")

        order = await self.get_pending_order(user_id)
        if order is None:
            order = Order(
                user_id=user_id,
                created_at=utcnow(),
                status=OrderStatus.PENDING.value,
                total_amount=Decimal("0.00"),
                items=[]
            )
            self.db.add(order)
            logger.info(f"Cart created for user {user_id}")

        existing_item = next((i for i in order.items if i.product_id == product.id), None)
        if existing_item is not None:
            existing_item.quantity += quantity
        else:
            order.items.append(
                OrderItem(
                    product_id=product.id,
                    product=product,
                    quantity=quantity,
                    unit_price=to_money(product.price)
                )
            )

        recalculate_total(order)
        await self.db.commit()

        record_cart_operation("add", "success")
        logger.info(f"Product {product.id} x{quantity} added to cart {order.id}")
        return OperationResult.ok(order, "Product added to cart.")

    async def update_item_quantity(self, user_id: str, item_id: int, quantity: int) -> OperationResult:
        """Overwrite the quantity of one of the user's cart items."""
        if quantity <= 0:
            record_cart_operation("update", "rejected")
            return OperationResult.rejected("Quantity must be at least 1.")

        order, item = await self._get_cart_item(item_id)
        if item is None:
            record_cart_operation("update", "not_found")
            return OperationResult.not_found("Cart item not found.")

        if order.user_id != user_id:
            record_cart_operation("update", "forbidden")
            logger.warning(f"User {user_id} tried to update item {item_id} of another user")
            return OperationResult.forbidden()

        if order.status != OrderStatus.PENDING.value:
            record_cart_operation("update", "rejected")
            return OperationResult.rejected("Only items in your cart can be changed.")

        item.quantity = quantity
        recalculate_total(order)
        await self.db.commit()

        record_cart_operation("update", "success")
        logger.info(f"Cart item {item_id} quantity set to {quantity}")
        return OperationResult.ok(order, "Cart updated.")

    async def remove_item(self, user_id: str, item_id: int) -> OperationResult:
        """Delete one of the user's cart items."""
        order, item = await self._get_cart_item(item_id)
        if item is None:
            record_cart_operation("remove", "not_found")
            return OperationResult.not_found("Item not found.")

        if order.user_id != user_id:
            record_cart_operation("remove", "forbidden")
            logger.warning(f"User {user_id} tried to remove item {item_id} of another user")
            return OperationResult.forbidden()

        if order.status != OrderStatus.PENDING.value:
            record_cart_operation("remove", "rejected")
            return OperationResult.rejected("Only items in your cart can be changed.")

        order.items.remove(item)
        recalculate_total(order)
        await self.db.commit()

        record_cart_operation("remove", "success")
        logger.info(f"Cart item {item_id} removed from order {order.id}")
        return OperationResult.ok(order, "Item removed from cart.")

    async def get_cart(self, user_id: str) -> Optional[Order]:
        return await self.get_pending_order(user_id)

    async def cart_summary(self, user_id: str) -> CartSummary:
        """Item count, total and titles for the header badge."""
        order = await self.get_pending_order(user_id)
        if order is None:
            return CartSummary()

        return CartSummary(
            item_count=sum(item.quantity for item in order.items),
            total_amount=to_money(order.total_amount),
            items=[(item.product.title if item.product else None, item.quantity) for item in order.items]
        )

    # Checkout
    async def checkout_summary(self, user_id: str) -> OperationResult:
        """The non-empty cart with a freshly recomputed total."""
        order = await self.get_pending_order(user_id)
        if order is None or not order.items:
            return OperationResult.rejected("Your cart is empty.")

        recalculate_total(order)
        await self.db.commit()
        return OperationResult.ok(order)

    async def place_order(self, user_id: str) -> OperationResult:
        """
        Check stock for every item, then decrement stock and move the cart to
        Processing. Nothing is changed unless every item is in stock.
        """
        order = await self.get_pending_order(user_id)
        if order is None or not order.items:
            record_checkout("empty_cart")
            return OperationResult.rejected("Your cart is empty.")

        for item in order.items:
            if item.product is None:
                record_checkout("missing_product")
                return OperationResult.rejected("Product not found.")

            if item.product.stock_quantity < item.quantity:
                record_checkout("insufficient_stock")
                logger.warning(
                    f"Checkout of order {order.id} refused: product {item.product.id} "
                    f"has {item.product.stock_quantity}, needs {item.quantity}"
                )
                return OperationResult.rejected(
                    f"Not enough stock for {item.product.title}. "
                    f"Available: {item.product.stock_quantity}."
                )

        for item in order.items:
            item.product.stock_quantity -= item.quantity

        recalculate_total(order)
        order.status = OrderStatus.PROCESSING.value
        order.created_at = utcnow()
        await self.db.commit()

        record_checkout("placed")
        record_order_transition(OrderStatus.PENDING.value, OrderStatus.PROCESSING.value)
        logger.info(f"Order placed: {order.id} total={order.total_amount}")
        return OperationResult.ok(order, "Order placed successfully.")

    # Order history and administration
    async def my_orders(self, user_id: str) -> List[Order]:
        """The user's orders other than the cart, newest first."""
        result = await self.db.execute(
            self._order_query()
            .where(Order.user_id == user_id, Order.status != OrderStatus.PENDING.value)
            .order_by(Order.created_at.desc(), Order.id.desc())
        )
        return list(result.scalars().all())

    async def list_orders(self, archived: bool = False) -> List[Order]:
        """Active (non-archived) or archived orders with their owners, newest first."""
        query = select(Order).options(selectinload(Order.user))
        if archived:
            query = query.where(Order.status == OrderStatus.ARCHIVED.value)
        else:
            query = query.where(Order.status != OrderStatus.ARCHIVED.value)

        result = await self.db.execute(query.order_by(Order.created_at.desc(), Order.id.desc()))
        return list(result.scalars().all())

    async def get_order_detail(self, principal: Principal, order_id: int) -> OperationResult:
        """An order visible to its owner and to admins."""
        order = await self._get_order(order_id, with_user=True)
        if order is None:
            return OperationResult.not_found("Order not found.")

        if not principal.is_admin and order.user_id != principal.user_id:
            logger.warning(f"User {principal.user_id} tried to view order {order_id}")
            return OperationResult.forbidden()

        return OperationResult.ok(order)

    async def update_status(self, order_id: int, new_status: str) -> OperationResult:
        """Set any allowed status; no transition graph is enforced."""
        order = await self._get_order(order_id, with_user=True)
        if order is None:
            return OperationResult.not_found("Order not found.")

        if new_status not in OrderStatus.values():
            record_status_rejection("invalid_status")
            logger.warning(f"Invalid status {new_status!r} for order {order_id}")
            return OperationResult.rejected("Invalid status value.")

        if new_status == OrderStatus.PENDING.value and order.status != OrderStatus.PENDING.value:
            other_cart = await self.db.execute(
                select(Order.id).where(
                    Order.user_id == order.user_id,
                    Order.status == OrderStatus.PENDING.value,
                    Order.id != order.id
                )
            )
            if other_cart.first() is not None:
                record_status_rejection("second_cart")
                return OperationResult.rejected("The customer already has an active cart.")

        previous_status = order.status
        order.status = new_status
        await self.db.commit()

        record_order_transition(previous_status, new_status)
        logger.info(f"Order {order.id} status changed: {previous_status} -> {new_status}")
        return OperationResult.ok(order, f"Order #{order.id} status updated to {new_status}.")


def _is_loaded(obj, attribute: str) -> bool:
    return attribute not in inspect(obj).unloaded


def item_to_response(item: OrderItem) -> OrderItemResponse:
    product = item.product if _is_loaded(item, "product") else None
    return OrderItemResponse(
        id=item.id,
        product_id=item.product_id,
        product_title=product.title if product else None,
        quantity=item.quantity,
        unit_price=float(item.unit_price),
        line_total=float(item.line_total)
    )


def order_to_response(order: Order) -> OrderResponse:
    user = order.user if _is_loaded(order, "user") else None
    items = order.items if _is_loaded(order, "items") else []
    return OrderResponse(
        id=order.id,
        user_id=order.user_id,
        user_email=user.email if user else None,
        status=order.status,
        total_amount=float(order.total_amount),
        created_at=order.created_at,
        items=[item_to_response(item) for item in items]
    )


def cart_to_response(order: Optional[Order], message: Optional[str] = None) -> CartResponse:
    if order is None:
        return CartResponse(message=message)
    return CartResponse(
        order_id=order.id,
        items=[item_to_response(item) for item in order.items],
        total_amount=float(order.total_amount),
        message=message
    )


# API Endpoints
cart_router = APIRouter(prefix="/api/v1/cart", tags=["cart"])
order_router = APIRouter(prefix="/api/v1/orders", tags=["orders"])


@cart_router.get("", response_model=CartResponse)
async def view_cart(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_customer)
):
    """The current cart; empty when nothing was added yet."""
    return cart_to_response(await OrderService(db).get_cart(principal.user_id))


@cart_router.get("/summary", response_model=CartSummaryResponse)
async def view_cart_summary(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_customer)
):
    """Item count and total for the current cart."""
    summary = await OrderService(db).cart_summary(principal.user_id)
    return CartSummaryResponse(
        item_count=summary.item_count,
        total_amount=float(summary.total_amount),
        items=[CartSummaryItem(title=title, quantity=quantity) for title, quantity in summary.items]
    )


@cart_router.post("/items", response_model=CartResponse)
async def add_cart_item(
    body: AddItemRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_customer)
):
    """Add a product to the cart."""
    result = raise_for_result(
        await OrderService(db).add_item(principal.user_id, body.product_id, body.quantity)
    )
    return cart_to_response(result.value, result.message)


@cart_router.put("/items/{item_id}", response_model=CartResponse)
async def update_cart_item(
    item_id: int,
    body: UpdateQuantityRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_customer)
):
    """Change the quantity of a cart item."""
    result = raise_for_result(
        await OrderService(db).update_item_quantity(principal.user_id, item_id, body.quantity)
    )
    return cart_to_response(result.value, result.message)


@cart_router.delete("/items/{item_id}", response_model=CartResponse)
async def remove_cart_item(
    item_id: int,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_customer)
):
    """Remove an item from the cart."""
    result = raise_for_result(await OrderService(db).remove_item(principal.user_id, item_id))
    return cart_to_response(result.value, result.message)


@cart_router.get("/checkout", response_model=OrderResponse)
async def checkout(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_customer)
):
    """Summary of the cart before placing the order."""
    result = raise_for_result(await OrderService(db).checkout_summary(principal.user_id))
    return order_to_response(result.value)


@cart_router.post("/checkout", response_model=OrderActionResponse)
async def place_order(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_customer)
):
    """Place the order for everything in the cart."""
    result = raise_for_result(await OrderService(db).place_order(principal.user_id))
    return OrderActionResponse(order=order_to_response(result.value), message=result.message)


@order_router.get("/mine", response_model=List[OrderResponse])
async def my_orders(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_customer)
):
    """Order history of the current customer."""
    return [order_to_response(o) for o in await OrderService(db).my_orders(principal.user_id)]


@order_router.get("", response_model=List[OrderResponse])
async def list_orders(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin)
):
    """All non-archived orders (admin only)."""
    return [order_to_response(o) for o in await OrderService(db).list_orders()]


@order_router.get("/archived", response_model=List[OrderResponse])
async def list_archived_orders(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin)
):
    """Archived orders (admin only)."""
    return [order_to_response(o) for o in await OrderService(db).list_orders(archived=True)]


@order_router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_roles(RoleName.CUSTOMER, RoleName.ADMIN))
):
    """Order details for its owner or an admin."""
    result = raise_for_result(await OrderService(db).get_order_detail(principal, order_id))
    return order_to_response(result.value)


@order_router.put("/{order_id}/status", response_model=OrderActionResponse)
async def update_order_status(
    order_id: int,
    body: OrderStatusUpdate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin)
):
    """Set an order's status (admin only)."""
    result = raise_for_result(await OrderService(db).update_status(order_id, body.status))
    return OrderActionResponse(order=order_to_response(result.value), message=result.message)
