"""
Admin dashboard - catalog and sales rollups computed per request.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy import extract, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .catalog import product_to_response
from .config import Settings, get_settings
from .database import get_db
from .identity import Principal, require_admin
from .metrics import DASHBOARD_QUERY_SECONDS, LOW_STOCK_PRODUCTS, track_duration
from .models import Order, OrderStatus, Product, to_money
from .orders import order_to_response
from .schemas import DashboardResponse

logger = logging.getLogger(__name__)

RECENT_ORDERS_LIMIT = 5


@dataclass
class DashboardSnapshot:
    total_products: int = 0
    total_orders: int = 0
    total_revenue: Decimal = Decimal("0.00")
    low_stock_count: int = 0
    low_stock_threshold: int = 0
    recent_orders: List[Order] = field(default_factory=list)
    low_stock_products: List[Product] = field(default_factory=list)
    revenue_labels: List[str] = field(default_factory=list)
    revenue_data: List[Decimal] = field(default_factory=list)


class DashboardService:
    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()

    async def total_revenue(self) -> Decimal:
        """Sum of Completed order totals."""
        result = await self.db.execute(
            select(func.coalesce(func.sum(Order.total_amount), 0))
            .where(Order.status == OrderStatus.COMPLETED.value)
        )
        return to_money(result.scalar_one())

    async def monthly_revenue(self):
        """Completed revenue per calendar month, oldest month first."""
        year = extract("year", Order.created_at).label("year")
        month = extract("month", Order.created_at).label("month")
        result = await self.db.execute(
            select(year, month, func.sum(Order.total_amount).label("revenue"))
            .where(Order.status == OrderStatus.COMPLETED.value)
            .group_by(year, month)
            .order_by(year, month)
        )

        labels, data = [], []
        for row in result.all():
            labels.append(f"{int(row.year):04d}-{int(row.month):02d}")
            data.append(to_money(row.revenue))
        return labels, data

    @track_duration(DASHBOARD_QUERY_SECONDS)
    async def snapshot(self) -> DashboardSnapshot:
        threshold = self.settings.low_stock_threshold

        total_products = (await self.db.execute(select(func.count(Product.id)))).scalar_one()
        total_orders = (await self.db.execute(select(func.count(Order.id)))).scalar_one()

        low_stock = await self.db.execute(
            select(Product).options(selectinload(Product.category))
            .where(Product.stock_quantity < threshold)
            .order_by(Product.stock_quantity, Product.title)
        )
        low_stock_products = list(low_stock.scalars().all())

        recent = await self.db.execute(
            select(Order).options(selectinload(Order.user))
            .order_by(Order.created_at.desc(), Order.id.desc())
            .limit(RECENT_ORDERS_LIMIT)
        )

        labels, data = await self.monthly_revenue()

        LOW_STOCK_PRODUCTS.set(len(low_stock_products))
        logger.info(
            f"Dashboard computed: products={total_products}, orders={total_orders}, "
            f"low_stock={len(low_stock_products)}"
        )

        return DashboardSnapshot(
            total_products=total_products,
            total_orders=total_orders,
            total_revenue=await self.total_revenue(),
            low_stock_count=len(low_stock_products),
            low_stock_threshold=threshold,
            recent_orders=list(recent.scalars().all()),
            low_stock_products=low_stock_products,
            revenue_labels=labels,
            revenue_data=data
        )


# API Endpoints
router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


@router.get("/dashboard", response_model=DashboardResponse)
async def dashboard(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin)
):
    """Sales and inventory overview (admin only)."""
    snapshot = await DashboardService(db).snapshot()
    return DashboardResponse(
        total_products=snapshot.total_products,
        total_orders=snapshot.total_orders,
        total_revenue=float(snapshot.total_revenue),
        low_stock_count=snapshot.low_stock_count,
        low_stock_threshold=snapshot.low_stock_threshold,
        recent_orders=[order_to_response(o) for o in snapshot.recent_orders],
        low_stock_products=[product_to_response(p) for p in snapshot.low_stock_products],
        revenue_labels=snapshot.revenue_labels,
        revenue_data=[float(value) for value in snapshot.revenue_data]
    )
