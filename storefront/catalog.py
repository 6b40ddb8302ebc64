"""
Catalog - product browsing, categories and product management.
"""

import logging
import math
import re
from dataclasses import dataclass, field
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .config import Settings, get_settings
from .database import get_db
from .identity import Principal, require_admin
from .models import Category, OrderItem, Product, to_money, utcnow
from .results import OperationResult, raise_for_result
from .schemas import (
    CategoryPayload,
    CategoryResponse,
    HomeResponse,
    MessageResponse,
    ProductPageResponse,
    ProductPayload,
    ProductResponse,
    StockChange,
    StockResponse,
)

logger = logging.getLogger(__name__)

CATEGORY_NAME_MAX_LENGTH = 100
SLUG_MAX_LENGTH = 120


def slugify(name: str) -> str:
    """Lowercase, keep [a-z0-9], whitespace and hyphens, join words with hyphens."""
    slug = name.lower().strip()
    slug = re.sub(r"[^a-z0-9\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    return slug[:SLUG_MAX_LENGTH]


def total_pages(total_count: int, page_size: int) -> int:
    return math.ceil(total_count / page_size) if page_size > 0 else 0


@dataclass
class ProductPage:
    items: List[Product]
    page: int
    page_size: int
    total_count: int
    total_pages: int
    category: Optional[str] = None
    categories: List[str] = field(default_factory=list)


class CatalogService:
    """Product listing and catalog administration."""

    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()

    # Browsing
    async def list_products(self, category: Optional[str] = None, page: int = 1) -> ProductPage:
        """One page of products ordered by title, optionally filtered by category name."""
        page_size = self.settings.products_page_size
        page = max(page, 1)

        query = select(Product).options(selectinload(Product.category))
        count_query = select(func.count(Product.id)).select_from(Product)
        if category:
            query = query.join(Product.category).where(Category.name == category)
            count_query = count_query.join(Product.category).where(Category.name == category)

        total_count = (await self.db.execute(count_query)).scalar_one()

        result = await self.db.execute(
            query.order_by(Product.title, Product.id)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )

        categories = await self.db.execute(select(Category.name).order_by(Category.id))

        return ProductPage(
            items=list(result.scalars().all()),
            page=page,
            page_size=page_size,
            total_count=total_count,
            total_pages=total_pages(total_count, page_size),
            category=category or None,
            categories=list(categories.scalars().all())
        )

    async def get_product(self, product_id: int) -> OperationResult:
        result = await self.db.execute(
            select(Product).options(selectinload(Product.category)).where(Product.id == product_id)
            .execution_options(populate_existing=True)
        )
        product = result.scalar_one_or_none()
        if product is None:
            return OperationResult.not_found("Product not found.")
        return OperationResult.ok(product)

    async def home(self):
        """Three newest products and the first three categories."""
        products = await self.db.execute(
            select(Product).options(selectinload(Product.category))
            .order_by(Product.created_at.desc(), Product.id.desc())
            .limit(3)
        )
        categories = await self.db.execute(select(Category).order_by(Category.id).limit(3))
        return list(products.scalars().all()), list(categories.scalars().all())

    # Categories
    async def list_categories(self) -> List[Category]:
        result = await self.db.execute(select(Category).order_by(Category.name))
        return list(result.scalars().all())

    async def save_category(
        self,
        name: Optional[str],
        image_url: Optional[str] = None,
        category_id: Optional[int] = None
    ) -> OperationResult:
        """Create a category, or update it when category_id is given."""
        name = (name or "").strip()
        if not name:
            return OperationResult.invalid("Category name is required.")
        if len(name) > CATEGORY_NAME_MAX_LENGTH:
            return OperationResult.invalid(
                f"Category name must be at most {CATEGORY_NAME_MAX_LENGTH} characters."
            )

        if category_id is None:
            category = Category()
            self.db.add(category)
            message = "Category created successfully."
        else:
            category = await self.db.get(Category, category_id)
            if category is None:
                return OperationResult.not_found("Category not found.")
            message = "Category updated successfully."

        category.name = name
        category.slug = slugify(name)
        category.image_url = image_url
        await self.db.commit()

        logger.info(f"Category saved: {category.id} ({category.slug})")
        return OperationResult.ok(category, message)

    async def delete_category(self, category_id: int) -> OperationResult:
        """Delete a category; its products stay without a category."""
        category = await self.db.get(Category, category_id)
        if category is None:
            return OperationResult.not_found("Category not found.")

        await self.db.execute(
            update(Product).where(Product.category_id == category_id).values(category_id=None)
        )
        await self.db.delete(category)
        await self.db.commit()

        logger.info(f"Category deleted: {category_id}")
        return OperationResult.ok(message="Category deleted successfully.")

    # Products
    async def list_all_products(self) -> List[Product]:
        result = await self.db.execute(
            select(Product).options(selectinload(Product.category)).order_by(Product.title, Product.id)
        )
        return list(result.scalars().all())

    async def _validate_product(self, payload: ProductPayload) -> Optional[OperationResult]:
        if not (payload.title or "").strip():
            return OperationResult.invalid("Title is required.")
        if not (payload.author or "").strip():
            return OperationResult.invalid("Author is required.")
        if payload.price < 0:
            return OperationResult.invalid("Price cannot be negative.")
        if payload.stock_quantity < 0:
            return OperationResult.invalid("Stock quantity cannot be negative.")
        if await self.db.get(Category, payload.category_id) is None:
            return OperationResult.invalid("Category does not exist.")
        return None

    async def save_product(self, payload: ProductPayload, product_id: Optional[int] = None) -> OperationResult:
        """Create a product, or update it when product_id is given."""
        error = await self._validate_product(payload)
        if error is not None:
            return error

        if product_id is None:
            product = Product(created_at=utcnow())
            self.db.add(product)
            message = "Product created successfully."
        else:
            product = await self.db.get(Product, product_id)
            if product is None:
                return OperationResult.not_found("Product not found.")
            message = "Product updated successfully."

        product.title = payload.title.strip()
        product.author = payload.author.strip()
        product.description = payload.description
        product.price = to_money(payload.price)
        product.image_url = payload.image_url
        product.stock_quantity = payload.stock_quantity
        product.category_id = payload.category_id
        await self.db.commit()

        logger.info(f"Product saved: {product.id} ({product.title})")
        saved = await self.get_product(product.id)
        return OperationResult.ok(saved.value, message)

    async def delete_product(self, product_id: int) -> OperationResult:
        """Delete a product unless an order item still references it."""
        product = await self.db.get(Product, product_id)
        if product is None:
            return OperationResult.not_found("Product not found.")

        references = await self.db.execute(
            select(func.count(OrderItem.id)).where(OrderItem.product_id == product_id)
        )
        if references.scalar_one() > 0:
            logger.warning(f"Refused to delete product {product_id}: referenced by orders")
            return OperationResult.rejected(
                f"{product.title} cannot be deleted because it appears in orders."
            )

        await self.db.delete(product)
        await self.db.commit()

        logger.info(f"Product deleted: {product_id}")
        return OperationResult.ok(message="Product deleted successfully.")

    async def update_stock(self, product_id: int, change: int) -> OperationResult:
        """Add a signed change to the stock, never going below zero."""
        product = await self.db.get(Product, product_id)
        if product is None:
            return OperationResult.not_found("Product not found.")

        product.stock_quantity = max(0, product.stock_quantity + change)
        await self.db.commit()

        logger.info(f"Stock updated for product {product_id}: {product.stock_quantity}")
        return OperationResult.ok(product)


def product_to_response(product: Product) -> ProductResponse:
    return ProductResponse(
        id=product.id,
        title=product.title,
        author=product.author,
        description=product.description,
        price=float(product.price),
        image_url=product.image_url,
        stock_quantity=product.stock_quantity,
        created_at=product.created_at,
        category_id=product.category_id,
        category_name=product.category.name if product.category else None
    )


# API Endpoints
product_router = APIRouter(prefix="/api/v1/products", tags=["products"])
category_router = APIRouter(prefix="/api/v1/categories", tags=["categories"])
home_router = APIRouter(prefix="/api/v1", tags=["home"])
admin_product_router = APIRouter(prefix="/api/v1/admin/products", tags=["admin"])


@home_router.get("/home", response_model=HomeResponse)
async def home(db: AsyncSession = Depends(get_db)):
    """Featured products and categories for the landing page."""
    products, categories = await CatalogService(db).home()
    return HomeResponse(
        featured_products=[product_to_response(p) for p in products],
        categories=[CategoryResponse.model_validate(c) for c in categories]
    )


@product_router.get("", response_model=ProductPageResponse)
async def list_products(
    category: Optional[str] = None,
    page: int = 1,
    db: AsyncSession = Depends(get_db)
):
    """List products, optionally filtered by category name."""
    result = await CatalogService(db).list_products(category=category, page=page)
    return ProductPageResponse(
        items=[product_to_response(p) for p in result.items],
        page=result.page,
        page_size=result.page_size,
        total_count=result.total_count,
        total_pages=result.total_pages,
        category=result.category,
        categories=result.categories
    )


@product_router.get("/{product_id}", response_model=ProductResponse)
async def get_product(product_id: int, db: AsyncSession = Depends(get_db)):
    """Get product details."""
    result = raise_for_result(await CatalogService(db).get_product(product_id))
    return product_to_response(result.value)


@product_router.post("", response_model=ProductResponse, status_code=status.HTTP_201_CREATED)
async def create_product(
    payload: ProductPayload,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin)
):
    """Create a new product (admin only)."""
    result = raise_for_result(await CatalogService(db).save_product(payload))
    return product_to_response(result.value)


@product_router.put("/{product_id}", response_model=ProductResponse)
async def update_product(
    product_id: int,
    payload: ProductPayload,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin)
):
    """Update a product (admin only)."""
    result = raise_for_result(await CatalogService(db).save_product(payload, product_id=product_id))
    return product_to_response(result.value)


@product_router.delete("/{product_id}", response_model=MessageResponse)
async def delete_product(
    product_id: int,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin)
):
    """Delete a product (admin only)."""
    result = raise_for_result(await CatalogService(db).delete_product(product_id))
    return MessageResponse(message=result.message)


@product_router.patch("/{product_id}/stock", response_model=StockResponse)
async def update_stock(
    product_id: int,
    stock_change: StockChange,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin)
):
    """Adjust product stock by a signed amount (admin only)."""
    result = raise_for_result(await CatalogService(db).update_stock(product_id, stock_change.change))
    return StockResponse(id=result.value.id, stock_quantity=result.value.stock_quantity)


@admin_product_router.get("", response_model=list[ProductResponse])
async def admin_list_products(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin)
):
    """All products ordered by title (admin only)."""
    return [product_to_response(p) for p in await CatalogService(db).list_all_products()]


@category_router.get("", response_model=list[CategoryResponse])
async def list_categories(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin)
):
    """List categories ordered by name (admin only)."""
    return await CatalogService(db).list_categories()


@category_router.post("", response_model=CategoryResponse, status_code=status.HTTP_201_CREATED)
async def create_category(
    payload: CategoryPayload,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin)
):
    """Create a category (admin only)."""
    result = raise_for_result(await CatalogService(db).save_category(payload.name, payload.image_url))
    return result.value


@category_router.put("/{category_id}", response_model=CategoryResponse)
async def update_category(
    category_id: int,
    payload: CategoryPayload,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin)
):
    """Rename or update a category (admin only)."""
    result = raise_for_result(
        await CatalogService(db).save_category(payload.name, payload.image_url, category_id=category_id)
    )
    return result.value


@category_router.delete("/{category_id}", response_model=MessageResponse)
async def delete_category(
    category_id: int,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin)
):
    """Delete a category (admin only)."""
    result = raise_for_result(await CatalogService(db).delete_category(category_id))
    return MessageResponse(message=result.message)
