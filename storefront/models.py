"""
Database models for the catalog, cart/order and identity tables.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    text,
)
from sqlalchemy.orm import relationship

from .database import Base


CENT = Decimal("0.01")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_money(value) -> Decimal:
    """Two-decimal Decimal from a DB numeric (Decimal, float or None)."""
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(CENT)


# Enums
class OrderStatus(str, Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    ARCHIVED = "Archived"

    @classmethod
    def values(cls) -> list:
        return [member.value for member in cls]


class RoleName(str, Enum):
    ADMIN = "Admin"
    CUSTOMER = "Customer"


user_roles = Table(
    "user_roles",
    Base.metadata,
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
)


# Identity
class User(Base):
    __tablename__ = "users"
    
    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    name = Column(String(100), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    roles = relationship("Role", secondary=user_roles, lazy="selectin")

    @property
    def role_names(self) -> list:
        return sorted(role.name for role in self.roles)


class Role(Base):
    __tablename__ = "roles"
    
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(50), unique=True, nullable=False)


class RevokedToken(Base):
    __tablename__ = "revoked_tokens"
    
    jti = Column(String(36), primary_key=True)
    user_id = Column(String(36), nullable=False)
    revoked_at = Column(DateTime(timezone=True), default=utcnow)


# Catalog
class Category(Base):
    __tablename__ = "categories"
    
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    slug = Column(String(120), nullable=False, index=True)
    image_url = Column(String(500))

    products = relationship("Product", back_populates="category", passive_deletes=True)


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
        CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
    )
    
    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(200), nullable=False)
    author = Column(String(200))
    description = Column(Text)
    price = Column(Numeric(10, 2), nullable=False)
    image_url = Column(String(500))
    stock_quantity = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    # Category removal leaves products in place without a category
    category_id = Column(Integer, ForeignKey("categories.id", ondelete="SET NULL"), index=True)

    category = relationship("Category", back_populates="products")


# Orders
class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        # One cart per user
        Index(
            "uq_orders_one_pending_per_user",
            "user_id",
            unique=True,
            sqlite_where=text("status = 'Pending'"),
            postgresql_where=text("status = 'Pending'"),
        ),
    )
    
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    status = Column(String(20), nullable=False, default=OrderStatus.PENDING.value, index=True)
    total_amount = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))

    user = relationship("User")
    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="OrderItem.id",
    )


class OrderItem(Base):
    __tablename__ = "order_items"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
    )
    
    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    # Price at the time the item was added to the cart
    unit_price = Column(Numeric(10, 2), nullable=False)

    order = relationship("Order", back_populates="items")
    product = relationship("Product")

    @property
    def line_total(self) -> Decimal:
        return Decimal(self.quantity) * Decimal(self.unit_price)
