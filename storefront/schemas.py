"""
Pydantic request/response schemas.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field

from .models import RoleName


# Identity
class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    name: str = Field(..., min_length=1, max_length=100)


class UserResponse(BaseModel):
    id: str
    email: str
    name: str
    roles: List[str] = []
    created_at: Optional[datetime] = None


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class RoleAssignment(BaseModel):
    role: RoleName


class MessageResponse(BaseModel):
    message: str


# Catalog
class CategoryPayload(BaseModel):
    name: Optional[str] = None
    image_url: Optional[str] = Field(None, max_length=500)


class CategoryResponse(BaseModel):
    id: int
    name: str
    slug: str
    image_url: Optional[str] = None
    
    class Config:
        from_attributes = True


class ProductPayload(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    description: Optional[str] = None
    price: Decimal = Field(..., decimal_places=2)
    image_url: Optional[str] = Field(None, max_length=500)
    stock_quantity: int = 0
    category_id: int


class ProductResponse(BaseModel):
    id: int
    title: str
    author: Optional[str] = None
    description: Optional[str] = None
    price: float
    image_url: Optional[str] = None
    stock_quantity: int
    created_at: Optional[datetime] = None
    category_id: Optional[int] = None
    category_name: Optional[str] = None


class ProductPageResponse(BaseModel):
    items: List[ProductResponse]
    page: int
    page_size: int
    total_count: int
    total_pages: int
    category: Optional[str] = None
    categories: List[str] = []


class StockChange(BaseModel):
    change: int


class StockResponse(BaseModel):
    id: int
    stock_quantity: int


class HomeResponse(BaseModel):
    featured_products: List[ProductResponse]
    categories: List[CategoryResponse]


# Cart / orders
class AddItemRequest(BaseModel):
    product_id: int
    quantity: int = 1


class UpdateQuantityRequest(BaseModel):
    quantity: int


class OrderStatusUpdate(BaseModel):
    status: str


class OrderItemResponse(BaseModel):
    id: int
    product_id: int
    product_title: Optional[str] = None
    quantity: int
    unit_price: float
    line_total: float


class OrderResponse(BaseModel):
    id: int
    user_id: str
    user_email: Optional[str] = None
    status: str
    total_amount: float
    created_at: datetime
    items: List[OrderItemResponse] = []


class CartResponse(BaseModel):
    order_id: Optional[int] = None
    items: List[OrderItemResponse] = []
    total_amount: float = 0.0
    message: Optional[str] = None


class CartSummaryItem(BaseModel):
    title: Optional[str] = None
    quantity: int


class CartSummaryResponse(BaseModel):
    item_count: int = 0
    total_amount: float = 0.0
    items: List[CartSummaryItem] = []


class OrderActionResponse(BaseModel):
    order: OrderResponse
    message: Optional[str] = None


# Admin dashboard
class DashboardResponse(BaseModel):
    total_products: int
    total_orders: int
    total_revenue: float
    low_stock_count: int
    low_stock_threshold: int
    recent_orders: List[OrderResponse]
    low_stock_products: List[ProductResponse]
    revenue_labels: List[str]
    revenue_data: List[float]
