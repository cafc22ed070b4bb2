"""
Database Schemas for the EYES Perfume shop

Each Pydantic model corresponds to one MongoDB collection.
Collection name is the lowercase of the class name.

Derived fields (Product.rating, rating_sum, review_count) are maintained by
the review service and are not accepted from clients.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

Role = Literal["user", "admin"]
PaymentMethod = Literal["COD", "Card", "UPI"]
OrderStatus = Literal["placed", "processing", "shipped", "delivered", "cancelled"]


class User(BaseModel):
    first_name: str
    last_name: str
    email: EmailStr = Field(..., description="Stored lowercased, unique")
    password_hash: str = Field(..., description="bcrypt hash")
    role: Role = "user"
    email_verified_at: Optional[datetime] = None


class Product(BaseModel):
    name: str
    brand: str = "EYES"
    description: str = ""
    category: str = "general"
    price: float = Field(..., ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    images: List[str] = []
    stock: int = Field(50, ge=0)
    is_recent: bool = False
    is_bestseller: bool = False


class CartItem(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)


class Cart(BaseModel):
    user_id: str
    items: List[CartItem] = []


class OrderItem(BaseModel):
    product_id: str
    name: str
    quantity: int = Field(..., ge=1)
    unit_price: float = Field(..., ge=0)


class Order(BaseModel):
    user_id: str
    items: List[OrderItem]
    total: float
    name: str
    address: str
    phone: str
    payment_method: PaymentMethod = "COD"
    status: OrderStatus = "placed"


class Review(BaseModel):
    product_id: str
    user_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: str = ""
