"""
Database Schemas for the plugin marketplace

Each Pydantic model represents a collection in MongoDB.

Collections:
- profiles
- products
- product_versions
- reviews
- cart_items
- wishlist_items
- orders (order items are embedded)
- nav_items
- config
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

Role = Literal["admin", "vendor", "customer"]
ReviewStatus = Literal["pending", "approved", "rejected"]
OrderStatus = Literal["pending", "paid", "fulfilled", "cancelled"]


class Profile(BaseModel):
    email: EmailStr = Field(..., description="Sign-in email")
    password_hash: str = Field(..., description="Hashed password")
    role: Role = Field("customer", description="Gates admin dashboard and checkout")
    first_name: Optional[str] = Field(None, description="Given name")
    last_name: Optional[str] = Field(None, description="Family name")
    avatar_url: Optional[str] = Field(None, description="Avatar image URL")


class Product(BaseModel):
    title: str = Field(..., min_length=1, description="Product title")
    summary: Optional[str] = Field(None, description="One line pitch")
    description: Optional[str] = Field(None, description="Rich text description")
    price: float = Field(0, ge=0, description="Price in USD, 0 means free")
    image: Optional[str] = Field(None, description="Cover image URL")
    platform: str = Field(..., description="WordPress, XenForo, ...")
    category: str = Field(..., description="Plugins, Themes, Extensions, ...")
    tags: List[str] = Field(default_factory=list, description="Search tags")
    author: str = Field(..., description="Vendor display name")
    version: Optional[str] = Field(None, description="Latest version label")
    download_count: int = Field(0, ge=0)
    rating: float = Field(0.0, ge=0, le=5)
    review_count: int = Field(0, ge=0)
    release_date: Optional[datetime] = None
    last_update: Optional[datetime] = None


class ProductVersion(BaseModel):
    product_id: str = Field(..., description="Product this version belongs to")
    version: str = Field(..., min_length=1, description="Version label, e.g. 2.4.5")
    date: Optional[datetime] = Field(None, description="Release date")
    changes: List[str] = Field(default_factory=list, description="Ordered change notes")
    file_url: Optional[str] = None
    file_size: Optional[int] = Field(None, ge=0)


class Review(BaseModel):
    product_id: str = Field(...)
    user_id: str = Field(...)
    rating: int = Field(..., ge=1, le=5)
    content: Optional[str] = None
    date: Optional[datetime] = None
    status: ReviewStatus = "pending"


class CartItem(BaseModel):
    user_id: str = Field(..., description="Owner")
    product_id: str = Field(..., description="Product document id as string")
    quantity: int = Field(1, ge=1)
    price: float = Field(..., ge=0, description="Unit price when first added")


class WishlistItem(BaseModel):
    user_id: str
    product_id: str


class OrderItem(BaseModel):
    product_id: str
    title: Optional[str] = None
    price: float = Field(..., ge=0, description="Unit price frozen at checkout")
    quantity: int = Field(..., ge=1)


class Order(BaseModel):
    user_id: str = Field(..., description="User who placed the order")
    items: List[OrderItem] = Field(..., min_length=1)
    total: float = Field(..., ge=0, description="Sum of price * quantity")
    status: OrderStatus = "pending"
    payment_method: Optional[str] = None
    payment_id: Optional[str] = Field(None, description="Reference returned by the gateway")
    checkout_id: Optional[str] = Field(None, description="Idempotency key of the checkout attempt")


class NavItem(BaseModel):
    label: str
    href: str
    position: int = 0
    type: str = "main"


class ConfigItem(BaseModel):
    name: str
    value: str
