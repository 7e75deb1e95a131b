"""
Database Schemas

Pydantic models for the MongoDB collections and the request bodies of the API.
Collection name is the lowercase class name:
- Product -> "product" collection
- Category -> "category" collection
- User -> "user" collection
- UserAddress -> "useraddress" collection
- AuditLog -> "auditlog" collection

Orders live in "order" with their line items embedded.
Request bodies accept the camelCase names used by the storefront client.
"""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, HttpUrl, field_validator


class ProductType(str, Enum):
    chain = "CHAIN"
    ring = "RING"
    bracelet = "BRACELET"
    earring = "EARRING"
    pendant = "PENDANT"


class OrderStatus(str, Enum):
    pending = "PENDING"
    paid = "PAID"
    shipped = "SHIPPED"
    cancelled = "CANCELLED"


class UserRole(str, Enum):
    user = "USER"
    admin = "ADMIN"


class ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


def _strip(value):
    if isinstance(value, str):
        return value.strip()
    return value


def _blank_to_none(value):
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


# ---------- Catalog ----------

class Product(ApiModel):
    name: str = Field(..., min_length=2)
    slug: str = Field(..., min_length=2)
    description: str = Field(..., min_length=10)
    price: float = Field(..., gt=0, description="Price in COP")
    material: str = Field(..., min_length=2)
    type: ProductType
    images: List[HttpUrl] = Field(..., min_length=1)
    stock: int = Field(0, ge=0)
    is_featured: bool = Field(False, alias="isFeatured")
    category_id: Optional[str] = Field(None, alias="categoryId")


class ProductUpdate(ApiModel):
    name: Optional[str] = Field(None, min_length=2)
    description: Optional[str] = Field(None, min_length=10)
    price: Optional[float] = Field(None, gt=0)
    material: Optional[str] = Field(None, min_length=2)
    type: Optional[ProductType] = None
    images: Optional[List[HttpUrl]] = Field(None, min_length=1)
    stock: Optional[int] = Field(None, ge=0)
    is_featured: Optional[bool] = Field(None, alias="isFeatured")
    category_id: Optional[str] = Field(None, alias="categoryId")


class Category(ApiModel):
    name: str = Field(..., min_length=1)
    slug: str = Field(..., min_length=1, pattern=r"^[a-z0-9-]+$")
    is_active: bool = Field(True, alias="isActive")


class CategoryUpdate(ApiModel):
    name: Optional[str] = Field(None, min_length=1)
    slug: Optional[str] = Field(None, min_length=1, pattern=r"^[a-z0-9-]+$")
    is_active: Optional[bool] = Field(None, alias="isActive")


# ---------- Orders ----------

class CartItem(ApiModel):
    product_id: str = Field(..., min_length=1, alias="productId")
    quantity: int = Field(..., gt=0)


class OrderCreate(ApiModel):
    customer_name: str = Field(..., min_length=2, alias="customerName")
    customer_email: EmailStr = Field(..., alias="customerEmail")
    customer_phone: Optional[str] = Field(None, alias="customerPhone")
    shipping_address: str = Field(..., min_length=5, alias="shippingAddress")
    shipping_city: str = Field(..., min_length=2, alias="shippingCity")
    items: List[CartItem] = Field(..., min_length=1)

    @field_validator("customer_name", "shipping_address", "shipping_city", mode="before")
    @classmethod
    def strip_text(cls, value):
        return _strip(value)

    @field_validator("customer_phone", mode="before")
    @classmethod
    def optional_phone(cls, value):
        return _blank_to_none(value)


class OrderStatusChange(ApiModel):
    status: OrderStatus


# ---------- Users ----------

class User(ApiModel):
    email: EmailStr
    password_hash: str
    name: Optional[str] = None
    role: UserRole = UserRole.user


class RegisterRequest(ApiModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    name: Optional[str] = Field(None, max_length=120)

    @field_validator("name", mode="before")
    @classmethod
    def optional_name(cls, value):
        return _blank_to_none(value)


class LoginRequest(ApiModel):
    email: EmailStr
    password: str = Field(..., min_length=6)


class UserUpdate(ApiModel):
    role: Optional[UserRole] = None
    name: Optional[str] = Field(None, max_length=120)

    @field_validator("name", mode="before")
    @classmethod
    def optional_name(cls, value):
        return _blank_to_none(value)


class UserAddress(ApiModel):
    label: Optional[str] = Field(None, max_length=50)
    full_name: str = Field(..., min_length=2, alias="fullName")
    email: EmailStr
    phone: Optional[str] = None
    shipping_address: str = Field(..., min_length=5, alias="shippingAddress")
    shipping_city: str = Field(..., min_length=2, alias="shippingCity")

    @field_validator("full_name", "shipping_address", "shipping_city", mode="before")
    @classmethod
    def strip_text(cls, value):
        return _strip(value)

    @field_validator("phone", mode="before")
    @classmethod
    def optional_phone(cls, value):
        return _blank_to_none(value)


# ---------- Audit ----------

class AuditLog(ApiModel):
    action: str
    user_id: Optional[str] = None
    entity: Optional[str] = None
    entity_id: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
