"""
Database Schemas for the Storefront

Each Pydantic model corresponds to one MongoDB collection.
Collection name is the snake_case of the class name.
"""
import base64
import binascii
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")
OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled"]

MAX_IMAGE_BYTES = 5 * 1024 * 1024


def check_image(value: Optional[str]) -> Optional[str]:
    """Accept a plain URL or a base64 ``data:image/*`` URL of at most 5MB."""
    if not value or not value.startswith("data:"):
        return value
    header, _, payload = value.partition(",")
    if not header.startswith("data:image/") or not header.endswith(";base64"):
        raise ValueError("Image must be an image data URL")
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise ValueError("Image data is not valid base64")
    if len(raw) > MAX_IMAGE_BYTES:
        raise ValueError("Image size must be less than 5MB")
    return value


class User(BaseModel):
    email: EmailStr
    password_hash: str = Field(..., description="Hashed password")
    role: Literal["user", "admin"] = "user"
    name: Optional[str] = None
    phone: Optional[str] = None


class Category(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None


class Product(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    price: float = Field(..., ge=0)
    category_id: Optional[str] = None
    image: Optional[str] = None
    stock: int = Field(0, ge=0)
    created_by: Optional[str] = None

    @field_validator("image")
    @classmethod
    def validate_image(cls, v):
        return check_image(v)


class Address(BaseModel):
    user_id: str
    name: str
    street: str
    city: str
    state: str
    postal_code: str
    country: str
    is_default: bool = False


class CartItem(BaseModel):
    user_id: str
    product_id: str
    quantity: int = Field(..., gt=0)


class WishlistItem(BaseModel):
    user_id: str
    product_id: str


class ShippingAddress(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    street: str
    city: str
    state: str
    postal_code: str = Field(..., alias="zipCode")
    country: Optional[str] = None


class Order(BaseModel):
    user_id: str
    user_email: EmailStr
    total: float = Field(..., ge=0)
    status: OrderStatus = "pending"
    shipping_address: ShippingAddress
    updated_by: Optional[str] = None


class OrderItem(BaseModel):
    order_id: str
    product_id: str
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., gt=0)


class ActivityLog(BaseModel):
    type: Literal["order_created", "order_status_updated"]
    user_id: Optional[str] = None
    user_email: str
    details: dict = Field(default_factory=dict)


class OrderLineIn(BaseModel):
    """A cart line at checkout.

    Cart clients also post the line's name and price; those are ignored
    (extra fields) and re-read from the product row when the order is placed.
    """
    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(..., alias="productId")
    quantity: int = Field(..., gt=0)


class OrderCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    items: List[OrderLineIn] = Field(..., min_length=1)
    total: Optional[float] = Field(None, ge=0)
    shipping_address: ShippingAddress = Field(..., alias="shippingAddress")
