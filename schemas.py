"""
Request schemas for the storefront API.

Each *Create model mirrors a MongoDB collection (collection name is the
snake_case of the entity, e.g. ProductVariant -> "product_variant").
*Update models carry the same fields, all optional, for PATCH.
"""
from datetime import datetime
from enum import Enum
from typing import ClassVar, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator


class PatchModel(BaseModel):
    """PATCH body. Fields named in ``not_null`` may be left out but not sent as null."""

    not_null: ClassVar[Tuple[str, ...]] = ()

    @model_validator(mode="after")
    def reject_nulls(self):
        nulls = [name for name in self.not_null if name in self.model_fields_set and getattr(self, name) is None]
        if nulls:
            raise ValueError(f"{', '.join(nulls)} cannot be null")
        return self


class Role(str, Enum):
    ADMIN = "ADMIN"
    USER = "USER"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class PaymentMethod(str, Enum):
    CREDIT_CARD = "CreditCard"
    PAYPAL = "PayPal"
    CASH_ON_DELIVERY = "CashOnDelivery"
    BANK_TRANSFER = "BankTransfer"


# Users

class UserCreate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    email: EmailStr
    password: str = Field(..., min_length=6)
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    phone: Optional[str] = None
    role: Role = Role.USER
    avatar: Optional[str] = None


class UserUpdate(PatchModel):
    model_config = ConfigDict(use_enum_values=True)
    not_null = ("email", "password", "first_name", "last_name", "role", "is_active")

    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=6)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    role: Optional[Role] = None
    avatar: Optional[str] = None
    is_active: Optional[bool] = None


class UserOut(BaseModel):
    id: str
    email: EmailStr
    first_name: str
    last_name: str
    phone: Optional[str] = None
    role: Role = Role.USER
    avatar: Optional[str] = None
    is_active: bool = True


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


# Catalog

class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    image: Optional[str] = None
    is_active: bool = True


class CategoryUpdate(PatchModel):
    not_null = ("name", "is_active")

    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    image: Optional[str] = None
    is_active: Optional[bool] = None


class SubcategoryCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    image: Optional[str] = None
    category_id: str
    is_active: bool = True


class SubcategoryUpdate(PatchModel):
    not_null = ("name", "category_id", "is_active")

    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    image: Optional[str] = None
    category_id: Optional[str] = None
    is_active: Optional[bool] = None


class CollectionCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    image: Optional[str] = None
    is_active: bool = True


class CollectionUpdate(PatchModel):
    not_null = ("name", "is_active")

    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    image: Optional[str] = None
    is_active: Optional[bool] = None


class ProductImage(BaseModel):
    url: str = Field(..., min_length=1)
    color: Optional[str] = None
    is_main: bool = False
    order: Optional[int] = None


class ProductVariant(BaseModel):
    color: str = Field(..., min_length=1, description="e.g., Red")
    size: str = Field(..., min_length=1, description="e.g., M")
    stock: int = Field(0, ge=0)
    price: Optional[float] = Field(None, ge=0, description="Overrides the product price")
    sku: Optional[str] = None


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    price: float = Field(..., ge=0)
    stock: int = Field(0, ge=0)
    sku: Optional[str] = None
    category_id: str
    subcategory_id: Optional[str] = None
    collection_id: Optional[str] = None
    is_active: bool = True
    is_featured: bool = False
    is_on_sale: bool = False
    sale_price: Optional[float] = Field(None, ge=0)
    sale_badge: Optional[str] = None
    images: List[ProductImage] = []
    variants: List[ProductVariant] = []


class ProductUpdate(PatchModel):
    not_null = ("name", "description", "price", "stock", "sku", "category_id", "is_active", "is_featured", "is_on_sale")

    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    sku: Optional[str] = None
    category_id: Optional[str] = None
    subcategory_id: Optional[str] = None
    collection_id: Optional[str] = None
    is_active: Optional[bool] = None
    is_featured: Optional[bool] = None
    is_on_sale: Optional[bool] = None
    sale_price: Optional[float] = Field(None, ge=0)
    sale_badge: Optional[str] = None


class ProductFilters(BaseModel):
    category_id: Optional[str] = None
    subcategory_id: Optional[str] = None
    collection_id: Optional[str] = None
    is_active: Optional[bool] = None
    is_featured: Optional[bool] = None
    is_on_sale: Optional[bool] = None
    min_price: Optional[float] = Field(None, ge=0)
    max_price: Optional[float] = Field(None, ge=0)
    search: Optional[str] = None
    sort_by: Optional[Literal["name", "price", "created_at", "updated_at"]] = None
    sort_order: Literal["asc", "desc"] = "desc"
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=100)


# Cart & favorites

class CartItemCreate(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)
    color: Optional[str] = None
    size: Optional[str] = None


class CartItemUpdate(BaseModel):
    quantity: int = Field(..., ge=1)


class FavoriteCreate(BaseModel):
    product_id: str


# Sales

class SaleCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    discount_type: Literal["percentage", "fixed"]
    discount_value: float = Field(..., ge=0)
    start_date: datetime
    end_date: datetime
    is_active: bool = True
    minimum_order: Optional[float] = Field(None, ge=0)
    maximum_discount: Optional[float] = Field(None, ge=0)
    product_ids: List[str] = []


class SaleUpdate(PatchModel):
    not_null = ("name", "discount_type", "discount_value", "start_date", "end_date", "is_active", "product_ids")

    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    discount_type: Optional[Literal["percentage", "fixed"]] = None
    discount_value: Optional[float] = Field(None, ge=0)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: Optional[bool] = None
    minimum_order: Optional[float] = Field(None, ge=0)
    maximum_discount: Optional[float] = Field(None, ge=0)
    product_ids: Optional[List[str]] = None


# Orders

class OrderItemCreate(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)
    color: Optional[str] = None
    size: Optional[str] = None


class OrderCreate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    user_id: Optional[str] = Field(None, description="Admins may order on behalf of a user")
    items: List[OrderItemCreate] = Field(..., min_length=1)
    shipping_address: str = Field(..., min_length=1)
    payment_method: PaymentMethod
    total_amount: float = Field(..., ge=0)
    notes: Optional[str] = None


class OrderStatusUpdate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    status: OrderStatus


class PaymentStatusUpdate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    payment_status: PaymentStatus


class OrderUpdate(BaseModel):
    notes: Optional[str] = None


class OrderCancel(BaseModel):
    reason: str = ""


class AddressCreate(BaseModel):
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip_code: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)


# Uploads

class FileDelete(BaseModel):
    file_path: str = Field(..., min_length=1)
