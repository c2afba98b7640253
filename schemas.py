"""
Database Schemas for the Ocha café ordering API

Each Pydantic model represents a MongoDB collection. The collection name is the
lowercase class name. Example: class Product -> "product" collection.

Orders and order items are assembled in orders.py from validated request
bodies (…In / …Update), which are declared below the collection models.
"""

import re
from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

SIZE_TOKENS = ("S", "M", "L")
HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")
DEFAULT_OPENING_HOURS = [
    [],
    ["09:00", "17:00"],
    ["09:00", "17:00"],
    ["09:00", "17:00"],
    ["09:00", "17:00"],
    ["09:00", "17:00"],
    ["09:00", "17:00"],
]


def check_phone(value: Optional[str]) -> Optional[str]:
    if value is None or not value.strip():
        return None
    cleaned = value.strip()
    if not re.fullmatch(r"\+?[0-9 ().-]+", cleaned):
        raise ValueError("Invalid phone number")
    digits = re.sub(r"\D", "", cleaned)
    if not 8 <= len(digits) <= 15:
        raise ValueError("Invalid phone number")
    return cleaned


def check_opening_hours(value: List[List[str]]) -> List[List[str]]:
    if len(value) != 7:
        raise ValueError("opening_hours must contain exactly 7 entries (Sunday first)")
    for day in value:
        if len(day) == 0:
            continue
        if len(day) != 2 or not all(HHMM.match(t) for t in day):
            raise ValueError("Invalid format. Use [] for closed or ['HH:MM', 'HH:MM'] for open")
    return value


def check_sizes(value: List[str]) -> List[str]:
    for size in value:
        if size not in SIZE_TOKENS:
            raise ValueError(f"Invalid size: {size}")
    return list(dict.fromkeys(value))


def check_surcharge(value: Dict[str, float]) -> Dict[str, float]:
    for size, extra in value.items():
        if size not in SIZE_TOKENS:
            raise ValueError(f"Invalid size: {size}")
        if extra < 0:
            raise ValueError("Surcharges must be non-negative")
    return value


# -----------------
# Catalog
# -----------------

class Product(BaseModel):
    slug: str = Field(..., pattern=r"^[a-z0-9-]+$", description="URL-friendly unique identifier")
    name: str = Field(..., min_length=1, description="Product name")
    category: str = Field(..., min_length=1, description="Category, e.g. 'milk-tea'")
    description: str = Field(..., description="Marketing description")
    base_price: float = Field(..., ge=0, description="Price of a size S cup, in CHF")
    is_active: bool = Field(True, description="Orderable and listed")
    image: str = Field(..., description="Primary product image URL")
    sizes: List[str] = Field(default_factory=lambda: list(SIZE_TOKENS), description="Offered sizes")
    size_surcharge: Dict[str, float] = Field(
        default_factory=lambda: {"S": 0.0, "M": 2.0, "L": 3.0},
        description="Extra charged per size",
    )

    @field_validator("sizes")
    @classmethod
    def valid_sizes(cls, v):
        return check_sizes(v)

    @field_validator("size_surcharge")
    @classmethod
    def valid_surcharge(cls, v):
        return check_surcharge(v)


class Address(BaseModel):
    line1: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    zipcode: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)


class GeoPoint(BaseModel):
    type: Literal["Point"] = "Point"
    coordinates: List[float] = Field(..., description="[longitude, latitude]")

    @field_validator("coordinates")
    @classmethod
    def valid_lng_lat(cls, v: List[float]) -> List[float]:
        if len(v) != 2 or not (-180 <= v[0] <= 180) or not (-90 <= v[1] <= 90):
            raise ValueError("Coordinates must hold a valid longitude and latitude")
        return v


class Store(BaseModel):
    name: str = Field(..., description="Store display name")
    phone: Optional[str] = Field(None, description="Mobile phone number")
    email: EmailStr
    address: Address
    location: GeoPoint
    is_active: bool = True
    opening_hours: List[List[str]] = Field(
        default_factory=lambda: [list(d) for d in DEFAULT_OPENING_HOURS],
        description="Index 0 = Sunday … 6 = Saturday",
    )

    @field_validator("name")
    @classmethod
    def name_length(cls, v: str) -> str:
        v = v.strip()
        if not 3 <= len(v) <= 50:
            raise ValueError("Store name must be between 3 and 50 characters")
        return v

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()

    @field_validator("phone")
    @classmethod
    def valid_phone(cls, v):
        return check_phone(v)

    @field_validator("opening_hours")
    @classmethod
    def valid_hours(cls, v):
        return check_opening_hours(v)


# -----------------
# Accounts
# -----------------

class User(BaseModel):
    email: EmailStr
    display_name: str
    phone: Optional[str] = None
    role: Literal["user", "admin"] = "user"
    password_hash: str


# ------------
# Request bodies
# ------------

class RegisterIn(BaseModel):
    email: EmailStr
    password: str
    display_name: str
    phone: Optional[str] = None

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("display_name")
    @classmethod
    def valid_display_name(cls, v: str) -> str:
        v = v.strip()
        if not 3 <= len(v) <= 30:
            raise ValueError("Display name must be between 3 and 30 characters")
        if not re.fullmatch(r"[A-Za-z0-9_]+", v):
            raise ValueError("Display name can only contain letters, numbers, and underscores")
        return v

    @field_validator("password")
    @classmethod
    def strong_password(cls, v: str) -> str:
        if len(v) < 8:
            raise ValueError("Password must contain at least 8 characters")
        if not (re.search(r"[a-z]", v) and re.search(r"[A-Z]", v)
                and re.search(r"[0-9]", v) and re.search(r"[\W_]", v)):
            raise ValueError(
                "Password must contain at least one uppercase letter, one lowercase letter, "
                "one number, and one special character"
            )
        return v

    @field_validator("phone")
    @classmethod
    def valid_phone(cls, v):
        return check_phone(v)


class LoginIn(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class CartLineIn(BaseModel):
    product_id: Optional[str] = None
    size: Optional[str] = None
    quantity: Optional[int] = None


class CreateOrderIn(BaseModel):
    store_id: Optional[str] = None
    pickup: Optional[datetime] = None
    items: Optional[List[CartLineIn]] = None


class StatusIn(BaseModel):
    status: Optional[str] = None


class ProductUpdate(BaseModel):
    slug: Optional[str] = None
    name: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    base_price: Optional[float] = None
    is_active: Optional[bool] = None
    image: Optional[str] = None
    sizes: Optional[List[str]] = None
    size_surcharge: Optional[Dict[str, float]] = None


class StoreUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[Address] = None
    location: Optional[GeoPoint] = None
    opening_hours: Optional[List[List[str]]] = None
    is_active: Optional[bool] = None
