from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from decimal import Decimal


class CategoryRead(BaseModel):
    id: int
    name: str
    display_order: int

    class Config:
        from_attributes = True


class CategoryCreate(BaseModel):
    name: str
    display_order: int = 0


class CategoryUpdate(BaseModel):
    name: Optional[str] = None
    display_order: Optional[int] = None

    class Config:
        extra = "forbid"


class MenuItemRead(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    price: Decimal
    category_id: Optional[int] = None
    is_available: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class MenuItemCreate(BaseModel):
    name: str
    description: Optional[str] = None
    price: Decimal
    category_id: Optional[int] = None
    is_available: bool = True


class MenuItemUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[Decimal] = None
    category_id: Optional[int] = None

    class Config:
        extra = "forbid"


class MenuItemAvailability(BaseModel):
    is_available: bool
