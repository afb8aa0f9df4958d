"""
Catalog document models.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReviewStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Product(BaseModel):
    """Product document as stored in the origin store."""

    id: str
    name: str
    description: str = ""
    price: float = Field(ge=0)
    category: str
    images: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    rating: float = 0.0
    reviews_count: int = 0
    in_stock: bool = True
    stock: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def summary(self) -> Dict[str, Any]:
        """Listing projection: only the fields list views need."""
        return self.model_dump(
            mode="json",
            include={"id", "name", "price", "category", "images", "rating", "reviews_count", "in_stock"},
        )


class ProductCreate(BaseModel):
    name: str = Field(min_length=1)
    description: str = ""
    price: float = Field(ge=0)
    category: str = Field(min_length=1)
    images: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    stock: int = Field(default=0, ge=0)


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)
    category: Optional[str] = Field(default=None, min_length=1)
    images: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    stock: Optional[int] = Field(default=None, ge=0)


class Review(BaseModel):
    id: str
    product_id: str
    user_id: str
    rating: int = Field(ge=1, le=5)
    title: str
    comment: str
    status: ReviewStatus = ReviewStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)


class ReviewCreate(BaseModel):
    user_id: str = Field(min_length=1)
    rating: int = Field(ge=1, le=5)
    title: str = Field(min_length=1)
    comment: str = Field(min_length=1)


class ReviewModeration(BaseModel):
    status: ReviewStatus


class WishlistItem(BaseModel):
    product_id: str
    added_at: datetime = Field(default_factory=utcnow)

