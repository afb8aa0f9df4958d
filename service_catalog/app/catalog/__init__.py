"""
Catalog domain: document models and the origin repository.
"""

from .models import Product, ProductCreate, ProductUpdate, Review, ReviewCreate, ReviewModeration, ReviewStatus
from .repository import CatalogRepository

__all__ = [
    "CatalogRepository",
    "Product",
    "ProductCreate",
    "ProductUpdate",
    "Review",
    "ReviewCreate",
    "ReviewModeration",
    "ReviewStatus",
]
