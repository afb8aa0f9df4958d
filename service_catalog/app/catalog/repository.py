"""
In-memory origin store for the catalog.

Stands in for the document database behind an async interface. Every read
method increments ``query_count`` so callers can observe whether a request
reached the origin or was answered from cache.
"""

import math
import uuid
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional

from shared.errors import NotFoundError, ValidationError
from shared.logging import get_logger
from .models import (
    Product,
    ProductCreate,
    ProductUpdate,
    Review,
    ReviewCreate,
    ReviewStatus,
    WishlistItem,
    utcnow,
)


SORT_FIELDS = {
    "createdAt": "created_at",
    "price": "price",
    "rating": "rating",
    "name": "name",
    "reviewsCount": "reviews_count",
}

ADVANCED_SORTS = {
    "newest": ("created_at", True),
    "price-asc": ("price", False),
    "price-desc": ("price", True),
    "rating": ("rating", True),
    "popularity": ("reviews_count", True),
}

RATING_OPTIONS = [
    {"value": 4, "label": "4 Stars & Up"},
    {"value": 3, "label": "3 Stars & Up"},
    {"value": 2, "label": "2 Stars & Up"},
    {"value": 1, "label": "1 Star & Up"},
]

SORT_OPTIONS = [
    {"value": "relevance", "label": "Relevance"},
    {"value": "newest", "label": "Newest"},
    {"value": "price-asc", "label": "Price: Low to High"},
    {"value": "price-desc", "label": "Price: High to Low"},
    {"value": "rating", "label": "Highest Rated"},
    {"value": "popularity", "label": "Most Popular"},
]


def _text_score(product: Product, terms: List[str]) -> int:
    haystack = " ".join([product.name, product.description, *product.tags]).lower()
    return sum(haystack.count(term) for term in terms)


def _terms(query: str) -> List[str]:
    return [term for term in query.lower().split() if term]


class CatalogRepository:
    """Products, reviews and wishlists held in process memory."""

    def __init__(self, products: Optional[Iterable[Product]] = None):
        self.logger = get_logger("catalog.repository")
        self._products: Dict[str, Product] = {}
        self._reviews: Dict[str, Review] = {}
        self._wishlists: Dict[str, List[WishlistItem]] = defaultdict(list)
        self.query_count = 0

        for product in products or ():
            self._products[product.id] = product

    # Products

    async def list_products(
        self,
        page: int = 1,
        limit: int = 12,
        category: Optional[str] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        sort: str = "-createdAt",
        search: Optional[str] = None,
    ) -> Dict[str, Any]:
        self.query_count += 1
        matches = list(self._products.values())

        if search:
            terms = _terms(search)
            matches = [product for product in matches if _text_score(product, terms) > 0]
        if category:
            matches = [product for product in matches if product.category == category]
        if min_price is not None:
            matches = [product for product in matches if product.price >= min_price]
        if max_price is not None:
            matches = [product for product in matches if product.price <= max_price]

        descending = sort.startswith("-")
        field = SORT_FIELDS.get(sort.lstrip("-"))
        if field is None:
            raise ValidationError("Unsupported sort field", {"sort": sort})
        matches.sort(key=lambda product: getattr(product, field), reverse=descending)

        total = len(matches)
        start = (page - 1) * limit
        return {
            "products": [product.summary() for product in matches[start:start + limit]],
            "pagination": {
                "page": page,
                "limit": limit,
                "total_products": total,
                "total_pages": math.ceil(total / limit) if limit else 0,
            },
        }

    async def get_product(self, product_id: str) -> Optional[Dict[str, Any]]:
        self.query_count += 1
        product = self._products.get(product_id)
        if product is None:
            return None

        payload = product.model_dump(mode="json")
        payload["reviews"] = [
            review.model_dump(mode="json")
            for review in self._reviews.values()
            if review.product_id == product_id and review.status == ReviewStatus.APPROVED
        ]
        return payload

    async def create_product(self, data: ProductCreate) -> Product:
        product = Product(id=uuid.uuid4().hex, in_stock=data.stock > 0, **data.model_dump())
        self._products[product.id] = product
        self.logger.info("Product created", product_id=product.id)
        return product

    async def update_product(self, product_id: str, data: ProductUpdate) -> Product:
        product = self._require_product(product_id)
        changes = data.model_dump(exclude_unset=True)
        if "stock" in changes:
            changes["in_stock"] = changes["stock"] > 0
        updated = product.model_copy(update={**changes, "updated_at": utcnow()})
        self._products[product_id] = updated
        self.logger.info("Product updated", product_id=product_id, fields=sorted(changes))
        return updated

    async def delete_product(self, product_id: str) -> None:
        self._require_product(product_id)
        del self._products[product_id]
        for review_id in [rid for rid, review in self._reviews.items() if review.product_id == product_id]:
            del self._reviews[review_id]
        for items in self._wishlists.values():
            items[:] = [item for item in items if item.product_id != product_id]
        self.logger.info("Product deleted", product_id=product_id)

    async def category_analytics(self) -> List[Dict[str, Any]]:
        self.query_count += 1
        groups: Dict[str, List[Product]] = defaultdict(list)
        for product in self._products.values():
            groups[product.category].append(product)

        analytics = [
            {
                "category": category,
                "count": len(products),
                "avg_price": sum(p.price for p in products) / len(products),
                "min_price": min(p.price for p in products),
                "max_price": max(p.price for p in products),
                "total_in_stock": sum(1 for p in products if p.in_stock),
            }
            for category, products in groups.items()
        ]
        analytics.sort(key=lambda row: row["count"], reverse=True)
        return analytics

    async def search(self, query: str, limit: int = 20) -> List[Dict[str, Any]]:
        self.query_count += 1
        terms = _terms(query)
        scored = [(product, _text_score(product, terms)) for product in self._products.values()]
        scored = [(product, score) for product, score in scored if score > 0]
        scored.sort(key=lambda item: item[1], reverse=True)
        return [
            {**product.summary(), "score": score}
            for product, score in scored[:limit]
        ]

    async def advanced_search(
        self,
        query: Optional[str] = None,
        categories: Optional[List[str]] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        min_rating: Optional[float] = None,
        sort_by: str = "relevance",
        page: int = 1,
        limit: int = 20,
    ) -> Dict[str, Any]:
        self.query_count += 1
        terms = _terms(query) if query else []
        rows = []
        for product in self._products.values():
            score = _text_score(product, terms) if terms else 0
            if terms and score == 0:
                continue
            if categories and product.category not in categories:
                continue
            if min_price is not None and product.price < min_price:
                continue
            if max_price is not None and product.price > max_price:
                continue
            if min_rating is not None and product.rating < min_rating:
                continue
            rows.append((product, score))

        if sort_by in ADVANCED_SORTS:
            field, descending = ADVANCED_SORTS[sort_by]
            rows.sort(key=lambda row: getattr(row[0], field), reverse=descending)
        else:
            rows.sort(key=lambda row: (row[1], row[0].reviews_count), reverse=True)

        total = len(rows)
        start = (page - 1) * limit
        return {
            "products": [product.summary() for product, _ in rows[start:start + limit]],
            "pagination": {
                "page": page,
                "limit": limit,
                "total_products": total,
                "total_pages": math.ceil(total / limit) if limit else 0,
            },
            "filters": {
                "query": query,
                "categories": categories or [],
                "min_price": min_price,
                "max_price": max_price,
                "min_rating": min_rating,
                "sort_by": sort_by,
            },
        }

    async def trending(self, limit: int = 10, category: Optional[str] = None) -> List[Dict[str, Any]]:
        self.query_count += 1
        candidates = [
            product for product in self._products.values()
            if product.in_stock and (category is None or product.category == category)
        ]
        candidates.sort(key=lambda product: (product.reviews_count, product.rating), reverse=True)
        return [product.summary() for product in candidates[:limit]]

    async def filter_options(self) -> Dict[str, Any]:
        self.query_count += 1
        prices = [product.price for product in self._products.values()]
        distribution: Dict[float, int] = defaultdict(int)
        for product in self._products.values():
            distribution[product.rating] += 1

        return {
            "categories": sorted({product.category for product in self._products.values()}),
            "price_range": {
                "min_price": min(prices) if prices else 0,
                "max_price": max(prices) if prices else 0,
            },
            "rating_options": RATING_OPTIONS,
            "sort_options": SORT_OPTIONS,
            "rating_distribution": [
                {"rating": rating, "count": count} for rating, count in sorted(distribution.items())
            ],
        }

    async def product_stats(self) -> Optional[Dict[str, Any]]:
        self.query_count += 1
        products = list(self._products.values())
        if not products:
            return None
        in_stock = sum(1 for product in products if product.in_stock)
        return {
            "total_products": len(products),
            "in_stock_count": in_stock,
            "out_of_stock_count": len(products) - in_stock,
            "avg_price": sum(p.price for p in products) / len(products),
            "min_price": min(p.price for p in products),
            "max_price": max(p.price for p in products),
            "avg_rating": sum(p.rating for p in products) / len(products),
        }

    # Recommendations

    async def recommendations_for_user(self, user_id: str, limit: int = 10) -> Optional[List[Dict[str, Any]]]:
        """Products from the categories on the user's wishlist.

        Returns None when the user has no wishlist history, so the caller
        can fall back to trending products.
        """
        self.query_count += 1
        items = self._wishlists.get(user_id) or []
        owned = {item.product_id for item in items}
        categories = {
            self._products[item.product_id].category
            for item in items
            if item.product_id in self._products
        }
        if not categories:
            return None

        candidates = [
            product for product in self._products.values()
            if product.category in categories and product.in_stock and product.id not in owned
        ]
        candidates.sort(key=lambda product: (product.rating, product.reviews_count), reverse=True)
        return [product.summary() for product in candidates[:limit]]

    async def similar_products(self, product_id: str, limit: int = 8) -> Optional[List[Dict[str, Any]]]:
        self.query_count += 1
        product = self._products.get(product_id)
        if product is None:
            return None

        candidates = [
            other for other in self._products.values()
            if other.id != product_id
            and other.category == product.category
            and other.in_stock
            and product.price * 0.5 <= other.price <= product.price * 1.5
        ]
        candidates.sort(key=lambda other: (other.rating, other.reviews_count), reverse=True)
        return [other.summary() for other in candidates[:limit]]

    async def frequently_bought_together(self, product_id: str, limit: int = 5) -> Optional[List[Dict[str, Any]]]:
        """In-stock products most often wishlisted alongside ``product_id``."""
        self.query_count += 1
        if product_id not in self._products:
            return None

        frequency: Dict[str, int] = defaultdict(int)
        for items in self._wishlists.values():
            product_ids = {item.product_id for item in items}
            if product_id not in product_ids:
                continue
            for other_id in product_ids - {product_id}:
                frequency[other_id] += 1

        candidates = [
            (self._products[other_id], count)
            for other_id, count in frequency.items()
            if other_id in self._products and self._products[other_id].in_stock
        ]
        candidates.sort(key=lambda row: (row[1], row[0].rating), reverse=True)
        return [product.summary() for product, _ in candidates[:limit]]

    async def personalized_feed(self, user_id: str, limit: int = 20) -> List[Dict[str, Any]]:
        """Top-rated products from the user's wishlist categories, topped up with trending ones."""
        self.query_count += 1
        items = self._wishlists.get(user_id) or []
        owned = {item.product_id for item in items}
        categories = {
            self._products[item.product_id].category
            for item in items
            if item.product_id in self._products
        }
        in_stock = [
            product for product in self._products.values()
            if product.in_stock and product.id not in owned
        ]

        preferred = [product for product in in_stock if product.category in categories]
        preferred.sort(key=lambda product: (product.rating, product.reviews_count), reverse=True)
        others = [product for product in in_stock if product.category not in categories]
        others.sort(key=lambda product: (product.reviews_count, product.rating), reverse=True)

        return [product.summary() for product in (preferred + others)[:limit]]

    # Reviews

    async def add_review(self, product_id: str, data: ReviewCreate) -> Review:
        self._require_product(product_id)
        duplicate = any(
            review.product_id == product_id and review.user_id == data.user_id
            for review in self._reviews.values()
        )
        if duplicate:
            raise ValidationError("You have already reviewed this product", {"product_id": product_id})

        review = Review(id=uuid.uuid4().hex, product_id=product_id, **data.model_dump())
        self._reviews[review.id] = review
        return review

    async def list_reviews(self, product_id: str, page: int = 1, limit: int = 10, sort: str = "newest") -> Dict[str, Any]:
        """Approved reviews for a product with a 1-5 star breakdown."""
        self.query_count += 1
        self._require_product(product_id)
        approved = [
            review for review in self._reviews.values()
            if review.product_id == product_id and review.status == ReviewStatus.APPROVED
        ]

        if sort == "rating-high":
            approved.sort(key=lambda review: review.rating, reverse=True)
        elif sort == "rating-low":
            approved.sort(key=lambda review: review.rating)
        else:
            approved.sort(key=lambda review: review.created_at, reverse=True)

        breakdown = {str(stars): 0 for stars in range(1, 6)}
        for review in approved:
            breakdown[str(review.rating)] += 1

        start = (page - 1) * limit
        return {
            "reviews": [review.model_dump(mode="json") for review in approved[start:start + limit]],
            "pagination": {
                "page": page,
                "limit": limit,
                "total_reviews": len(approved),
                "total_pages": math.ceil(len(approved) / limit) if limit else 0,
            },
            "rating_breakdown": breakdown,
        }

    async def moderate_review(self, review_id: str, status: ReviewStatus) -> Review:
        review = self._reviews.get(review_id)
        if review is None:
            raise NotFoundError("Review", review_id)

        review = review.model_copy(update={"status": status})
        self._reviews[review_id] = review
        self._refresh_rating(review.product_id)
        return review

    def _refresh_rating(self, product_id: str) -> None:
        product = self._products.get(product_id)
        if product is None:
            return
        approved = [
            review.rating for review in self._reviews.values()
            if review.product_id == product_id and review.status == ReviewStatus.APPROVED
        ]
        rating = round(sum(approved) / len(approved), 2) if approved else 0.0
        self._products[product_id] = product.model_copy(
            update={"rating": rating, "reviews_count": len(approved), "updated_at": utcnow()}
        )

    # Wishlists

    async def get_wishlist(self, user_id: str) -> Dict[str, Any]:
        self.query_count += 1
        items = self._wishlists.get(user_id) or []
        return {
            "user_id": user_id,
            "items": [
                {**item.model_dump(mode="json"), "product": self._products[item.product_id].summary()}
                for item in items
                if item.product_id in self._products
            ],
        }

    async def add_to_wishlist(self, user_id: str, product_id: str) -> WishlistItem:
        self._require_product(product_id)
        items = self._wishlists[user_id]
        if any(item.product_id == product_id for item in items):
            raise ValidationError("Product already in wishlist", {"product_id": product_id})
        item = WishlistItem(product_id=product_id)
        items.append(item)
        return item

    async def remove_from_wishlist(self, user_id: str, product_id: str) -> None:
        items = self._wishlists.get(user_id) or []
        remaining = [item for item in items if item.product_id != product_id]
        if len(remaining) == len(items):
            raise NotFoundError("Wishlist item", product_id)
        self._wishlists[user_id] = remaining

    def _require_product(self, product_id: str) -> Product:
        product = self._products.get(product_id)
        if product is None:
            raise NotFoundError("Product", product_id)
        return product
