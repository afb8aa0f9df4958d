"""
Unit tests for cache key builders.
"""

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_catalog.app.caching import keys


class TestKeyBuilders:
    """Test cases for cache key builders."""

    def test_product_list_key_matches_documented_format(self):
        key = keys.product_list_key(1, 12, "electronics", 0, 100, "-createdAt", None)
        assert key == "products:1:12:electronics:0:100:-createdAt:"

    def test_absent_and_present_filters_differ(self):
        """A missing filter is an empty segment, never dropped."""
        without_category = keys.product_list_key(1, 12, None, 0, 100)
        with_category = keys.product_list_key(1, 12, "electronics", 0, 100)

        assert without_category == "products:1:12::0:100:-createdAt:"
        assert without_category != with_category

    def test_integral_floats_normalize(self):
        assert keys.product_list_key(min_price=10.0) == keys.product_list_key(min_price=10)
        assert keys.product_list_key(min_price=10.5).split(":")[4] == "10.5"

    def test_colons_and_globs_in_values_are_encoded(self):
        key = keys.search_key("a:b*", 20)

        assert key == "search:a%3Ab%2A:20"
        assert key.count(":") == 2

    def test_single_item_keys(self):
        assert keys.product_key("abc") == "product:abc"
        assert keys.category_analytics_key() == "analytics:categories"
        assert keys.filter_options_key() == "filter:options"
        assert keys.product_stats_key() == "stats:products"
        assert keys.wishlist_key("u1") == "wishlist:u1"

    def test_relationship_keys(self):
        assert keys.trending_products_key(10) == "trending:products:10"
        assert keys.trending_category_key("books", 5) == "trending:category:books:5"
        assert keys.user_recommendations_key("u1", 10) == "recommendations:user:u1:10"
        assert keys.similar_products_key("p1", 6) == "similar:product:p1:6"
        assert keys.frequently_bought_key("p1", 4) == "frequently-bought:p1:4"
        assert keys.user_feed_key("u1", 20) == "feed:user:u1:20"

    def test_advanced_search_key_joins_categories(self):
        key = keys.advanced_search_key("phone", ["electronics", "books"], None, 500, 4, "rating", 2, 20)
        assert key == "search:advanced:phone:electronics,books::500:4:rating:2:20"

    def test_response_key(self):
        assert keys.response_key("get", "/api/v1/search/filters?x=1") == "GET:/api/v1/search/filters?x=1"

    def test_boolean_segments(self):
        assert keys.build_key("x", True, False) == "x:true:false"
