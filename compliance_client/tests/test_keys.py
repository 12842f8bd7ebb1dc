"""
Unit tests for resource keys.
"""

import pytest

from compliance_client.app.caching.keys import (
    EntityType,
    ResourceKey,
    Scope,
    all_key,
    collection_key,
    detail_key,
)
from shared.errors import ValidationError


class TestResourceKey:
    """Test cases for ResourceKey."""

    def test_structural_equality(self):
        """Same type and qualifier address the same slot."""
        assert detail_key(EntityType.PRODUCT, "p1") == detail_key("product", "p1")
        assert hash(detail_key(EntityType.PRODUCT, "p1")) == hash(detail_key("product", "p1"))
        assert detail_key(EntityType.PRODUCT, "p1") != detail_key(EntityType.SYSTEM, "p1")
        assert collection_key(EntityType.PRODUCT) != detail_key(EntityType.PRODUCT, "p1")

    def test_filter_order_does_not_matter(self):
        first = collection_key(EntityType.SYSTEM, {"productId": "p1", "environment": "prod"})
        second = collection_key(EntityType.SYSTEM, {"environment": "prod", "productId": "p1"})
        assert first == second

    def test_none_filters_are_dropped(self):
        assert collection_key(EntityType.SYSTEM, {"productId": None}) == collection_key(EntityType.SYSTEM)

    def test_unhashable_filter_values_are_frozen(self):
        key = collection_key(EntityType.SYSTEM, {"ids": ["a", "b"], "meta": {"x": 1}})
        assert hash(key) == hash(collection_key(EntityType.SYSTEM, {"meta": {"x": 1}, "ids": ["a", "b"]}))

    def test_string_rendering(self):
        assert str(detail_key(EntityType.PRODUCT, "p1")) == "product:p1"
        assert str(collection_key(EntityType.PRODUCT)) == "products:list"
        assert str(collection_key(EntityType.SYSTEM, {"productId": "p1"})) == "systems:list?productId=p1"
        assert str(all_key(EntityType.ASSESSMENT)) == "assessments:*"

    def test_detail_key_requires_identifier(self):
        with pytest.raises(ValidationError):
            detail_key(EntityType.PRODUCT, "")

    def test_unfiltered_collection_covers_filtered_collections(self):
        pattern = collection_key(EntityType.SYSTEM)
        assert pattern.covers(collection_key(EntityType.SYSTEM, {"productId": "p1"}))
        assert pattern.covers(collection_key(EntityType.SYSTEM))
        assert not pattern.covers(detail_key(EntityType.SYSTEM, "s1"))
        assert not pattern.covers(collection_key(EntityType.PRODUCT))

    def test_filtered_collection_covers_only_itself(self):
        pattern = collection_key(EntityType.SYSTEM, {"productId": "p1"})
        assert pattern.covers(collection_key(EntityType.SYSTEM, {"productId": "p1"}))
        assert not pattern.covers(collection_key(EntityType.SYSTEM, {"productId": "p2"}))
        assert not pattern.covers(collection_key(EntityType.SYSTEM))

    def test_all_key_covers_every_key_of_its_type(self):
        pattern = all_key(EntityType.ASSESSMENT)
        assert pattern.covers(detail_key(EntityType.ASSESSMENT, "a1"))
        assert pattern.covers(collection_key(EntityType.ASSESSMENT, {"systemId": "s1"}))
        assert not pattern.covers(detail_key(EntityType.PRODUCT, "a1"))

    def test_scope_flags(self):
        key = ResourceKey(EntityType.PRODUCT, Scope.DETAIL, identifier="p1")
        assert key.is_detail
        assert not key.is_collection
        assert key.entity_type == "product"
