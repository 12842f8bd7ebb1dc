"""
Products resource.
"""

from ..caching.keys import EntityType
from .base import EntityResource


class ProductResource(EntityResource):
    """``/products``: list envelope ``{products, total}``, bare entities otherwise."""

    entity_type = EntityType.PRODUCT
    path = "/products"
    list_envelope = "products"
