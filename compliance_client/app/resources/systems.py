"""
Systems resource.
"""

from typing import Optional

from ..caching.keys import EntityType, ResourceKey
from ..caching.query_executor import QueryOptions, QueryResult
from .base import EntityResource


class SystemResource(EntityResource):
    """``/systems``: systems belong to a product and can be listed per product."""

    entity_type = EntityType.SYSTEM
    path = "/systems"
    list_envelope = "systems"

    def product_list_key(self, product_id: Optional[str]) -> ResourceKey:
        return self.list_key({"productId": product_id})

    async def for_product(self, product_id: Optional[str] = None, *,
                          options: Optional[QueryOptions] = None) -> QueryResult:
        """Systems of one product, or every system when ``product_id`` is empty."""
        filters = {"productId": product_id} if product_id else None
        return await self.list(filters, options=options)
