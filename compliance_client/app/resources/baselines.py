"""
Baselines resource.

A baseline is the set of NIST CSF controls applicable to a product. There is
at most one baseline per product, so baselines are addressed by
``productId`` rather than by their own id.
"""

from typing import Any, Dict, List, Optional, Sequence

from ..caching.invalidation import Operation
from ..caching.keys import EntityType, ResourceKey, collection_key
from ..caching.mutation_executor import MutationResult
from ..caching.query_executor import QueryOptions, QueryResult
from .base import EntityResource


DEFAULT_TEMPLATE_STALE_TIME = 1800.0


class BaselineResource(EntityResource):
    """``/baselines``: every payload is wrapped in ``{data: ...}``."""

    entity_type = EntityType.BASELINE
    path = "/baselines"
    list_envelope = "data"
    detail_envelope = "data"

    def __init__(self, *args, template_stale_time: float = DEFAULT_TEMPLATE_STALE_TIME, **kwargs):
        super().__init__(*args, **kwargs)
        self.template_stale_time = template_stale_time

    def detail_path(self, product_id: str) -> str:
        return f"{self.path}/product/{product_id}"

    def templates_key(self) -> ResourceKey:
        return collection_key(EntityType.BASELINE_TEMPLATE)

    async def templates(self, *, options: Optional[QueryOptions] = None) -> QueryResult:
        """Available baseline templates; they rarely change, so they stay fresh longer."""
        async def fetch() -> List[Dict[str, Any]]:
            body = await self.api.get(f"{self.path}/templates")
            return self._unwrap_list(body)

        return await self.queries.query(
            self.templates_key(),
            fetch,
            options or QueryOptions(stale_time=self.template_stale_time),
        )

    async def apply_template(self, product_id: str, template_id: Optional[str] = None,
                             control_ids: Optional[Sequence[str]] = None) -> MutationResult:
        """Apply a template (or an explicit control list) to a product.

        The result data is ``{data: baseline, summary: {...}}``.
        """
        payload: Dict[str, Any] = {}
        if template_id is not None:
            payload["templateId"] = template_id
        if control_ids is not None:
            payload["controlIds"] = list(control_ids)

        async def request() -> Any:
            return await self.api.post(f"{self.detail_path(product_id)}/apply-template", payload)

        result = await self.mutations.execute(
            self.entity_type,
            Operation.APPLY_TEMPLATE,
            request,
            affected_id=product_id,
            key=self.detail_key(product_id),
            select=lambda body: body.get("data") if isinstance(body, dict) else None,
        )
        self._log_result(result)
        return result

    async def control_ids(self, product_id: str) -> List[str]:
        """Control ids of the product's baseline; empty when there is none."""
        baseline = (await self.get(product_id)).data
        if not isinstance(baseline, dict):
            return []
        return list(baseline.get("controlIds") or [])

    async def add_control(self, product_id: str, control_id: str) -> Optional[MutationResult]:
        """Add one control; no request is made when there is no baseline or it already has it."""
        baseline = (await self.get(product_id)).data
        if not isinstance(baseline, dict):
            return None
        control_ids = list(baseline.get("controlIds") or [])
        if control_id in control_ids:
            return None
        control_ids.append(control_id)
        return await self.update(product_id, {"controlIds": control_ids})

    async def remove_control(self, product_id: str, control_id: str) -> Optional[MutationResult]:
        """Remove one control from the product's baseline."""
        baseline = (await self.get(product_id)).data
        if not isinstance(baseline, dict):
            return None
        control_ids = [cid for cid in baseline.get("controlIds") or [] if cid != control_id]
        return await self.update(product_id, {"controlIds": control_ids})

    async def set_controls(self, product_id: str, control_ids: Sequence[str]) -> MutationResult:
        return await self.update(product_id, {"controlIds": list(control_ids)})

    async def has_control(self, product_id: str, control_id: str) -> bool:
        return control_id in await self.control_ids(product_id)

    async def has_baseline(self, product_id: str) -> bool:
        """A product counts as baselined once its baseline lists at least one control."""
        return len(await self.control_ids(product_id)) > 0
