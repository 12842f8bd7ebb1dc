"""
Invalidation router.

Maps a settled mutation (entity type, operation, affected id) to the cache
work that must follow it: detail keys to seed from the response, keys to
remove, and key patterns to mark stale. The rules are a static table; a
collection pattern without filters covers every filtered list of its type.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Set, Tuple

from shared.logging import get_logger
from .keys import EntityType, ResourceKey, all_key, collection_key, detail_key


class Operation(str, Enum):
    """Mutation kinds."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    APPLY_TEMPLATE = "apply_template"


# Sentinel id field: resolve to the mutation's affected id
AFFECTED_ID = "@affected"


@dataclass(frozen=True)
class InvalidationRule:
    """Cache consequences of one (entity type, operation) pair."""

    invalidate_collections: Tuple[str, ...] = ()
    invalidate_details: Tuple[Tuple[str, str], ...] = ()
    invalidate_all: Tuple[str, ...] = ()
    seed_detail: bool = False
    remove_detail: bool = False
    # Field of the entity that names its detail key
    detail_id_field: str = "id"


@dataclass
class InvalidationPlan:
    """Concrete cache work for one settled mutation."""

    seed: Dict[ResourceKey, Any] = field(default_factory=dict)
    remove: Set[ResourceKey] = field(default_factory=set)
    invalidate: Set[ResourceKey] = field(default_factory=set)

    def is_empty(self) -> bool:
        return not (self.seed or self.remove or self.invalidate)


_PRODUCT = EntityType.PRODUCT.value
_SYSTEM = EntityType.SYSTEM.value
_BASELINE = EntityType.BASELINE.value

DEFAULT_RULES: Dict[Tuple[str, Operation], InvalidationRule] = {
    (_PRODUCT, Operation.CREATE): InvalidationRule(
        invalidate_collections=(_PRODUCT,),
        seed_detail=True,
    ),
    (_PRODUCT, Operation.UPDATE): InvalidationRule(
        invalidate_collections=(_PRODUCT,),
    ),
    (_PRODUCT, Operation.DELETE): InvalidationRule(
        invalidate_collections=(_PRODUCT,),
        remove_detail=True,
    ),
    (_SYSTEM, Operation.CREATE): InvalidationRule(
        invalidate_collections=(_SYSTEM,),
        invalidate_details=((_PRODUCT, "productId"),),
        seed_detail=True,
    ),
    (_SYSTEM, Operation.UPDATE): InvalidationRule(
        invalidate_collections=(_SYSTEM,),
        invalidate_details=((_PRODUCT, "productId"),),
    ),
    (_SYSTEM, Operation.DELETE): InvalidationRule(
        invalidate_collections=(_SYSTEM,),
        invalidate_details=((_PRODUCT, "productId"),),
        remove_detail=True,
    ),
    (_BASELINE, Operation.CREATE): InvalidationRule(
        invalidate_collections=(_BASELINE,),
        invalidate_details=((_PRODUCT, "productId"),),
        seed_detail=True,
        detail_id_field="productId",
    ),
    (_BASELINE, Operation.UPDATE): InvalidationRule(
        invalidate_collections=(_BASELINE,),
        invalidate_details=((_PRODUCT, "productId"),),
        detail_id_field="productId",
    ),
    (_BASELINE, Operation.DELETE): InvalidationRule(
        invalidate_collections=(_BASELINE,),
        invalidate_details=((_PRODUCT, AFFECTED_ID),),
        remove_detail=True,
        detail_id_field="productId",
    ),
    (_BASELINE, Operation.APPLY_TEMPLATE): InvalidationRule(
        invalidate_collections=(_BASELINE, _PRODUCT),
        invalidate_details=((_PRODUCT, AFFECTED_ID),),
        invalidate_all=(EntityType.ASSESSMENT.value, EntityType.COMPLIANCE.value),
        seed_detail=True,
        detail_id_field="productId",
    ),
}


def _entity_value(entity_type: Any) -> str:
    return entity_type.value if isinstance(entity_type, Enum) else str(entity_type)


class InvalidationRouter:
    """Resolves settled mutations into invalidation plans."""

    def __init__(self, rules: Optional[Mapping[Tuple[str, Operation], InvalidationRule]] = None):
        self.logger = get_logger("compliance_client.invalidation")
        self._rules: Dict[Tuple[str, Operation], InvalidationRule] = dict(
            DEFAULT_RULES if rules is None else rules
        )

    def register(self, entity_type: Any, operation: Operation, rule: InvalidationRule) -> None:
        """Add or replace the rule for (entity type, operation)."""
        self._rules[(_entity_value(entity_type), Operation(operation))] = rule

    def rule_for(self, entity_type: Any, operation: Operation) -> Optional[InvalidationRule]:
        return self._rules.get((_entity_value(entity_type), Operation(operation)))

    def on_mutation_settled(self, entity_type: Any, operation: Operation, affected_id: Optional[str], *,
                            result: Any = None, previous: Any = None) -> InvalidationPlan:
        """Build the plan for a successful mutation.

        ``result`` is the server response (create/update/apply); ``previous``
        is the pre-mutation snapshot value, used when the response carries no
        body (delete).
        """
        entity = _entity_value(entity_type)
        operation = Operation(operation)
        plan = InvalidationPlan()
        rule = self._rules.get((entity, operation))
        if rule is None:
            self.logger.warning("No invalidation rule", entity_type=entity, operation=operation.value)
            return plan

        detail_id = self._lookup(rule.detail_id_field, result, previous) or affected_id
        if rule.seed_detail and detail_id and isinstance(result, Mapping):
            plan.seed[detail_key(entity, detail_id)] = result
        if rule.remove_detail and detail_id:
            plan.remove.add(detail_key(entity, detail_id))

        for related in rule.invalidate_collections:
            plan.invalidate.add(collection_key(related))
        for related, id_field in rule.invalidate_details:
            if id_field == AFFECTED_ID:
                related_id = affected_id
            else:
                related_id = self._lookup(id_field, result, previous)
            if related_id:
                plan.invalidate.add(detail_key(related, related_id))
        for related in rule.invalidate_all:
            plan.invalidate.add(all_key(related))

        self.logger.debug(
            "Invalidation plan built",
            entity_type=entity,
            operation=operation.value,
            affected_id=affected_id,
            seed=[str(key) for key in plan.seed],
            remove=[str(key) for key in plan.remove],
            invalidate=sorted(str(key) for key in plan.invalidate),
        )
        return plan

    def keys_to_invalidate(self, entity_type: Any, operation: Operation, affected_id: Optional[str], *,
                           result: Any = None, previous: Any = None) -> Set[ResourceKey]:
        """Return only the key patterns a settled mutation marks stale."""
        return self.on_mutation_settled(
            entity_type, operation, affected_id, result=result, previous=previous
        ).invalidate

    @staticmethod
    def _lookup(field_name: str, *sources: Any) -> Optional[str]:
        for source in sources:
            if isinstance(source, Mapping) and source.get(field_name):
                return str(source[field_name])
        return None
