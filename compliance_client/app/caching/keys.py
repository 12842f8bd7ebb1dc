"""
Resource keys: structural identity of cache slots.

A key is (entity type, scope qualifier). Two keys with the same entity type
and the same qualifier address the same cache slot. Keys are also used as
patterns when invalidating: a collection key without filters covers every
filtered collection of its entity type, and an ``all`` key covers every key
of its entity type.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Tuple

from shared.errors import ValidationError


class EntityType(str, Enum):
    """Entity types known to the cache."""
    PRODUCT = "product"
    BASELINE = "baseline"
    SYSTEM = "system"
    # Only ever targeted by invalidation
    BASELINE_TEMPLATE = "baseline_template"
    ASSESSMENT = "assessment"
    COMPLIANCE = "compliance"


class Scope(str, Enum):
    """Scope qualifier of a resource key."""
    COLLECTION = "collection"
    DETAIL = "detail"
    ALL = "all"


FilterItems = Tuple[Tuple[str, Any], ...]


def _freeze(value: Any) -> Any:
    """Turn filter values into hashable, order-independent equivalents."""
    if isinstance(value, Mapping):
        return tuple(sorted((str(k), _freeze(v)) for k, v in value.items()))
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    if isinstance(value, set):
        return tuple(sorted(_freeze(v) for v in value))
    return value


def _entity_value(entity_type: Any) -> str:
    return entity_type.value if isinstance(entity_type, Enum) else str(entity_type)


@dataclass(frozen=True)
class ResourceKey:
    """Identifies one cache slot."""

    entity_type: str
    scope: Scope
    identifier: Optional[str] = None
    filters: FilterItems = ()

    def __post_init__(self):
        object.__setattr__(self, "entity_type", _entity_value(self.entity_type))

    @property
    def is_collection(self) -> bool:
        return self.scope == Scope.COLLECTION

    @property
    def is_detail(self) -> bool:
        return self.scope == Scope.DETAIL

    def covers(self, other: "ResourceKey") -> bool:
        """Return True if this key, used as a pattern, matches ``other``."""
        if self.entity_type != other.entity_type:
            return False
        if self.scope == Scope.ALL:
            return True
        if self.scope == Scope.COLLECTION and other.scope == Scope.COLLECTION and not self.filters:
            return True
        return self == other

    def __str__(self) -> str:
        if self.scope == Scope.DETAIL:
            return f"{self.entity_type}:{self.identifier}"
        if self.scope == Scope.ALL:
            return f"{self.entity_type}s:*"
        rendered = f"{self.entity_type}s:list"
        if self.filters:
            rendered += "?" + "&".join(f"{name}={value}" for name, value in self.filters)
        return rendered


def collection_key(entity_type: Any, filters: Optional[Mapping[str, Any]] = None) -> ResourceKey:
    """Key for a (possibly filtered) list of entities.

    Filters whose value is None are dropped, so ``{"productId": None}`` and no
    filter address the same slot.
    """
    items: FilterItems = ()
    if filters:
        items = tuple(sorted(
            (str(name), _freeze(value)) for name, value in filters.items() if value is not None
        ))
    return ResourceKey(entity_type, Scope.COLLECTION, filters=items)


def detail_key(entity_type: Any, identifier: str) -> ResourceKey:
    """Key for a single entity."""
    if identifier is None or str(identifier) == "":
        raise ValidationError(
            "Detail key requires a non-empty identifier",
            details={"entity_type": _entity_value(entity_type)}
        )
    return ResourceKey(entity_type, Scope.DETAIL, identifier=str(identifier))


def all_key(entity_type: Any) -> ResourceKey:
    """Pattern matching every key of an entity type."""
    return ResourceKey(entity_type, Scope.ALL)
