"""
Fixtures for compliance client tests.
"""

from typing import Any, Dict

import pytest

from shared.metrics import MetricsCollector
from compliance_client.app.caching.invalidation import InvalidationRouter
from compliance_client.app.caching.keys import EntityType, collection_key, detail_key
from compliance_client.app.caching.mutation_executor import MutationExecutor
from compliance_client.app.caching.query_executor import QueryExecutor
from compliance_client.app.caching.resource_cache import ResourceCache
from compliance_client.tests.helpers import FakeClock, OPTIMISTIC_STAMP, T0


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def metrics():
    return MetricsCollector("compliance_client_test")


@pytest.fixture
def cache(clock, metrics):
    return ResourceCache(clock=clock, metrics=metrics)


@pytest.fixture
def queries(cache, metrics):
    return QueryExecutor(cache, metrics=metrics)


@pytest.fixture
def router():
    return InvalidationRouter()


@pytest.fixture
def mutations(cache, queries, router, metrics):
    return MutationExecutor(cache, queries, router, metrics=metrics, now=lambda: OPTIMISTIC_STAMP)


@pytest.fixture
def product_p1() -> Dict[str, Any]:
    return {"id": "p1", "name": "Old", "updatedAt": T0}


@pytest.fixture
def product_p2() -> Dict[str, Any]:
    return {"id": "p2", "name": "Other", "updatedAt": T0}


@pytest.fixture
def p1_key():
    return detail_key(EntityType.PRODUCT, "p1")


@pytest.fixture
def products_key():
    return collection_key(EntityType.PRODUCT)
