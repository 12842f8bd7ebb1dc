"""
Per-entity resources exposed to the UI layer.
"""

from .base import EntityResource
from .baselines import BaselineResource
from .products import ProductResource
from .systems import SystemResource

__all__ = ["EntityResource", "BaselineResource", "ProductResource", "SystemResource"]
