"""
Adapters package for the compliance client.

Contains the HTTP wrapper for the compliance REST API. Adapters encapsulate:

- Base URLs and request shapes
- Circuit breaking
- Error handling that maps to shared errors

Keep adapters thin and side-effect free outside of explicit calls.
"""

from .api_client import ApiClient

__all__ = ["ApiClient"]
