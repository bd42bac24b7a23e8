"""
HTTP routes: collection endpoints and the query API.
"""

from .collect import create_collect_router
from .resources import create_resources_router

__all__ = ["create_collect_router", "create_resources_router"]
