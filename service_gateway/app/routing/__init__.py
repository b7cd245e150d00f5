"""
Routing: the static route table, the reverse proxy and the dispatcher.
"""

from .proxy import ReverseProxy
from .router import GatewayRouter
from .table import DEFAULT_ROUTES, RouteMatch, RouteSpec, RouteTable

__all__ = [
    "DEFAULT_ROUTES",
    "GatewayRouter",
    "ReverseProxy",
    "RouteMatch",
    "RouteSpec",
    "RouteTable",
]
