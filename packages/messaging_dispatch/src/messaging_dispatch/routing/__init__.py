"""
Dispatch Routing

Resolution of conversations to provider endpoints.
"""

from messaging_dispatch.routing.endpoint_resolver import (
    EndpointResolver,
    ResolvedEndpoint,
    extract_address,
)

__all__ = [
    "EndpointResolver",
    "ResolvedEndpoint",
    "extract_address",
]
