"""
Rate-limited, stale-while-revalidate access gateway.

Components:
- GatewayContext: cache / in-flight / refresh state with explicit lifecycle
- RateLimitedGateway: SWR cache + single-flight in front of the transport
- TabularGatewayClient: TabularSource reads scheduled through the gateway
- call_with_immediate_retry: bounded no-delay retry for transient errors
"""

from .context import CacheEntry, GatewayContext
from .gateway import RateLimitedGateway
from .retry import call_with_immediate_retry
from .tabular_client import TabularGatewayClient

__all__ = [
    "CacheEntry",
    "GatewayContext",
    "RateLimitedGateway",
    "TabularGatewayClient",
    "call_with_immediate_retry",
]
