"""
Subsidy hub orchestration package.

Composes the gateway, readers and pricing domain into ready-to-use services.
"""

from .pricing import build_pricing_service

__all__ = ["build_pricing_service"]
