"""
Utility modules for Subsidy Pricing Hub.

This package contains shared utilities used across the pricing core:
structured logging setup and per-key log throttling.
"""

from .log_throttle import LogThrottle

__all__ = ["LogThrottle"]
