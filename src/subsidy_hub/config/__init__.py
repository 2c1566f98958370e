"""Configuration management for Subsidy Pricing Hub.

Usage:
    >>> from subsidy_hub.config import get_settings
    >>> settings = get_settings()
    >>> settings.gateway_max_concurrent
    2
"""

from subsidy_hub.config.pricing_config import (
    CarrierConfig,
    PlanGroupLayout,
    PolicyTableRanges,
    PricingConfig,
    PricingConfigError,
    UnknownCarrierError,
    load_pricing_config,
    parse_pricing_config,
)
from subsidy_hub.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
    "CarrierConfig",
    "PlanGroupLayout",
    "PolicyTableRanges",
    "PricingConfig",
    "PricingConfigError",
    "UnknownCarrierError",
    "load_pricing_config",
    "parse_pricing_config",
]
