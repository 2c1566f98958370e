"""
Wiring of the pricing core.

Composes TabularSource -> RateLimitedGateway -> CarrierDataLoader ->
PricingService so callers only hand over their source adapter.
"""

from pathlib import Path
from typing import Optional, Union

from subsidy_hub.config.pricing_config import PricingConfig, load_pricing_config
from subsidy_hub.domain.pricing.pipeline import ResultSink
from subsidy_hub.domain.pricing.service import PricingService
from subsidy_hub.infrastructure.gateway import RateLimitedGateway, TabularGatewayClient
from subsidy_hub.io.connectors.tabular.source import TabularSource
from subsidy_hub.io.readers.carrier_tables import CarrierDataLoader
from subsidy_hub.utils.logging import get_logger

logger = get_logger(__name__)


def build_pricing_service(
    source: TabularSource,
    *,
    config: Optional[PricingConfig] = None,
    config_path: Optional[Union[str, Path]] = None,
    gateway: Optional[RateLimitedGateway] = None,
    sink: Optional[ResultSink] = None,
) -> PricingService:
    """
    Build a PricingService reading ``source`` through a rate-limited gateway.

    Args:
        source: Upstream tabular source adapter.
        config: Pricing layout; loaded from ``config_path`` (or settings) if None.
        config_path: Layout file used when ``config`` is None.
        gateway: Gateway to share; a new one is created from settings if None.
            The caller owns its lifecycle (``gateway.close()``).
        sink: Optional receiver for pipeline results.
    """
    config = config or load_pricing_config(config_path)
    gateway = gateway or RateLimitedGateway()
    loader = CarrierDataLoader(TabularGatewayClient(source, gateway), config)
    logger.info(
        "pricing_service.built",
        carriers=list(config.carrier_order),
        has_sink=sink is not None,
    )
    return PricingService(loader, config, sink=sink)
