"""
Pricing core facade for the CRUD / UI collaborators.

Exposes:
- compute_pricing(carrier, plan_group, opening_type, model)
- build_index(carrier, table_kind, plan_group=None)
- normalize(code)
- classify_opening_type(label)
- run(request) for a full reconciliation pass
"""

from typing import FrozenSet, Optional, Union

from subsidy_hub.config.pricing_config import PricingConfig
from subsidy_hub.config.settings import get_settings
from subsidy_hub.infrastructure.matching import (
    CompositeKeyIndex,
    OpeningType,
    classify,
)
from subsidy_hub.infrastructure.matching import normalize as normalize_code
from subsidy_hub.utils.log_throttle import LogThrottle
from subsidy_hub.utils.logging import get_logger

from .calculator import SubsidyCalculator
from .exceptions import ModelNotFoundError
from .models import DeviceModel, PricingResult
from .pipeline import (
    CarrierDataSource,
    PricingReconciliationPipeline,
    PricingRequest,
    ReconciliationReport,
    ResultSink,
)

logger = get_logger(__name__)

INDEX_TABLES = ("support", "rebate")


class PricingService:
    """
    Entry point of the pricing core.

    Args:
        source: Provides devices, index rows and policy snapshots (usually a
            gateway-backed CarrierDataLoader).
        config: Pricing layout.
        sink: Optional receiver for pipeline results.
    """

    def __init__(
        self,
        source: CarrierDataSource,
        config: PricingConfig,
        *,
        sink: Optional[ResultSink] = None,
    ) -> None:
        self.source = source
        self.config = config
        self.sink = sink
        self.miss_throttle = LogThrottle(
            interval=get_settings().matching_miss_log_cooldown_seconds
        )

    @staticmethod
    def normalize(code: object) -> str:
        return normalize_code(code)

    @staticmethod
    def classify_opening_type(label: object) -> FrozenSet[OpeningType]:
        return classify(label)

    def build_index(
        self,
        carrier: str,
        table_kind: object,
        plan_group: Optional[str] = None,
    ) -> CompositeKeyIndex:
        """
        Build the support or rebate index of one carrier plan group.

        Args:
            carrier: Configured carrier name.
            table_kind: ``"support"`` or ``"rebate"`` (or a TableKind).
            plan_group: Plan group; None uses the carrier's high-tier group.

        Raises:
            UnknownCarrierError: Carrier is not configured.
            PricingConfigError: Plan group is not configured.
            ValueError: ``table_kind`` is not an indexed table.
        """
        kind = str(getattr(table_kind, "value", table_kind)).lower()
        if kind not in INDEX_TABLES:
            raise ValueError(
                f"table_kind must be one of {INDEX_TABLES}, got {table_kind!r}"
            )
        carrier_config = self.config.carrier(carrier)
        plan_group = plan_group or carrier_config.high_tier_plan_group or ""

        if kind == "support":
            rows = self.source.load_support_rows(carrier, plan_group)
        else:
            rows = self.source.load_rebate_rows(carrier, plan_group)
        return CompositeKeyIndex.build(
            rows,
            name=f"{carrier}/{plan_group}/{kind}",
            miss_throttle=self.miss_throttle,
        )

    def _find_device(self, carrier: str, model: str) -> DeviceModel:
        wanted = normalize_code(model)
        for device in self.source.load_devices(carrier):
            if device.raw_code == model or device.normalized_code == wanted:
                return device
        raise ModelNotFoundError(carrier, model)

    def compute_pricing(
        self,
        carrier: str,
        plan_group: Optional[str],
        opening_type: Union[OpeningType, str, None],
        model: str,
    ) -> PricingResult:
        """
        Price one model.

        Args:
            carrier: Configured carrier name.
            plan_group: Plan group; None applies the default selection.
            opening_type: Opening type or literal synonym label.
            model: Model code in any spelling.

        Raises:
            UnknownCarrierError: Carrier is not configured.
            ModelNotFoundError: Model is not in the carrier's device list.
        """
        carrier_config = self.config.carrier(carrier)
        device = self._find_device(carrier, model)
        calculator = SubsidyCalculator(
            carrier_config, self.source.load_policy_settings(carrier)
        )
        plan_group = plan_group or calculator.select_plan_group(device)

        result = calculator.calculate(
            device,
            plan_group,
            opening_type,
            self.build_index(carrier, "support", plan_group),
            self.build_index(carrier, "rebate", plan_group),
        )
        logger.debug(
            "pricing_service.computed",
            carrier=carrier,
            model=device.raw_code,
            plan_group=plan_group,
            opening_type=str(getattr(result.opening_type, "value", result.opening_type)),
            store_support=result.store_support,
        )
        return result

    def run(self, request: Optional[PricingRequest] = None) -> ReconciliationReport:
        """Full reconciliation pass (see PricingReconciliationPipeline)."""
        pipeline = PricingReconciliationPipeline(
            self.source,
            self.config,
            sink=self.sink,
            miss_throttle=self.miss_throttle,
        )
        return pipeline.run(request)
