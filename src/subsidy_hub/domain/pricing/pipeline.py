"""
Pricing reconciliation pipeline.

Runs the whole pricing pass for a set of carriers:

    IDLE -> LOADING_MODELS -> BUILDING_INDEXES -> CALCULATING -> DONE | FAILED

Data problems are contained: a carrier whose device list cannot be loaded
yields no rows, a support / rebate table that cannot be loaded yields an
empty index, and a missing policy snapshot falls back to the default margin.
Each of these is reported as a warning. Anything else fails the run.
"""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Protocol, Sequence, Tuple, Union

import pandas as pd

from subsidy_hub.config.pricing_config import PricingConfig, PricingConfigError
from subsidy_hub.config.settings import get_settings
from subsidy_hub.infrastructure.gateway.retry import call_with_immediate_retry
from subsidy_hub.infrastructure.matching import (
    CONCRETE_ORDER,
    CompositeKeyIndex,
    IndexRow,
    OpeningType,
    coerce_opening_type,
    normalize,
)
from subsidy_hub.io.connectors.tabular.models import TabularSourceError
from subsidy_hub.io.readers.table_reader import SchemaDriftError
from subsidy_hub.utils.log_throttle import LogThrottle
from subsidy_hub.utils.logging import get_logger

from .calculator import SubsidyCalculator
from .exceptions import PipelineStateError
from .models import DeviceModel, PolicySettings, PricingResult
from .schemas import RESULT_COLUMNS, RESULT_PARTITION_KEY, validate_results_frame

logger = get_logger(__name__)

# Failures that degrade one carrier or table instead of failing the run
LOAD_ERRORS = (TabularSourceError, SchemaDriftError, PricingConfigError)


class PipelineState(str, Enum):
    IDLE = "idle"
    LOADING_MODELS = "loading_models"
    BUILDING_INDEXES = "building_indexes"
    CALCULATING = "calculating"
    DONE = "done"
    FAILED = "failed"


RUNNING_STATES = frozenset(
    {PipelineState.LOADING_MODELS, PipelineState.BUILDING_INDEXES, PipelineState.CALCULATING}
)


class CarrierDataSource(Protocol):
    """Domain inputs for one carrier."""

    def load_devices(self, carrier: str) -> List[DeviceModel]: ...

    def load_support_rows(self, carrier: str, plan_group: str) -> List[IndexRow]: ...

    def load_rebate_rows(self, carrier: str, plan_group: str) -> List[IndexRow]: ...

    def load_policy_settings(self, carrier: str) -> PolicySettings: ...


class ResultSink(Protocol):
    """Receives each carrier's final rows (the external CRUD layer)."""

    def write(self, carrier: str, results: List[PricingResult]) -> None: ...


@dataclass
class PricingRequest:
    """
    What to price.

    Attributes:
        carriers: Carriers to run; None means every configured carrier.
        plan_groups: Plan groups to price; None applies the per-device default.
        opening_types: Opening types (or literal synonym labels) to price.
        models: Restrict to these models (matched by normalized code).
        model_order: Canonical model order; unknown models follow in source order.
    """

    carriers: Optional[Sequence[str]] = None
    plan_groups: Optional[Sequence[str]] = None
    opening_types: Sequence[Union[OpeningType, str]] = CONCRETE_ORDER
    models: Optional[Sequence[str]] = None
    model_order: Optional[Sequence[str]] = None


@dataclass
class ReconciliationReport:
    """Outcome of one pipeline run."""

    state: PipelineState
    results: List[PricingResult] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    carrier_counts: Dict[str, int] = field(default_factory=dict)

    def for_carrier(self, carrier: str) -> List[PricingResult]:
        return [r for r in self.results if r.carrier == carrier]

    def to_frame(self) -> pd.DataFrame:
        """Results as a validated DataFrame (one row per PricingResult)."""
        records = []
        for result in self.results:
            record = result.model_dump()
            record["opening_type"] = _type_label(result.opening_type)
            records.append(record)
        frame = pd.DataFrame.from_records(records, columns=list(RESULT_COLUMNS))
        return validate_results_frame(frame)


@dataclass
class _CarrierWork:
    carrier: str
    devices: List[DeviceModel] = field(default_factory=list)
    plan_groups: List[str] = field(default_factory=list)
    support: Dict[str, CompositeKeyIndex] = field(default_factory=dict)
    rebate: Dict[str, CompositeKeyIndex] = field(default_factory=dict)
    calculator: Optional[SubsidyCalculator] = None


def _type_label(opening_type: Union[OpeningType, str]) -> str:
    return opening_type.value if isinstance(opening_type, OpeningType) else str(opening_type)


class PricingReconciliationPipeline:
    """
    Joins device lists, support / rebate indexes and policy snapshots into
    ordered, de-duplicated pricing results.

    Args:
        source: Provides devices, index rows and policy snapshots.
        config: Pricing layout (carrier order, plan groups).
        sink: Optional receiver of each carrier's rows.
        miss_throttle: Shared throttle for index miss logging.
    """

    def __init__(
        self,
        source: CarrierDataSource,
        config: PricingConfig,
        *,
        sink: Optional[ResultSink] = None,
        miss_throttle: Optional[LogThrottle] = None,
    ) -> None:
        self.settings = get_settings()
        self.source = source
        self.config = config
        self.sink = sink
        self.miss_throttle = miss_throttle or LogThrottle(
            interval=self.settings.matching_miss_log_cooldown_seconds
        )
        self._state = PipelineState.IDLE
        self._state_lock = threading.Lock()
        self._warnings: List[str] = []

    @property
    def state(self) -> PipelineState:
        return self._state

    def _transition(self, state: PipelineState) -> None:
        logger.info(
            "pricing_pipeline.state_changed",
            previous=self._state.value,
            state=state.value,
        )
        self._state = state

    def _warn(self, event: str, message: str, **fields: object) -> None:
        logger.warning(event, message=message, **fields)
        self._warnings.append(message)

    # ------------------------------------------------------------------ run

    def run(self, request: Optional[PricingRequest] = None) -> ReconciliationReport:
        """
        Execute one pricing pass.

        Raises:
            PipelineStateError: A run is already in progress.
            UnknownCarrierError: A requested carrier is not configured.
        """
        request = request or PricingRequest()
        with self._state_lock:
            if self._state in RUNNING_STATES:
                raise PipelineStateError(self._state.value)
            self._warnings = []
            self._transition(PipelineState.LOADING_MODELS)

        try:
            carriers = list(request.carriers or self.config.carrier_order)
            work = [self._load_models(carrier, request) for carrier in carriers]

            self._transition(PipelineState.BUILDING_INDEXES)
            for item in work:
                self._build_indexes(item, request)

            self._transition(PipelineState.CALCULATING)
            results: List[PricingResult] = []
            for item in work:
                results.extend(self._calculate(item, request))
            results = order_and_deduplicate(results, carriers, request.model_order)

            counts = {carrier: 0 for carrier in carriers}
            for result in results:
                counts[result.carrier] += 1
            if self.sink is not None:
                self._deliver(results)
        except Exception as e:
            self._transition(PipelineState.FAILED)
            logger.error(
                "pricing_pipeline.failed", error=str(e), error_type=type(e).__name__
            )
            raise

        self._transition(PipelineState.DONE)
        logger.info(
            "pricing_pipeline.completed",
            results=len(results),
            carriers=counts,
            warnings=len(self._warnings),
        )
        return ReconciliationReport(
            state=PipelineState.DONE,
            results=results,
            warnings=list(self._warnings),
            carrier_counts=counts,
        )

    # --------------------------------------------------------------- phases

    def _load_models(self, carrier: str, request: PricingRequest) -> _CarrierWork:
        carrier_config = self.config.carrier(carrier)
        item = _CarrierWork(carrier=carrier_config.name)
        try:
            devices = self.source.load_devices(carrier)
        except LOAD_ERRORS as e:
            self._warn(
                "pricing_pipeline.carrier_degraded",
                f"{carrier}: device list unavailable ({e})",
                carrier=carrier,
                error_type=type(e).__name__,
            )
            return item

        if request.models is not None:
            wanted = {normalize(m) for m in request.models}
            devices = [d for d in devices if d.normalized_code in wanted]
        item.devices = devices
        return item

    def _build_indexes(self, item: _CarrierWork, request: PricingRequest) -> None:
        carrier = item.carrier
        carrier_config = self.config.carrier(carrier)
        try:
            policy = self.source.load_policy_settings(carrier)
        except LOAD_ERRORS as e:
            self._warn(
                "pricing_pipeline.policy_degraded",
                f"{carrier}: policy tables unavailable, default margin applied ({e})",
                carrier=carrier,
                error_type=type(e).__name__,
            )
            policy = PolicySettings(
                carrier=carrier, base_margin=self.settings.default_base_margin
            )
        for table in policy.degraded_tables:
            self._warn(
                "pricing_pipeline.policy_table_degraded",
                f"{carrier}: policy table '{table}' unavailable, defaults applied",
                carrier=carrier,
                table=table,
            )
        item.calculator = SubsidyCalculator(carrier_config, policy)

        if not item.devices:
            return

        if request.plan_groups is not None:
            plan_groups = []
            for plan_group in request.plan_groups:
                if plan_group in carrier_config.plan_groups:
                    plan_groups.append(plan_group)
                else:
                    self._warn(
                        "pricing_pipeline.plan_group_skipped",
                        f"{carrier}: plan group '{plan_group}' is not configured",
                        carrier=carrier,
                        plan_group=plan_group,
                    )
        else:
            plan_groups = []
            try:
                for device in item.devices:
                    plan_group = item.calculator.select_plan_group(device)
                    if plan_group not in plan_groups:
                        plan_groups.append(plan_group)
            except PricingConfigError as e:
                self._warn(
                    "pricing_pipeline.carrier_degraded",
                    f"{carrier}: {e}",
                    carrier=carrier,
                    error_type=type(e).__name__,
                )
                item.devices = []
                return
        item.plan_groups = plan_groups

        for plan_group in plan_groups:
            item.support[plan_group] = self._build_index(
                carrier, plan_group, "support", self.source.load_support_rows
            )
            item.rebate[plan_group] = self._build_index(
                carrier, plan_group, "rebate", self.source.load_rebate_rows
            )

    def _build_index(self, carrier: str, plan_group: str, table: str, load) -> CompositeKeyIndex:
        name = f"{carrier}/{plan_group}/{table}"
        try:
            rows = load(carrier, plan_group)
        except LOAD_ERRORS as e:
            self._warn(
                "pricing_pipeline.table_degraded",
                f"{name}: table unavailable, using empty index ({e})",
                carrier=carrier,
                plan_group=plan_group,
                table=table,
                error_type=type(e).__name__,
            )
            rows = []
        return CompositeKeyIndex.build(rows, name=name, miss_throttle=self.miss_throttle)

    def _calculate(self, item: _CarrierWork, request: PricingRequest) -> List[PricingResult]:
        if not item.devices or item.calculator is None:
            return []
        opening_types = [coerce_opening_type(t) for t in request.opening_types]
        results: List[PricingResult] = []
        for device in item.devices:
            if request.plan_groups is not None:
                plan_groups = item.plan_groups
            else:
                plan_groups = [item.calculator.select_plan_group(device)]
            for plan_group in plan_groups:
                for opening_type in opening_types:
                    results.append(
                        item.calculator.calculate(
                            device,
                            plan_group,
                            opening_type,
                            item.support[plan_group],
                            item.rebate[plan_group],
                        )
                    )
        return results

    def _deliver(self, results: List[PricingResult]) -> None:
        attempts = self.settings.transient_retry_attempts
        for carrier, rows in split_by_carrier(results):
            try:
                call_with_immediate_retry(
                    lambda: self.sink.write(carrier, rows),
                    attempts=attempts,
                    description=f"sink:{carrier}",
                )
            except Exception as e:
                self._warn(
                    "pricing_pipeline.sink_failed",
                    f"{carrier}: result sink failed ({e})",
                    carrier=carrier,
                    error_type=type(e).__name__,
                )


def order_and_deduplicate(
    results: Sequence[PricingResult],
    carrier_order: Sequence[str],
    model_order: Optional[Sequence[str]] = None,
) -> List[PricingResult]:
    """
    Sort results by carrier then canonical model order, and drop repeats.

    Models missing from ``model_order`` keep their source order after the
    ranked ones. Within each (carrier, plan group, opening type) partition
    only the first row per normalized model code is kept.
    """
    if not results:
        return []

    ranks: Dict[str, int] = {}
    for position, model in enumerate(model_order or ()):
        ranks.setdefault(normalize(model), position)
    carrier_ranks = {carrier: position for position, carrier in enumerate(carrier_order)}
    unranked = len(ranks)

    frame = pd.DataFrame(
        {
            "position": range(len(results)),
            "carrier_rank": [carrier_ranks.get(r.carrier, len(carrier_ranks)) for r in results],
            "model_rank": [ranks.get(r.normalized_model, unranked) for r in results],
            "carrier": [r.carrier for r in results],
            "plan_group": [r.plan_group for r in results],
            "opening_type": [_type_label(r.opening_type) for r in results],
            "normalized_model": [r.normalized_model for r in results],
        }
    )
    frame = frame.sort_values(
        ["carrier_rank", "model_rank", "position"], kind="mergesort"
    ).drop_duplicates(subset=list(RESULT_PARTITION_KEY), keep="first")

    dropped = len(results) - len(frame)
    if dropped:
        logger.info("pricing_pipeline.duplicates_dropped", count=dropped)
    return [results[i] for i in frame["position"]]


def split_by_carrier(results: Sequence[PricingResult]) -> List[Tuple[str, List[PricingResult]]]:
    grouped: Dict[str, List[PricingResult]] = {}
    for result in results:
        grouped.setdefault(result.carrier, []).append(result)
    return list(grouped.items())
