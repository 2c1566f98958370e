"""
Per-carrier table loading through the gateway.

CarrierDataLoader turns the ranges named in the pricing layout into domain
inputs: the canonical device list, support / rebate index rows for a plan
group, and the carrier's policy snapshot. It implements the
``CarrierDataSource`` protocol consumed by the pricing pipeline.
"""

from typing import Any, Dict, List, Optional, Tuple

from subsidy_hub.config.pricing_config import (
    CarrierConfig,
    PlanGroupLayout,
    PricingConfig,
    PricingConfigError,
)
from subsidy_hub.config.settings import get_settings
from subsidy_hub.domain.pricing.models import (
    AddonService,
    DeviceModel,
    InsuranceProduct,
    PolicySettings,
    SpecialPolicy,
)
from subsidy_hub.infrastructure.gateway.tabular_client import TabularGatewayClient
from subsidy_hub.infrastructure.matching import IndexRow, normalize
from subsidy_hub.io.connectors.tabular.models import (
    GatewayTimeoutError,
    QuotaExceededError,
    TabularSourceError,
)
from subsidy_hub.utils.logging import get_logger

from .table_reader import (
    SchemaDriftError,
    TableKind,
    parse_amount,
    parse_flag,
    parse_text,
    read_table,
)

logger = get_logger(__name__)

# Failures of the whole source rather than of one range
SOURCE_WIDE_ERRORS = (QuotaExceededError, GatewayTimeoutError)


class CarrierDataLoader:
    """
    Loads carrier tables via a gateway-backed client.

    Args:
        client: Reads ranges through the rate-limited gateway.
        config: Validated pricing layout.
        rebate_scale: Multiplier applied to raw rebate cells.
        default_base_margin: Margin used when the margin table has no row
            for the carrier.
    """

    def __init__(
        self,
        client: TabularGatewayClient,
        config: PricingConfig,
        *,
        rebate_scale: Optional[float] = None,
        default_base_margin: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self.client = client
        self.config = config
        self.rebate_scale = rebate_scale if rebate_scale is not None else settings.rebate_scale
        self.default_base_margin = (
            default_base_margin
            if default_base_margin is not None
            else settings.default_base_margin
        )

    def _plan_group(self, carrier_config: CarrierConfig, plan_group: str) -> PlanGroupLayout:
        layout = carrier_config.plan_groups.get(plan_group)
        if layout is None:
            raise PricingConfigError(
                f"Plan group '{plan_group}' is not configured for carrier "
                f"'{carrier_config.name}'"
            )
        return layout

    # --------------------------------------------------------------- devices

    def load_devices(self, carrier: str) -> List[DeviceModel]:
        """Canonical device list in source order (duplicates kept)."""
        carrier_config = self.config.carrier(carrier)
        records = read_table(TableKind.DEVICE, self.client.get_rows(carrier_config.device_range))

        fallback_prices: Optional[Dict[str, float]] = None
        devices: List[DeviceModel] = []
        for record in records:
            raw_code = parse_text(record["model"])
            if not raw_code:
                continue
            factory_price = parse_amount(record["factory_price"])
            if factory_price <= 0:
                if fallback_prices is None:
                    fallback_prices = self._fallback_factory_prices(carrier_config)
                factory_price = fallback_prices.get(normalize(raw_code), 0.0)

            tags = set()
            if parse_flag(record["premium"]):
                tags.add("premium")
            if parse_flag(record["budget"]):
                tags.add("budget")

            devices.append(
                DeviceModel(
                    raw_code=raw_code,
                    display_name=parse_text(record["display_name"]) or raw_code,
                    manufacturer=parse_text(record["manufacturer"]),
                    factory_price=max(factory_price, 0.0),
                    tags=frozenset(tags),
                )
            )

        logger.info("carrier_tables.devices_loaded", carrier=carrier, count=len(devices))
        return devices

    def _fallback_factory_prices(self, carrier_config: CarrierConfig) -> Dict[str, float]:
        """Support-table prices, or none when that table cannot be read."""
        try:
            return self._support_factory_prices(carrier_config)
        except (TabularSourceError, SchemaDriftError) as e:
            logger.warning(
                "carrier_tables.factory_price_fallback_failed",
                carrier=carrier_config.name,
                error=str(e),
                error_type=type(e).__name__,
            )
            return {}

    def _support_factory_prices(self, carrier_config: CarrierConfig) -> Dict[str, float]:
        """Factory prices from the high-tier support table, keyed by normalized model."""
        plan_group = carrier_config.high_tier_plan_group
        if plan_group is None:
            return {}
        support_range = carrier_config.plan_groups[plan_group].support_range
        if not support_range:
            return {}
        prices: Dict[str, float] = {}
        for record in read_table(TableKind.SUPPORT, self.client.get_rows(support_range)):
            price = parse_amount(record["factory_price"])
            key = normalize(record["model"])
            if key and price > 0:
                prices.setdefault(key, price)
        return prices

    # ---------------------------------------------------------- index rows

    def load_support_rows(self, carrier: str, plan_group: str) -> List[IndexRow]:
        layout = self._plan_group(self.config.carrier(carrier), plan_group)
        if not layout.support_range:
            return []
        records = read_table(TableKind.SUPPORT, self.client.get_rows(layout.support_range))
        rows = [
            IndexRow(
                model=parse_text(r["model"]),
                opening_type_label=parse_text(r["opening_type"]),
                value=parse_amount(r["amount"]),
            )
            for r in records
        ]
        logger.debug(
            "carrier_tables.support_loaded",
            carrier=carrier,
            plan_group=plan_group,
            rows=len(rows),
        )
        return rows

    def load_rebate_rows(self, carrier: str, plan_group: str) -> List[IndexRow]:
        """
        Rebate rows for a plan group, scaled by ``rebate_scale``.

        Rows come from ``rebate_range`` (with an opening-type column) and from
        each ``rebate_ranges`` entry, whose label is used when the range has
        no opening-type column of its own.
        """
        layout = self._plan_group(self.config.carrier(carrier), plan_group)
        sources: List[tuple] = []
        if layout.rebate_range:
            sources.append(("", layout.rebate_range))
        sources.extend(layout.rebate_ranges.items())
        if not sources:
            return []

        if len(sources) == 1:
            results = [self.client.get_rows(sources[0][1])]
        else:
            results = self.client.batch_get_rows([ref for _, ref in sources])

        rows: List[IndexRow] = []
        for (label, _), raw_rows in zip(sources, results):
            for record in read_table(TableKind.REBATE, raw_rows):
                rows.append(
                    IndexRow(
                        model=parse_text(record["model"]),
                        opening_type_label=parse_text(record["opening_type"]) or label,
                        value=parse_amount(record["amount"]) * self.rebate_scale,
                    )
                )
        logger.debug(
            "carrier_tables.rebate_loaded",
            carrier=carrier,
            plan_group=plan_group,
            rows=len(rows),
        )
        return rows

    # -------------------------------------------------------------- policy

    def load_policy_settings(self, carrier: str) -> PolicySettings:
        """Margin, addon, insurance and special-policy rows for one carrier."""
        self.config.carrier(carrier)
        tables = self.config.policy_tables
        wanted = [
            (kind, ref)
            for kind, ref in (
                (TableKind.MARGIN, tables.margin),
                (TableKind.ADDON, tables.addon),
                (TableKind.INSURANCE, tables.insurance),
                (TableKind.SPECIAL, tables.special),
            )
            if ref
        ]
        raw, degraded = self._read_policy_tables(wanted)

        def carrier_records(kind: TableKind) -> List[Dict[str, Any]]:
            if kind.value in degraded:
                return []
            try:
                records = read_table(kind, raw.get(kind))
            except SchemaDriftError as e:
                logger.warning(
                    "carrier_tables.policy_table_degraded",
                    table=kind.value,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                degraded.append(kind.value)
                return []
            return [r for r in records if parse_text(r["carrier"]) == carrier]

        margin_rows = carrier_records(TableKind.MARGIN)
        base_margin = (
            parse_amount(margin_rows[0]["margin"]) if margin_rows else self.default_base_margin
        )

        addons = [
            AddonService(
                name=parse_text(r["name"]),
                fee=parse_amount(r["fee"]),
                incentive=parse_amount(r["incentive"]),
                deduction=parse_amount(r["deduction"]),
            )
            for r in carrier_records(TableKind.ADDON)
            if parse_text(r["name"])
        ]
        insurance = [
            InsuranceProduct(
                name=parse_text(r["name"]),
                min_price=parse_amount(r["min_price"]),
                max_price=parse_amount(r["max_price"]),
                fee=parse_amount(r["fee"]),
                incentive=parse_amount(r["incentive"]),
                deduction=parse_amount(r["deduction"]),
                flip_fold=parse_flag(r["flip_fold"]),
            )
            for r in carrier_records(TableKind.INSURANCE)
            if parse_text(r["name"])
        ]
        specials = [
            SpecialPolicy(
                name=parse_text(r["name"]),
                addition=parse_amount(r["addition"]),
                deduction=parse_amount(r["deduction"]),
                is_active=True if r["is_active"] is None else parse_flag(r["is_active"]),
            )
            for r in carrier_records(TableKind.SPECIAL)
            if parse_text(r["name"])
        ]

        policy = PolicySettings(
            carrier=carrier,
            base_margin=base_margin,
            addon_services=addons,
            insurance_products=insurance,
            special_policies=specials,
            degraded_tables=degraded,
        )
        logger.info(
            "carrier_tables.policy_loaded",
            carrier=carrier,
            base_margin=base_margin,
            addons=len(addons),
            insurance_products=len(insurance),
            special_policies=len(specials),
            degraded_tables=degraded,
        )
        return policy

    def _read_policy_tables(
        self, wanted: List[Tuple[TableKind, str]]
    ) -> Tuple[Dict[TableKind, Any], List[str]]:
        """
        Raw rows of the shared policy tables, in one batch when possible.

        If the batch fails on a table-level error, each range is read on its
        own so one missing table does not hide the others. Quota and deadline
        failures concern the whole source and propagate.

        Returns:
            (rows by table kind, names of tables that could not be read)
        """
        if not wanted:
            return {}, []
        try:
            results = self.client.batch_get_rows([ref for _, ref in wanted])
            return {kind: rows for (kind, _), rows in zip(wanted, results)}, []
        except SOURCE_WIDE_ERRORS:
            raise
        except TabularSourceError as e:
            logger.warning(
                "carrier_tables.policy_batch_failed",
                ranges=[ref for _, ref in wanted],
                error=str(e),
                error_type=type(e).__name__,
            )

        raw: Dict[TableKind, Any] = {}
        degraded: List[str] = []
        for kind, ref in wanted:
            try:
                raw[kind] = self.client.get_rows(ref)
            except SOURCE_WIDE_ERRORS:
                raise
            except TabularSourceError as e:
                logger.warning(
                    "carrier_tables.policy_table_degraded",
                    table=kind.value,
                    range_ref=ref,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                degraded.append(kind.value)
        return raw, degraded
