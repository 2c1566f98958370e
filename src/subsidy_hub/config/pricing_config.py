"""
YAML loader for the per-carrier pricing layout.

The layout tells the core which upstream ranges hold the canonical device
list, the public support tables and the policy rebate tables for every
carrier and plan group, and where the shared policy tables (margin, addon
services, insurance, special policies) live.

Example layout::

    policy_tables:
      margin: 직영점_정책_마진
      addon: 직영점_정책_부가서비스
      insurance: 직영점_정책_보험상품
      special: 직영점_정책_별도
    carriers:
      SK:
        device_range: SK_모델!A1:F300
        default_plan_group: 115군
        low_tier_plan_group: 33군
        plan_groups:
          115군:
            support_range: SK_지원금!A1:C300
            rebate_ranges:
              010신규: SK_리베이트!A1:B300
              MNP: SK_리베이트!D1:E300
"""

from pathlib import Path
from typing import Dict, List, Optional, Union

import structlog
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

logger = structlog.get_logger(__name__)


class PricingConfigError(ValueError):
    """Raised when the pricing layout file is missing or malformed."""


class UnknownCarrierError(KeyError):
    """Raised when a carrier is not present in the pricing layout."""

    def __init__(self, carrier: str) -> None:
        self.carrier = carrier
        super().__init__(f"Carrier '{carrier}' is not configured")


class PlanGroupLayout(BaseModel):
    """Upstream ranges for one plan group of one carrier."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    support_range: Optional[str] = Field(
        default=None, description="Range with model / opening type / support columns"
    )
    rebate_range: Optional[str] = Field(
        default=None, description="Range with model / opening type / rebate columns"
    )
    rebate_ranges: Dict[str, str] = Field(
        default_factory=dict,
        description="Opening-type label -> range with model / rebate columns",
    )


class CarrierConfig(BaseModel):
    """Layout and pricing preferences for one carrier."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: str = Field(..., min_length=1)
    device_range: str = Field(..., min_length=1)
    plan_groups: Dict[str, PlanGroupLayout] = Field(default_factory=dict)
    default_plan_group: Optional[str] = None
    low_tier_plan_group: Optional[str] = None
    prefer_flip_fold_insurance: bool = False

    @model_validator(mode="after")
    def validate_plan_group_refs(self) -> "CarrierConfig":
        for label in (self.default_plan_group, self.low_tier_plan_group):
            if label is not None and label not in self.plan_groups:
                raise ValueError(
                    f"plan group '{label}' is referenced but not defined "
                    f"for carrier '{self.name}'"
                )
        return self

    @property
    def plan_group_names(self) -> List[str]:
        return list(self.plan_groups.keys())

    @property
    def high_tier_plan_group(self) -> Optional[str]:
        """Default group, falling back to the first configured group."""
        if self.default_plan_group:
            return self.default_plan_group
        return next(iter(self.plan_groups), None)


class PolicyTableRanges(BaseModel):
    """Ranges of the shared policy tables (filtered per carrier on read)."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    margin: Optional[str] = None
    addon: Optional[str] = None
    insurance: Optional[str] = None
    special: Optional[str] = None


class PricingConfig(BaseModel):
    """Validated pricing layout for all carriers."""

    model_config = ConfigDict(extra="forbid")

    carriers: Dict[str, CarrierConfig] = Field(default_factory=dict)
    policy_tables: PolicyTableRanges = Field(default_factory=PolicyTableRanges)
    carrier_order: List[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _inject_carrier_names(cls, values: object) -> object:
        if not isinstance(values, dict):
            return values
        carriers = values.get("carriers") or {}
        if isinstance(carriers, dict):
            injected = {}
            for name, body in carriers.items():
                if isinstance(body, dict):
                    declared = body.get("name")
                    if declared is not None and str(declared).strip() != str(name):
                        raise ValueError(
                            f"carrier '{name}' declares a different name '{declared}'"
                        )
                    body = {**body, "name": str(name)}
                injected[str(name)] = body
            values = {**values, "carriers": injected}
            values.setdefault("carrier_order", list(injected.keys()))
        return values

    def carrier(self, name: str) -> CarrierConfig:
        try:
            return self.carriers[name]
        except KeyError:
            raise UnknownCarrierError(name) from None


def parse_pricing_config(content: Union[dict, None], source: str = "<memory>") -> PricingConfig:
    """
    Validate an already-parsed layout mapping.

    Raises:
        PricingConfigError: If the mapping does not match the layout schema.
    """
    if content is None:
        logger.debug("pricing_config.empty", source=source)
        return PricingConfig()
    if not isinstance(content, dict):
        raise PricingConfigError(
            f"Invalid pricing layout in {source}: expected mapping, "
            f"got {type(content).__name__}"
        )
    try:
        return PricingConfig.model_validate(content)
    except ValidationError as e:
        logger.error("pricing_config.validation_error", source=source, error=str(e))
        raise PricingConfigError(f"Invalid pricing layout in {source}: {e}") from e


def load_pricing_config(path: Union[str, Path, None] = None) -> PricingConfig:
    """
    Load and validate the carrier pricing layout.

    Args:
        path: Layout file. Defaults to Settings.pricing_config_path.

    Returns:
        Validated PricingConfig.

    Raises:
        PricingConfigError: Missing file, invalid YAML or schema mismatch.
    """
    if path is None:
        from subsidy_hub.config.settings import get_settings

        path = get_settings().pricing_config_path

    file_path = Path(path)
    if not file_path.exists():
        logger.error("pricing_config.file_not_found", file_path=str(file_path))
        raise PricingConfigError(f"Pricing layout file not found: {file_path}")

    try:
        with open(file_path, "r", encoding="utf-8") as f:
            content = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.error(
            "pricing_config.yaml_parse_error", file_path=str(file_path), error=str(e)
        )
        raise PricingConfigError(f"Invalid YAML in {file_path}: {e}") from e

    config = parse_pricing_config(content, source=str(file_path))
    logger.info(
        "pricing_config.loaded",
        file_path=str(file_path),
        carriers=list(config.carriers.keys()),
    )
    return config
