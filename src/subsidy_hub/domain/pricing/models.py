"""
Pricing domain models.

Inputs (DeviceModel, PolicySettings and its parts) are immutable snapshots
taken once per run. PricingResult is derived and never persisted here.
"""

from typing import FrozenSet, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from subsidy_hub.infrastructure.matching import OpeningType, normalize

DEVICE_TAGS = frozenset({"premium", "budget"})


class DeviceModel(BaseModel):
    """A device from a carrier's canonical device list."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    raw_code: str = Field(..., min_length=1, description="Model code as written upstream")
    normalized_code: str = Field("", description="normalize(raw_code)")
    display_name: str = Field("", description="Marketing name (펫네임)")
    manufacturer: str = Field("", description="Manufacturer (제조사)")
    factory_price: float = Field(0.0, ge=0, description="Factory price (출고가)")
    tags: FrozenSet[str] = Field(default_factory=frozenset)

    @model_validator(mode="before")
    @classmethod
    def _derive_normalized_code(cls, values: object) -> object:
        if isinstance(values, dict) and not values.get("normalized_code"):
            values = {**values, "normalized_code": normalize(values.get("raw_code"))}
        return values

    @model_validator(mode="after")
    def _check_tags(self) -> "DeviceModel":
        unknown = set(self.tags) - DEVICE_TAGS
        if unknown:
            raise ValueError(f"unknown device tags: {sorted(unknown)}")
        return self

    @property
    def is_budget(self) -> bool:
        return "budget" in self.tags and "premium" not in self.tags


class AddonService(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    fee: float = 0.0
    incentive: float = 0.0
    deduction: float = 0.0


class InsuranceProduct(BaseModel):
    """Device insurance; ``max_price == 0`` means no upper bound."""

    model_config = ConfigDict(frozen=True)

    name: str
    min_price: float = 0.0
    max_price: float = 0.0
    fee: float = 0.0
    incentive: float = 0.0
    deduction: float = 0.0
    flip_fold: bool = False

    def covers(self, factory_price: float) -> bool:
        if factory_price < self.min_price:
            return False
        return self.max_price <= 0 or factory_price <= self.max_price


class SpecialPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    addition: float = 0.0
    deduction: float = 0.0
    is_active: bool = True


class PolicySettings(BaseModel):
    """Flat per-carrier policy snapshot."""

    model_config = ConfigDict(frozen=True)

    carrier: str
    base_margin: float = 0.0
    addon_services: List[AddonService] = Field(default_factory=list)
    insurance_products: List[InsuranceProduct] = Field(default_factory=list)
    special_policies: List[SpecialPolicy] = Field(default_factory=list)
    degraded_tables: List[str] = Field(
        default_factory=list,
        description="Policy tables that could not be read (defaults applied)",
    )

    @property
    def active_special_policies(self) -> List[SpecialPolicy]:
        return [p for p in self.special_policies if p.is_active]


class PricingResult(BaseModel):
    """Derived price for one (carrier, model, plan group, opening type)."""

    model_config = ConfigDict(frozen=True)

    carrier: str
    model: str
    normalized_model: str
    display_name: str = ""
    plan_group: str
    opening_type: Union[OpeningType, str]
    factory_price: float = Field(..., ge=0)
    public_support: float = 0.0
    policy_rebate: float = 0.0
    policy_margin: float = 0.0
    store_support: float = Field(..., ge=0)
    store_support_no_addon: float = Field(..., ge=0)
    purchase_price: float = Field(..., ge=0)
    purchase_price_no_addon: float = Field(..., ge=0)
    insurance_name: Optional[str] = None
    insurance_fee: float = 0.0
    required_addons: List[str] = Field(default_factory=list)
