"""
Subsidy calculation for one device, plan group and opening type.

store_support           = max(0, rebate - margin + addon incentives
                                 + insurance incentive + special additions)
store_support_no_addon  = max(0, rebate - margin + addon deductions
                                 + insurance deduction + special deductions)
purchase_price          = max(0, factory price - public support - store support)

Deductions are signed amounts as stored in the policy sheets (usually
negative), so they are added.
"""

from typing import List, Optional, Union

from subsidy_hub.config.pricing_config import CarrierConfig, PricingConfigError
from subsidy_hub.infrastructure.matching import (
    CompositeKeyIndex,
    OpeningType,
    coerce_opening_type,
)
from subsidy_hub.utils.logging import get_logger

from .models import DeviceModel, InsuranceProduct, PolicySettings, PricingResult

logger = get_logger(__name__)

FLIP_FOLD_KEYWORDS = ("플립", "폴드", "flip", "fold")


def is_flip_fold_name(text: Optional[str]) -> bool:
    if not text:
        return False
    lowered = text.lower()
    return any(keyword in lowered for keyword in FLIP_FOLD_KEYWORDS)


def is_flip_fold_device(device: DeviceModel) -> bool:
    return is_flip_fold_name(device.display_name) or is_flip_fold_name(device.raw_code)


def is_flip_fold_product(product: InsuranceProduct) -> bool:
    return product.flip_fold or is_flip_fold_name(product.name)


class SubsidyCalculator:
    """
    Prices devices for one carrier using its layout and policy snapshot.

    Examples:
        >>> calculator = SubsidyCalculator(carrier_config, policy)
        >>> result = calculator.calculate(device, "115군", OpeningType.PORT_IN,
        ...                               support_index, rebate_index)
        >>> result.store_support
        640000.0
    """

    def __init__(self, carrier_config: CarrierConfig, policy: PolicySettings) -> None:
        self.carrier_config = carrier_config
        self.policy = policy

        self.addon_incentive_sum = sum(a.incentive for a in policy.addon_services)
        self.addon_deduction_sum = sum(a.deduction for a in policy.addon_services)
        active = policy.active_special_policies
        self.special_addition_sum = sum(p.addition for p in active)
        self.special_deduction_sum = sum(p.deduction for p in active)

    @property
    def carrier(self) -> str:
        return self.carrier_config.name

    def select_plan_group(self, device: DeviceModel) -> str:
        """
        Default plan group for a device.

        Budget devices (tagged budget, not premium) use the low-tier group when
        one is configured; everything else uses the high-tier group.

        Raises:
            PricingConfigError: The carrier has no plan groups configured.
        """
        if device.is_budget and self.carrier_config.low_tier_plan_group:
            return self.carrier_config.low_tier_plan_group
        plan_group = self.carrier_config.high_tier_plan_group
        if plan_group is None:
            raise PricingConfigError(
                f"Carrier '{self.carrier}' has no plan groups configured"
            )
        return plan_group

    def select_insurance(self, device: DeviceModel) -> Optional[InsuranceProduct]:
        """Pick zero or one insurance product for a device."""
        catalog = self.policy.insurance_products
        if not catalog:
            return None
        flip_fold = [p for p in catalog if is_flip_fold_product(p)]
        regular = [p for p in catalog if not is_flip_fold_product(p)]

        if (
            flip_fold
            and self.carrier_config.prefer_flip_fold_insurance
            and is_flip_fold_device(device)
        ):
            for product in flip_fold:
                if product.covers(device.factory_price):
                    return product
            return flip_fold[0]

        for product in regular or catalog:
            if product.covers(device.factory_price):
                return product
        return None

    def required_addons(self, insurance: Optional[InsuranceProduct]) -> List[str]:
        names = [a.name for a in self.policy.addon_services if a.deduction]
        if insurance is not None:
            names.append(insurance.name)
        return names

    def calculate(
        self,
        device: DeviceModel,
        plan_group: Optional[str],
        opening_type: Union[OpeningType, str, None],
        support_index: CompositeKeyIndex,
        rebate_index: CompositeKeyIndex,
    ) -> PricingResult:
        """
        Price one device.

        Args:
            device: Device from the canonical list.
            plan_group: Plan group; None applies ``select_plan_group``.
            opening_type: Opening type or literal synonym label.
            support_index: Public support index for the plan group.
            rebate_index: Policy rebate index for the plan group (scaled).
        """
        plan_group = plan_group or self.select_plan_group(device)
        type_key = coerce_opening_type(opening_type)

        public_support = support_index.lookup(device.raw_code, type_key)
        policy_rebate = rebate_index.lookup(device.raw_code, type_key)
        margin = self.policy.base_margin

        insurance = self.select_insurance(device)
        insurance_incentive = insurance.incentive if insurance else 0.0
        insurance_deduction = insurance.deduction if insurance else 0.0

        store_support = max(
            0.0,
            policy_rebate
            - margin
            + self.addon_incentive_sum
            + insurance_incentive
            + self.special_addition_sum,
        )
        store_support_no_addon = max(
            0.0,
            policy_rebate
            - margin
            + self.addon_deduction_sum
            + insurance_deduction
            + self.special_deduction_sum,
        )
        factory_price = device.factory_price

        return PricingResult(
            carrier=self.carrier,
            model=device.raw_code,
            normalized_model=device.normalized_code,
            display_name=device.display_name,
            plan_group=plan_group,
            opening_type=type_key,
            factory_price=factory_price,
            public_support=float(public_support),
            policy_rebate=float(policy_rebate),
            policy_margin=float(margin),
            store_support=float(store_support),
            store_support_no_addon=float(store_support_no_addon),
            purchase_price=float(max(0.0, factory_price - public_support - store_support)),
            purchase_price_no_addon=float(
                max(0.0, factory_price - public_support - store_support_no_addon)
            ),
            insurance_name=insurance.name if insurance else None,
            insurance_fee=insurance.fee if insurance else 0.0,
            required_addons=self.required_addons(insurance),
        )
