"""
Subsidy pricing domain.

Components:
- SubsidyCalculator: per-device price derivation
- PricingReconciliationPipeline: multi-carrier ordering and de-duplication
- PricingService: facade used by the CRUD / UI layer
"""

from .calculator import SubsidyCalculator, is_flip_fold_name
from .exceptions import ModelNotFoundError, PipelineStateError, PricingError
from .models import (
    AddonService,
    DeviceModel,
    InsuranceProduct,
    PolicySettings,
    PricingResult,
    SpecialPolicy,
)
from .pipeline import (
    CarrierDataSource,
    PipelineState,
    PricingReconciliationPipeline,
    PricingRequest,
    ReconciliationReport,
    ResultSink,
    order_and_deduplicate,
)
from .service import PricingService

__all__ = [
    "SubsidyCalculator",
    "is_flip_fold_name",
    "ModelNotFoundError",
    "PipelineStateError",
    "PricingError",
    "AddonService",
    "DeviceModel",
    "InsuranceProduct",
    "PolicySettings",
    "PricingResult",
    "SpecialPolicy",
    "CarrierDataSource",
    "PipelineState",
    "PricingReconciliationPipeline",
    "PricingRequest",
    "ReconciliationReport",
    "ResultSink",
    "order_and_deduplicate",
    "PricingService",
]
