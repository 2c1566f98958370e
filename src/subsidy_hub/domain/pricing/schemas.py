from __future__ import annotations

from typing import Sequence

import pandas as pd
import pandera.pandas as pa

RESULT_COLUMNS: Sequence[str] = (
    "carrier",
    "model",
    "normalized_model",
    "display_name",
    "plan_group",
    "opening_type",
    "factory_price",
    "public_support",
    "policy_rebate",
    "policy_margin",
    "store_support",
    "store_support_no_addon",
    "purchase_price",
    "purchase_price_no_addon",
    "insurance_name",
    "insurance_fee",
    "required_addons",
)
RESULT_PARTITION_KEY: Sequence[str] = (
    "carrier",
    "plan_group",
    "opening_type",
    "normalized_model",
)
NON_NEGATIVE_COLUMNS: Sequence[str] = (
    "factory_price",
    "store_support",
    "store_support_no_addon",
    "purchase_price",
    "purchase_price_no_addon",
)

PricingResultSchema = pa.DataFrameSchema(
    columns={
        "carrier": pa.Column(pa.String, nullable=False, coerce=True),
        "model": pa.Column(pa.String, nullable=False, coerce=True),
        "normalized_model": pa.Column(pa.String, nullable=False, coerce=True),
        "plan_group": pa.Column(pa.String, nullable=False, coerce=True),
        "opening_type": pa.Column(pa.String, nullable=False, coerce=True),
        "public_support": pa.Column(pa.Float, nullable=False, coerce=True),
        "policy_rebate": pa.Column(pa.Float, nullable=False, coerce=True),
        "policy_margin": pa.Column(pa.Float, nullable=False, coerce=True),
        **{
            column: pa.Column(pa.Float, pa.Check.ge(0), nullable=False, coerce=True)
            for column in NON_NEGATIVE_COLUMNS
        },
    },
    unique=list(RESULT_PARTITION_KEY),
    strict=False,
    coerce=True,
)


def validate_results_frame(dataframe: pd.DataFrame) -> pd.DataFrame:
    """Validate a results frame; raises pandera SchemaErrors with all failures."""
    return PricingResultSchema.validate(dataframe, lazy=True)
