"""
Fuzzy composite-key matching.

Components:
- normalize / variants / variant_chain: model code canonicalization
- OpeningType / classify: opening-type label classification
- CompositeKeyIndex: (model variant, opening type) -> amount lookup map
"""

from .composite_index import CompositeKeyIndex, IndexRow
from .normalizer import normalize, variant_chain, variants
from .opening_type import (
    CONCRETE_ORDER,
    CONCRETE_TYPES,
    OpeningType,
    classify,
    coerce_opening_type,
    is_all_types,
    is_combined,
)

__all__ = [
    "CompositeKeyIndex",
    "IndexRow",
    "normalize",
    "variant_chain",
    "variants",
    "CONCRETE_ORDER",
    "CONCRETE_TYPES",
    "OpeningType",
    "classify",
    "coerce_opening_type",
    "is_all_types",
    "is_combined",
]
