"""
Opening-type (contract action) classification.

Dealer sheets label the transaction type in free text: "010신규", "신규/기변",
"MNP", "번호이동", "전유형" and many spellings in between. This module is the
only place that turns those labels into the closed OpeningType set.
"""

from enum import Enum
from typing import AbstractSet, FrozenSet, Union


class OpeningType(str, Enum):
    """Closed set of opening types. Values are the labels used in the sheets."""

    NEW_LINE = "010신규"
    PORT_IN = "MNP"
    DEVICE_CHANGE = "기변"
    COMBINED = "010신규/기변"
    ALL_TYPES = "전유형"


CONCRETE_TYPES: FrozenSet[OpeningType] = frozenset(
    {OpeningType.NEW_LINE, OpeningType.PORT_IN, OpeningType.DEVICE_CHANGE}
)

# Display order for the concrete types
CONCRETE_ORDER = (OpeningType.NEW_LINE, OpeningType.PORT_IN, OpeningType.DEVICE_CHANGE)

ALL_TYPES_KEYWORDS = ("전유형", "전체", "모두")
NEW_LINE_KEYWORDS = ("010", "신규")
PORT_IN_KEYWORDS = ("mnp", "번호이동")
DEVICE_CHANGE_KEYWORDS = ("기변", "기기변경")

# Legacy API codes still sent by older clients
_LEGACY_CODES = {
    "NEW": OpeningType.NEW_LINE,
    "MNP": OpeningType.PORT_IN,
    "CHANGE": OpeningType.DEVICE_CHANGE,
}

_NAME_ALIASES = {
    "combinedneworchange": OpeningType.COMBINED,
}


def _clean(raw_label: object) -> str:
    if raw_label is None:
        return ""
    return "".join(str(raw_label).lower().split())


def is_all_types(raw_label: object) -> bool:
    """True when the label is a blanket "all types" label."""
    text = _clean(raw_label)
    return any(keyword in text for keyword in ALL_TYPES_KEYWORDS)


def classify(raw_label: object) -> FrozenSet[OpeningType]:
    """
    Map a free-text label to the concrete opening types it covers.

    Rules, in priority order:
    1. "전유형" / "전체" / "모두" -> all three concrete types
    2. "010" or "신규" -> NEW_LINE; "mnp" or "번호이동" -> PORT_IN;
       "기변" or "기기변경" -> DEVICE_CHANGE (additive)
    3. nothing matched -> NEW_LINE

    Examples:
        >>> sorted(t.name for t in classify("010신규/기변"))
        ['DEVICE_CHANGE', 'NEW_LINE']
        >>> classify("번호 이동") == frozenset({OpeningType.PORT_IN})
        True
    """
    if is_all_types(raw_label):
        return CONCRETE_TYPES

    text = _clean(raw_label)
    types = set()
    if any(keyword in text for keyword in NEW_LINE_KEYWORDS):
        types.add(OpeningType.NEW_LINE)
    if any(keyword in text for keyword in PORT_IN_KEYWORDS):
        types.add(OpeningType.PORT_IN)
    if any(keyword in text for keyword in DEVICE_CHANGE_KEYWORDS):
        types.add(OpeningType.DEVICE_CHANGE)

    if not types:
        return frozenset({OpeningType.NEW_LINE})
    return frozenset(types)


def is_combined(types: AbstractSet[OpeningType]) -> bool:
    """True when a classified set covers new line and device change together."""
    return OpeningType.NEW_LINE in types and OpeningType.DEVICE_CHANGE in types


def coerce_opening_type(value: Union[OpeningType, str, None]) -> Union[OpeningType, str]:
    """
    Resolve a caller-supplied opening type.

    Accepts enum members, enum values ("MNP"), enum names in any case with or
    without underscores ("PORT_IN", "PortIn") and legacy codes ("NEW",
    "CHANGE"). Any other non-empty string is returned
    stripped, to be used as a literal synonym key.
    """
    if isinstance(value, OpeningType):
        return value
    if value is None:
        return OpeningType.NEW_LINE
    text = str(value).strip()
    if not text:
        return OpeningType.NEW_LINE
    folded = text.replace("_", "").lower()
    for member in OpeningType:
        if text == member.value or folded == member.name.replace("_", "").lower():
            return member
    alias = _NAME_ALIASES.get(folded)
    if alias is not None:
        return alias
    legacy = _LEGACY_CODES.get(text.upper())
    if legacy is not None:
        return legacy
    return text
