"""
Named-record ingestion for upstream tables.

Each table kind has a fixed set of fields. The header row of every range is
resolved once into a validated ``field -> column index`` map, so a renamed or
missing column fails fast with SchemaDriftError instead of being misread.
Header matching ignores whitespace and case and accepts the aliases listed in
TABLE_SCHEMAS.
"""

import re
import unicodedata
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from subsidy_hub.utils.logging import get_logger

logger = get_logger(__name__)


class TableKind(str, Enum):
    DEVICE = "device"
    SUPPORT = "support"
    REBATE = "rebate"
    MARGIN = "margin"
    ADDON = "addon"
    INSURANCE = "insurance"
    SPECIAL = "special"


class SchemaDriftError(ValueError):
    """A required column is missing from a table header."""

    def __init__(
        self, kind: TableKind, missing: Sequence[str], header: Sequence[str]
    ) -> None:
        self.kind = kind
        self.missing = tuple(missing)
        self.header = tuple(header)
        super().__init__(
            f"{kind.value} table header is missing required column(s) "
            f"{list(self.missing)}; got {list(self.header)}"
        )


@dataclass(frozen=True)
class ColumnSpec:
    """One named field of a table and the header labels it may appear under."""

    field: str
    headers: Tuple[str, ...]
    required: bool = True


TABLE_SCHEMAS: Dict[TableKind, Tuple[ColumnSpec, ...]] = {
    TableKind.DEVICE: (
        ColumnSpec("model", ("모델명", "모델", "model", "model_code")),
        ColumnSpec("display_name", ("펫네임", "display_name", "pet_name"), required=False),
        ColumnSpec("manufacturer", ("제조사", "manufacturer"), required=False),
        ColumnSpec("factory_price", ("출고가", "factory_price"), required=False),
        ColumnSpec("premium", ("프리미엄", "premium"), required=False),
        ColumnSpec("budget", ("중저가", "budget"), required=False),
    ),
    TableKind.SUPPORT: (
        ColumnSpec("model", ("모델명", "모델", "model", "model_code")),
        ColumnSpec("opening_type", ("개통유형", "유형", "opening_type"), required=False),
        ColumnSpec("factory_price", ("출고가", "factory_price"), required=False),
        ColumnSpec("amount", ("이통사지원금", "공시지원금", "지원금", "support", "amount")),
    ),
    TableKind.REBATE: (
        ColumnSpec("model", ("모델명", "모델", "model", "model_code")),
        ColumnSpec("opening_type", ("개통유형", "유형", "opening_type"), required=False),
        ColumnSpec("amount", ("정책리베이트", "리베이트", "rebate", "amount")),
    ),
    TableKind.MARGIN: (
        ColumnSpec("carrier", ("통신사", "carrier")),
        ColumnSpec("margin", ("마진", "margin")),
    ),
    TableKind.ADDON: (
        ColumnSpec("carrier", ("통신사", "carrier")),
        ColumnSpec("name", ("서비스명", "name")),
        ColumnSpec("fee", ("월요금", "fee"), required=False),
        ColumnSpec("incentive", ("유치추가금액", "incentive")),
        ColumnSpec("deduction", ("미유치차감금액", "deduction")),
    ),
    TableKind.INSURANCE: (
        ColumnSpec("carrier", ("통신사", "carrier")),
        ColumnSpec("name", ("보험상품명", "name")),
        ColumnSpec("min_price", ("출고가최소", "min_price"), required=False),
        ColumnSpec("max_price", ("출고가최대", "max_price"), required=False),
        ColumnSpec("fee", ("월요금", "fee"), required=False),
        ColumnSpec("incentive", ("유치추가금액", "incentive")),
        ColumnSpec("deduction", ("미유치차감금액", "deduction")),
        ColumnSpec("flip_fold", ("플립폴드", "플립/폴드", "flip_fold"), required=False),
    ),
    TableKind.SPECIAL: (
        ColumnSpec("carrier", ("통신사", "carrier")),
        ColumnSpec("name", ("정책명", "name")),
        ColumnSpec("addition", ("추가금액", "addition")),
        ColumnSpec("deduction", ("차감금액", "deduction")),
        ColumnSpec("is_active", ("적용여부", "is_active", "active"), required=False),
    ),
}

NULL_PLACEHOLDERS = {"", "-", "N/A", "n/a", "null", "NULL", "None", "없음"}
CURRENCY_SYMBOLS = ("₩", "원", "$", "¥", "￦")
TRUE_FLAGS = {"y", "yes", "true", "o", "1", "적용"}


def _clean_header(label: Any) -> str:
    if label is None:
        return ""
    return re.sub(r"\s+", "", unicodedata.normalize("NFKC", str(label))).lower()


@lru_cache(maxsize=256)
def build_column_map(kind: TableKind, header: Tuple[str, ...]) -> Mapping[str, int]:
    """
    Resolve a header row into ``field -> column index`` for one table kind.

    The first header cell matching any alias of a field wins. Optional fields
    absent from the header are left out of the map.

    Raises:
        SchemaDriftError: A required field has no matching header cell.
    """
    cleaned = [_clean_header(h) for h in header]
    column_map: Dict[str, int] = {}
    missing: List[str] = []
    for spec in TABLE_SCHEMAS[kind]:
        aliases = {_clean_header(a) for a in spec.headers}
        index = next((i for i, h in enumerate(cleaned) if h in aliases), None)
        if index is not None:
            column_map[spec.field] = index
        elif spec.required:
            missing.append(spec.field)

    if missing:
        logger.error(
            "table_reader.schema_drift",
            table_kind=kind.value,
            missing=missing,
            header=list(header),
        )
        raise SchemaDriftError(kind, missing, header)
    return MappingProxyType(column_map)


def _is_blank_row(row: Sequence[Any]) -> bool:
    return all(cell is None or str(cell).strip() == "" for cell in row)


def read_table(kind: TableKind, rows: Optional[Sequence[Sequence[Any]]]) -> List[Dict[str, Any]]:
    """
    Convert raw rows into named records.

    The first row is the header and is dropped. Blank rows are skipped; short
    rows yield None for the trailing fields. Every field of the table kind is
    present in each record (None when its optional column is absent).

    Args:
        kind: Table kind selecting the column schema.
        rows: Raw rows as returned by the tabular source.

    Returns:
        One dict per data row.

    Raises:
        SchemaDriftError: The header lacks a required column.
    """
    if not rows:
        return []
    header = tuple("" if cell is None else str(cell) for cell in rows[0])
    column_map = build_column_map(kind, header)
    fields = [spec.field for spec in TABLE_SCHEMAS[kind]]

    records: List[Dict[str, Any]] = []
    for row in rows[1:]:
        if not row or _is_blank_row(row):
            continue
        record: Dict[str, Any] = {}
        for field in fields:
            index = column_map.get(field)
            record[field] = row[index] if index is not None and index < len(row) else None
        records.append(record)
    return records


def parse_amount(value: Any, default: float = 0.0) -> float:
    """
    Parse a sheet cell into a number.

    Handles thousands separators, currency symbols, full-width digits and the
    usual null placeholders. Unparseable cells yield ``default``.

    Examples:
        >>> parse_amount("1,700,000원")
        1700000.0
        >>> parse_amount("-")
        0.0
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)

    text = unicodedata.normalize("NFKC", str(value)).strip()
    if text in NULL_PLACEHOLDERS:
        return default
    for symbol in CURRENCY_SYMBOLS:
        text = text.replace(symbol, "")
    text = text.replace(",", "").replace(" ", "")
    try:
        return float(text)
    except ValueError:
        logger.debug("table_reader.unparseable_amount", value=str(value))
        return default


def parse_flag(value: Any) -> bool:
    """True for checkbox-style cells (``TRUE``, ``Y``, ``O``, ``1``)."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in TRUE_FLAGS


def parse_text(value: Any) -> str:
    return "" if value is None else str(value).strip()
