"""
Readers turning upstream rows into named records and domain inputs.
"""

from .carrier_tables import CarrierDataLoader
from .table_reader import (
    TABLE_SCHEMAS,
    ColumnSpec,
    SchemaDriftError,
    TableKind,
    build_column_map,
    parse_amount,
    parse_flag,
    read_table,
)

__all__ = [
    "CarrierDataLoader",
    "TABLE_SCHEMAS",
    "ColumnSpec",
    "SchemaDriftError",
    "TableKind",
    "build_column_map",
    "parse_amount",
    "parse_flag",
    "read_table",
]
