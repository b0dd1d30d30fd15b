"""
Utility modules for WALI-OS.
"""

from walios.utils.records import (
    as_list,
    days_until,
    parse_datetime,
    serialize_row,
    serialize_rows,
    to_json_value,
    to_number,
)

__all__ = [
    "as_list",
    "days_until",
    "parse_datetime",
    "serialize_row",
    "serialize_rows",
    "to_json_value",
    "to_number",
]
