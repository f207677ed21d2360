"""
Artifact Rules - Declarative mapping from Windows Search columns to report fields

Each table maps to an ordered list of ReportRule; the first rule whose
selector accepts a record decides the report kind. Column names are
canonical (without the numeric "NNNN-" prefix Windows Search adds).
"""

import datetime
import struct
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, NamedTuple, Optional, Tuple

from ..types.value import filetime_to_datetime, format_timestamp


class ReportKind(Enum):
    """Report families, valued by the name used in report file names"""
    FILE = "File_Report"
    ACTIVITY_HISTORY = "Activity_History_Report"
    INTERNET_HISTORY = "Internet_History_Report"

    @property
    def suffix(self) -> str:
        """Short tag identifying the kind inside a combined stdout stream"""
        return _SUFFIXES[self]


_SUFFIXES = {
    ReportKind.FILE: "file_report",
    ReportKind.ACTIVITY_HISTORY: "activity_history",
    ReportKind.INTERNET_HISTORY: "internet_history",
}


# --------------------------------------------------------------------
# Transforms
# --------------------------------------------------------------------

def to_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.hex()
    if isinstance(value, list):
        return "; ".join(t for t in (to_text(v) for v in value) if t)
    if isinstance(value, datetime.datetime):
        return format_timestamp(value)
    return str(value)


def to_integer(value: Any) -> Optional[int]:
    if value is None or value == "" or value == b"":
        return None
    if isinstance(value, bytes):
        return int.from_bytes(value, 'little')
    if isinstance(value, list):
        return to_integer(value[0]) if value else None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def to_filetime(value: Any) -> Optional[str]:
    """FILETIME as integer, 8-byte little-endian blob or datetime -> ISO 8601 UTC"""
    if value is None:
        return None
    if isinstance(value, datetime.datetime):
        return format_timestamp(value)
    if isinstance(value, (bytes, bytearray)):
        if len(value) != 8:
            return None
        value = struct.unpack('<Q', value)[0]
    elif isinstance(value, str):
        try:
            value = int(value)
        except ValueError:
            return value
    if not isinstance(value, int):
        return None
    timestamp = filetime_to_datetime(value)
    return format_timestamp(timestamp) if timestamp else None


def to_hex(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        return value.hex()
    if isinstance(value, int):
        return f"{value:x}"
    return str(value)


TRANSFORMS: Dict[str, Callable[[Any], Any]] = {
    "text": to_text,
    "integer": to_integer,
    "filetime": to_filetime,
    "hex": to_hex,
}


# --------------------------------------------------------------------
# Rules
# --------------------------------------------------------------------

class FieldRule(NamedTuple):
    """(source column, report field, transform name)"""
    source: str
    field: str
    transform: str = "text"


@dataclass(frozen=True)
class ReportRule:
    """Selects records for one report kind and lists the fields it carries"""
    kind: ReportKind
    selector: Callable[[Mapping[str, Any]], bool]
    fields: Tuple[FieldRule, ...]

    @property
    def field_names(self) -> List[str]:
        return [f.field for f in self.fields]


def is_activity_history(record: Mapping[str, Any]) -> bool:
    return record.get("System_ItemType") == "ActivityHistoryItem"


def is_internet_history(record: Mapping[str, Any]) -> bool:
    url = record.get("System_ItemUrl")
    return isinstance(url, str) and url.startswith("iehistory://")


def is_any(record: Mapping[str, Any]) -> bool:
    return True


ACTIVITY_HISTORY_RULE = ReportRule(
    kind=ReportKind.ACTIVITY_HISTORY,
    selector=is_activity_history,
    fields=(
        FieldRule("WorkID", "WorkId", "integer"),
        FieldRule("System_ComputerName", "System_ComputerName"),
        FieldRule("System_ItemNameDisplay", "System_ItemNameDisplay"),
        FieldRule("System_ActivityHistory_StartTime", "System_ActivityHistory_StartTime", "filetime"),
        FieldRule("System_ActivityHistory_EndTime", "System_ActivityHistory_EndTime", "filetime"),
        FieldRule("System_Activity_AppDisplayName", "System_Activity_AppDisplayName"),
        FieldRule("System_ActivityHistory_AppId", "System_ActivityHistory_AppId"),
        FieldRule("System_Activity_DisplayText", "System_Activity_DisplayText"),
        FieldRule("System_Activity_ContentUri", "System_Activity_ContentUri"),
    ),
)

INTERNET_HISTORY_RULE = ReportRule(
    kind=ReportKind.INTERNET_HISTORY,
    selector=is_internet_history,
    fields=(
        FieldRule("WorkID", "WorkId", "integer"),
        FieldRule("System_ComputerName", "System_ComputerName"),
        FieldRule("System_ItemName", "System_ItemName"),
        FieldRule("System_ItemUrl", "System_ItemUrl"),
        FieldRule("System_Link_TargetUrl", "System_Link_TargetUrl"),
        FieldRule("System_ItemDate", "System_ItemDate", "filetime"),
        FieldRule("System_Search_GatherTime", "System_Search_GatherTime", "filetime"),
        FieldRule("System_Title", "System_Title"),
    ),
)

FILE_RULE = ReportRule(
    kind=ReportKind.FILE,
    selector=is_any,
    fields=(
        FieldRule("WorkID", "WorkId", "integer"),
        FieldRule("System_ComputerName", "System_ComputerName"),
        FieldRule("System_ItemPathDisplay", "System_ItemPathDisplay"),
        FieldRule("System_DateModified", "System_DateModified", "filetime"),
        FieldRule("System_DateCreated", "System_DateCreated", "filetime"),
        FieldRule("System_DateAccessed", "System_DateAccessed", "filetime"),
        FieldRule("System_Size", "System_Size", "integer"),
        FieldRule("System_FileOwner", "System_FileOwner"),
        FieldRule("System_Search_AutoSummary", "System_Search_AutoSummary"),
        FieldRule("System_Search_GatherTime", "System_Search_GatherTime", "filetime"),
        FieldRule("System_ItemType", "System_ItemType"),
    ),
)

SEARCH_RULES = (ACTIVITY_HISTORY_RULE, INTERNET_HISTORY_RULE, FILE_RULE)

# Tables holding indexed item properties, in the order they are reported
TABLE_RULES: Dict[str, Tuple[ReportRule, ...]] = {
    "SystemIndex_PropertyStore": SEARCH_RULES,
    "SystemIndex_0A": SEARCH_RULES,
}

HOSTNAME_COLUMN = "System_ComputerName"


def rules_for(kind: ReportKind) -> ReportRule:
    """Rule describing a report kind's fields"""
    for rule in SEARCH_RULES:
        if rule.kind == kind:
            return rule
    raise KeyError(kind)
