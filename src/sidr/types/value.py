"""
Value Types - Column value conversion for SIDR
Converts raw column bytes into Python values according to the JET column type.
"""

import datetime
import struct
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional, Union

from ..catalog.schema import Column, ColumnType
from ..constants import CODEPAGE_UNICODE, CODEPAGE_WESTERN, CODEPAGE_ASCII
from ..exceptions import InvalidValue

EPOCH_UNIX = datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc)
EPOCH_FILETIME = datetime.datetime(1601, 1, 1, tzinfo=datetime.timezone.utc)
EPOCH_OLE = datetime.datetime(1899, 12, 30, tzinfo=datetime.timezone.utc)

CURRENCY_SCALE = Decimal(10000)

_CODECS = {
    CODEPAGE_UNICODE: 'utf-16-le',
    CODEPAGE_WESTERN: 'cp1252',
    CODEPAGE_ASCII: 'ascii',
}

_STRUCT_FORMATS = {
    ColumnType.UNSIGNED_BYTE: '<B',
    ColumnType.SHORT: '<h',
    ColumnType.LONG: '<i',
    ColumnType.IEEE_SINGLE: '<f',
    ColumnType.IEEE_DOUBLE: '<d',
    ColumnType.UNSIGNED_LONG: '<I',
    ColumnType.LONG_LONG: '<q',
    ColumnType.UNSIGNED_SHORT: '<H',
}


@dataclass(frozen=True)
class LongValueRef:
    """Reference into a table's long-value tree"""
    lid: int
    width: int = 4

    @classmethod
    def from_bytes(cls, raw: bytes) -> "LongValueRef":
        if len(raw) not in (4, 8):
            raise InvalidValue(f"Long value reference of {len(raw)} bytes")
        return cls(int.from_bytes(raw, 'little'), len(raw))


def decode_text(raw: bytes, codepage: int = CODEPAGE_UNICODE) -> str:
    """Decode text bytes in the column's code page, dropping trailing NULs"""
    codec = _CODECS.get(codepage, 'utf-16-le')
    if codec == 'utf-16-le' and len(raw) % 2:
        raw = raw[:-1]
    return raw.decode(codec, errors='replace').rstrip('\x00')


def filetime_to_datetime(value: int) -> Optional[datetime.datetime]:
    """Convert a FILETIME (100 ns ticks since 1601) to an aware UTC datetime"""
    if value <= 0:
        return None
    try:
        return EPOCH_FILETIME + datetime.timedelta(microseconds=value // 10)
    except OverflowError:
        return None


def ole_date_to_datetime(value: float) -> Optional[datetime.datetime]:
    """Convert an OLE automation date (days since 1899-12-30) to a UTC datetime"""
    try:
        return EPOCH_OLE + datetime.timedelta(days=value)
    except (OverflowError, ValueError):
        return None


def unix_to_datetime(value: int) -> Optional[datetime.datetime]:
    try:
        return EPOCH_UNIX + datetime.timedelta(seconds=value)
    except OverflowError:
        return None


def format_timestamp(value: Optional[datetime.datetime]) -> str:
    """ISO 8601 UTC text used in reports"""
    if value is None:
        return ""
    return value.astimezone(datetime.timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%fZ')


def _expect_width(column: Column, raw: bytes, width: int) -> None:
    if len(raw) != width:
        raise InvalidValue(f"Column '{column.name}' ({column.column_type.name}) expects "
                           f"{width} bytes, got {len(raw)}")


def convert(column: Column, raw: bytes) -> Any:
    """
    Convert raw bytes of one column value

    Args:
        column: Column definition (type and code page)
        raw: Uncompressed, inline value bytes

    Returns:
        Python value: int, float, bool, Decimal, datetime, str, bytes or None

    Raises:
        InvalidValue: If the byte width does not match the column type
    """
    column_type = column.column_type

    if column_type == ColumnType.NIL:
        return None
    if column_type == ColumnType.BIT:
        _expect_width(column, raw, 1)
        return raw[0] != 0
    if column_type in _STRUCT_FORMATS:
        fmt = _STRUCT_FORMATS[column_type]
        _expect_width(column, raw, struct.calcsize(fmt))
        return struct.unpack(fmt, raw)[0]
    if column_type == ColumnType.CURRENCY:
        _expect_width(column, raw, 8)
        return Decimal(struct.unpack('<q', raw)[0]) / CURRENCY_SCALE
    if column_type == ColumnType.DATE_TIME:
        if len(raw) == 4:
            return unix_to_datetime(struct.unpack('<I', raw)[0])
        _expect_width(column, raw, 8)
        return ole_date_to_datetime(struct.unpack('<d', raw)[0])
    if column_type == ColumnType.GUID:
        _expect_width(column, raw, 16)
        return str(uuid.UUID(bytes_le=raw))
    if column_type.is_text:
        return decode_text(raw, column.codepage)
    # BINARY, LONG_BINARY, SLV
    return bytes(raw)


def empty_value(column: Column) -> Union[str, bytes, None]:
    """Value surfaced for a column whose long value could not be resolved"""
    if column.column_type.is_text:
        return ""
    if column.column_type.fixed_width is None:
        return b""
    return None
