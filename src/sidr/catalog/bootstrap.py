"""
Catalog Bootstrap
=================
Hand decoder for MSysObjects records.

The catalog describes the layout of every table, including its own, so it
cannot be read through the generic record decoder. Its fixed part has a
known layout:

    [last fixed id:1][last variable id:1][variable table offset:2]
    [ObjidTable:4][Type:2][Id:4][ColtypOrPgnoFDP:4][SpaceUsage:4]
    [Flags:4][PagesOrLocale:4] ...

The first variable column (id 128) is the object name.
"""

import logging
import struct
from typing import Optional

from .schema import CatalogEntry, EntryType
from ..constants import (RECORD_HEADER_SIZE, CATALOG_OBJID_TABLE_OFFSET, CATALOG_TYPE_OFFSET,
                         CATALOG_ID_OFFSET, CATALOG_COLTYP_OR_PGNO_OFFSET,
                         CATALOG_SPACE_USAGE_OFFSET, CATALOG_FLAGS_OFFSET,
                         CATALOG_PAGES_OR_LOCALE_OFFSET, CATALOG_FIXED_END,
                         CATALOG_LAST_REQUIRED_FIXED_ID, FIRST_VARIABLE_COLUMN_ID,
                         VARIABLE_NULL_FLAG, VARIABLE_OFFSET_MASK)
from ..exceptions import TruncatedRecord

logger = logging.getLogger(__name__)


def _read_name(data: bytes, last_variable_id: int, variable_offset: int) -> str:
    """Read the Name column (first variable column) of a catalog record"""
    if last_variable_id < FIRST_VARIABLE_COLUMN_ID:
        return ""

    variable_count = last_variable_id - FIRST_VARIABLE_COLUMN_ID + 1
    data_start = variable_offset + 2 * variable_count
    if data_start > len(data):
        raise TruncatedRecord(f"Catalog record: variable offset table ends at {data_start}, "
                              f"record has {len(data)} bytes")

    end_word = struct.unpack_from('<H', data, variable_offset)[0]
    if end_word & VARIABLE_NULL_FLAG:
        return ""
    end = data_start + (end_word & VARIABLE_OFFSET_MASK)
    if end > len(data):
        raise TruncatedRecord(f"Catalog record: name ends at {end}, record has {len(data)} bytes")

    return data[data_start:end].decode('cp1252', errors='replace').rstrip('\x00')


def decode_catalog_entry(data: bytes) -> Optional[CatalogEntry]:
    """
    Decode one catalog record with the fixed bootstrap layout

    Args:
        data: Raw leaf record bytes

    Returns:
        CatalogEntry, or None for entry types this reader does not use

    Raises:
        TruncatedRecord: If the record is shorter than its own header claims
    """
    if len(data) < RECORD_HEADER_SIZE:
        raise TruncatedRecord(f"Catalog record of {len(data)} bytes has no header")

    last_fixed_id, last_variable_id, variable_offset = struct.unpack_from('<BBH', data, 0)
    if last_fixed_id < CATALOG_LAST_REQUIRED_FIXED_ID:
        raise TruncatedRecord(f"Catalog record carries only {last_fixed_id} fixed columns")
    if len(data) < CATALOG_FIXED_END or variable_offset > len(data):
        raise TruncatedRecord(f"Catalog record of {len(data)} bytes is shorter than its "
                              f"fixed columns")

    type_code = struct.unpack_from('<H', data, CATALOG_TYPE_OFFSET)[0]
    try:
        entry_type = EntryType(type_code)
    except ValueError:
        logger.debug(f"Skipping catalog entry of unknown type {type_code}")
        return None

    return CatalogEntry(
        table_objid=struct.unpack_from('<I', data, CATALOG_OBJID_TABLE_OFFSET)[0],
        entry_type=entry_type,
        identifier=struct.unpack_from('<I', data, CATALOG_ID_OFFSET)[0],
        coltyp_or_pgno=struct.unpack_from('<I', data, CATALOG_COLTYP_OR_PGNO_OFFSET)[0],
        space_usage=struct.unpack_from('<I', data, CATALOG_SPACE_USAGE_OFFSET)[0],
        flags=struct.unpack_from('<I', data, CATALOG_FLAGS_OFFSET)[0],
        pages_or_locale=struct.unpack_from('<I', data, CATALOG_PAGES_OR_LOCALE_OFFSET)[0],
        name=_read_name(data, last_variable_id, variable_offset),
    )
