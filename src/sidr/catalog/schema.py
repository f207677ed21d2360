"""
Schema Module - Table and column metadata definitions
Defines the in-memory representation of the schemas found in the catalog.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from ..constants import (LAST_FIXED_COLUMN_ID, LAST_VARIABLE_COLUMN_ID,
                         COLUMN_FLAG_MULTI_VALUED, COLUMN_FLAG_COMPRESSED,
                         CATALOG_TYPE_TABLE, CATALOG_TYPE_COLUMN, CATALOG_TYPE_INDEX,
                         CATALOG_TYPE_LONG_VALUE, CATALOG_TYPE_CALLBACK, CODEPAGE_UNICODE)


class ColumnType(Enum):
    """JET column types"""
    NIL = 0
    BIT = 1
    UNSIGNED_BYTE = 2
    SHORT = 3
    LONG = 4
    CURRENCY = 5
    IEEE_SINGLE = 6
    IEEE_DOUBLE = 7
    DATE_TIME = 8
    BINARY = 9
    TEXT = 10
    LONG_BINARY = 11
    LONG_TEXT = 12
    SLV = 13
    UNSIGNED_LONG = 14
    LONG_LONG = 15
    GUID = 16
    UNSIGNED_SHORT = 17

    @classmethod
    def from_code(cls, code: int) -> "ColumnType":
        """Map a catalog type code, unknown codes read as raw binary"""
        try:
            return cls(code)
        except ValueError:
            return cls.BINARY

    @property
    def fixed_width(self) -> Optional[int]:
        """Byte width of fixed-size types, None for variable-size ones"""
        return _FIXED_WIDTHS.get(self)

    @property
    def is_text(self) -> bool:
        return self in (ColumnType.TEXT, ColumnType.LONG_TEXT)


_FIXED_WIDTHS = {
    ColumnType.BIT: 1,
    ColumnType.UNSIGNED_BYTE: 1,
    ColumnType.SHORT: 2,
    ColumnType.LONG: 4,
    ColumnType.CURRENCY: 8,
    ColumnType.IEEE_SINGLE: 4,
    ColumnType.IEEE_DOUBLE: 8,
    ColumnType.DATE_TIME: 8,
    ColumnType.UNSIGNED_LONG: 4,
    ColumnType.LONG_LONG: 8,
    ColumnType.GUID: 16,
    ColumnType.UNSIGNED_SHORT: 2,
}


class StorageClass(Enum):
    """Where a column's bytes live inside a record, decided by its identifier"""
    FIXED = 1
    VARIABLE = 2
    TAGGED = 3

    @classmethod
    def for_column_id(cls, column_id: int) -> "StorageClass":
        if column_id <= LAST_FIXED_COLUMN_ID:
            return cls.FIXED
        if column_id <= LAST_VARIABLE_COLUMN_ID:
            return cls.VARIABLE
        return cls.TAGGED


class EntryType(Enum):
    """Catalog entry types"""
    TABLE = CATALOG_TYPE_TABLE
    COLUMN = CATALOG_TYPE_COLUMN
    INDEX = CATALOG_TYPE_INDEX
    LONG_VALUE = CATALOG_TYPE_LONG_VALUE
    CALLBACK = CATALOG_TYPE_CALLBACK


@dataclass(frozen=True)
class CatalogEntry:
    """One decoded row of the catalog table"""
    table_objid: int
    entry_type: EntryType
    identifier: int
    coltyp_or_pgno: int
    space_usage: int
    flags: int
    pages_or_locale: int
    name: str


@dataclass(frozen=True)
class Column:
    """Column metadata definition"""
    column_id: int
    name: str
    column_type: ColumnType
    size: int = 0
    flags: int = 0
    codepage: int = CODEPAGE_UNICODE

    @property
    def storage(self) -> StorageClass:
        return StorageClass.for_column_id(self.column_id)

    @property
    def width(self) -> int:
        """Bytes occupied in the fixed area (fixed columns only)"""
        return self.column_type.fixed_width or self.size

    @property
    def is_multi_valued(self) -> bool:
        return bool(self.flags & COLUMN_FLAG_MULTI_VALUED)

    @property
    def is_compressed(self) -> bool:
        return bool(self.flags & COLUMN_FLAG_COMPRESSED)

    @classmethod
    def from_entry(cls, entry: CatalogEntry) -> "Column":
        return cls(
            column_id=entry.identifier,
            name=entry.name,
            column_type=ColumnType.from_code(entry.coltyp_or_pgno),
            size=entry.space_usage,
            flags=entry.flags,
            codepage=entry.pages_or_locale or CODEPAGE_UNICODE,
        )


@dataclass
class TableSchema:
    """Table definition assembled from catalog entries"""
    name: str
    objid: int
    root_page: int
    fixed_columns: List[Column] = field(default_factory=list)
    variable_columns: List[Column] = field(default_factory=list)
    tagged_columns: Dict[int, Column] = field(default_factory=dict)
    long_value_root: Optional[int] = None
    indexes: List[str] = field(default_factory=list)

    def __post_init__(self):
        """Keep fixed and variable columns in identifier order"""
        self.fixed_columns.sort(key=lambda c: c.column_id)
        self.variable_columns.sort(key=lambda c: c.column_id)
        self._by_name = {c.name: c for c in self.columns}
        self._by_id = {c.column_id: c for c in self.columns}

    @classmethod
    def build(cls, name: str, objid: int, root_page: int, columns: List[Column],
              long_value_root: Optional[int] = None,
              indexes: Optional[List[str]] = None) -> "TableSchema":
        """
        Build a schema, sorting columns into their storage classes

        Raises:
            ValueError: If two columns share an identifier
        """
        seen = set()
        fixed, variable, tagged = [], [], {}
        for column in columns:
            if column.column_id in seen:
                raise ValueError(f"Table '{name}': duplicate column id {column.column_id}")
            seen.add(column.column_id)
            if column.storage == StorageClass.FIXED:
                fixed.append(column)
            elif column.storage == StorageClass.VARIABLE:
                variable.append(column)
            else:
                tagged[column.column_id] = column
        return cls(name, objid, root_page, fixed, variable, tagged,
                   long_value_root, list(indexes or []))

    @property
    def columns(self) -> List[Column]:
        """All columns in identifier order"""
        return (self.fixed_columns + self.variable_columns +
                sorted(self.tagged_columns.values(), key=lambda c: c.column_id))

    def get_column(self, name: str) -> Optional[Column]:
        """Get column by name"""
        return self._by_name.get(name)

    def column_by_id(self, column_id: int) -> Optional[Column]:
        """Get column by identifier"""
        return self._by_id.get(column_id)

    def __repr__(self) -> str:
        return (f"TableSchema(name={self.name!r}, root={self.root_page}, "
                f"fixed={len(self.fixed_columns)}, variable={len(self.variable_columns)}, "
                f"tagged={len(self.tagged_columns)}, lv_root={self.long_value_root})")
