"""
Catalog Module - System catalog loading
Reads MSysObjects through the B+ tree navigator and the bootstrap decoder
and assembles the table schemas of the store.
"""

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from .bootstrap import decode_catalog_entry
from .schema import CatalogEntry, Column, EntryType, TableSchema
from ..constants import (CATALOG_ROOT_PAGE, CATALOG_SHADOW_ROOT_PAGE, CATALOG_TABLE_NAME,
                         MAX_FORMAT_REVISION)
from ..exceptions import (CatalogCorrupt, CorruptBTree, CorruptPage, OutOfRange,
                          TruncatedRecord, UnsupportedVersion)
from ..storage.file_manager import FileManager
from ..storage.index.bptree import BPlusTree

logger = logging.getLogger(__name__)


class Catalog:
    """In-memory view of the store's tables, keyed by table name"""

    def __init__(self, tables: Dict[str, TableSchema], entry_count: int = 0,
                 from_shadow: bool = False):
        """
        Args:
            tables: Table schemas keyed by name
            entry_count: Number of catalog rows the schemas were built from
            from_shadow: Whether the shadow catalog copy was used
        """
        self.tables = tables
        self.entry_count = entry_count
        self.from_shadow = from_shadow

    @classmethod
    def load(cls, file_manager: FileManager) -> "Catalog":
        """
        Load the catalog of an open store

        Args:
            file_manager: Open store

        Returns:
            Catalog with one TableSchema per table entry

        Raises:
            UnsupportedVersion: If the format revision is outside the supported range
            CatalogCorrupt: If neither catalog copy yields usable tables
        """
        if file_manager.format_revision > MAX_FORMAT_REVISION:
            raise UnsupportedVersion(f"Unsupported format revision "
                                     f"{file_manager.format_revision:#x}")

        try:
            entries = cls._read_entries(file_manager, CATALOG_ROOT_PAGE)
            return cls._assemble(entries)
        except (CorruptBTree, CorruptPage, OutOfRange, CatalogCorrupt) as primary_error:
            logger.warning(f"{file_manager.db_path}: catalog at page {CATALOG_ROOT_PAGE} "
                           f"unusable ({primary_error}), trying shadow catalog")
            try:
                entries = cls._read_entries(file_manager, CATALOG_SHADOW_ROOT_PAGE)
                catalog = cls._assemble(entries)
            except (CorruptBTree, CorruptPage, OutOfRange, CatalogCorrupt) as shadow_error:
                raise CatalogCorrupt(f"Catalog unreadable: {primary_error}; "
                                     f"shadow catalog: {shadow_error}") from shadow_error
            catalog.from_shadow = True
            return catalog

    @staticmethod
    def _read_entries(file_manager: FileManager, root_page: int) -> List[CatalogEntry]:
        """Scan the catalog tree, skipping rows that fail to decode"""
        entries = []
        for raw in BPlusTree(file_manager, root_page, CATALOG_TABLE_NAME):
            try:
                entry = decode_catalog_entry(raw.data)
            except TruncatedRecord as e:
                logger.warning(f"Skipping catalog row on page {raw.page_number} "
                               f"tag {raw.tag_index}: {e}")
                continue
            if entry is not None:
                entries.append(entry)
        return entries

    @classmethod
    def _assemble(cls, entries: Iterable[CatalogEntry]) -> "Catalog":
        """
        Group catalog rows by owning table and build schemas

        Raises:
            CatalogCorrupt: If there are no tables or a table has no root page
        """
        entries = list(entries)
        table_entries: List[CatalogEntry] = []
        members: Dict[int, List[CatalogEntry]] = defaultdict(list)

        for entry in entries:
            if entry.entry_type == EntryType.TABLE:
                table_entries.append(entry)
            else:
                members[entry.table_objid].append(entry)

        if not table_entries:
            raise CatalogCorrupt("Catalog contains no table entries")

        tables: Dict[str, TableSchema] = {}
        for table in table_entries:
            if table.coltyp_or_pgno == 0:
                raise CatalogCorrupt(f"Table '{table.name}' (objid {table.identifier}) "
                                     f"has no root page")
            if table.name in tables:
                logger.warning(f"Duplicate catalog entry for table '{table.name}', keeping the first")
                continue

            objid = table.identifier
            columns: List[Column] = []
            long_value_root: Optional[int] = None
            indexes: List[str] = []
            for member in members.get(objid, []):
                if member.entry_type == EntryType.COLUMN:
                    columns.append(Column.from_entry(member))
                elif member.entry_type == EntryType.LONG_VALUE:
                    long_value_root = member.coltyp_or_pgno or None
                elif member.entry_type == EntryType.INDEX:
                    indexes.append(member.name)

            try:
                tables[table.name] = TableSchema.build(table.name, objid, table.coltyp_or_pgno,
                                                       columns, long_value_root, indexes)
            except ValueError as e:
                logger.error(f"Dropping table '{table.name}' from catalog: {e}")

        logger.debug(f"Loaded {len(tables)} tables from {len(entries)} catalog entries")
        return cls(tables, len(entries))

    def get_table(self, table_name: str) -> Optional[TableSchema]:
        """
        Get table schema by name

        Args:
            table_name: Name of table

        Returns:
            TableSchema if found, None otherwise
        """
        return self.tables.get(table_name)

    def list_tables(self) -> List[str]:
        """Get list of all table names"""
        return list(self.tables.keys())

    def __contains__(self, table_name: str) -> bool:
        return table_name in self.tables

    def describe_table(self, table_name: str) -> Optional[str]:
        """Get a human-readable description of a table"""
        schema = self.get_table(table_name)
        if not schema:
            return None

        lines = [f"Table: {schema.name} (objid {schema.objid}, root page {schema.root_page})"]
        for column in schema.columns:
            lines.append(f"  {column.column_id:>5} {column.name:<40} "
                         f"{column.column_type.name:<14} {column.storage.name}")
        if schema.long_value_root:
            lines.append(f"  long values at page {schema.long_value_root}")
        return "\n".join(lines)

    def get_catalog_info(self) -> dict:
        """Get catalog statistics"""
        return {
            "table_count": len(self.tables),
            "entry_count": self.entry_count,
            "from_shadow": self.from_shadow,
        }


def load_catalog(file_manager: FileManager) -> Catalog:
    """Load the catalog of an open store (see Catalog.load)"""
    return Catalog.load(file_manager)
