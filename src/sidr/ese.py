"""
ESE Store Driver - Windows.edb reading and reporting

EseDatabase ties the page reader, catalog, B+ tree navigator, record
decoder and long-value resolver together into per-table record scans.
"""

import logging
from typing import Any, Dict, Iterator, Optional, Set

from .artifacts.mapper import ArtifactMapper, canonical_name
from .artifacts.rules import HOSTNAME_COLUMN
from .catalog.catalog import Catalog
from .catalog.schema import TableSchema
from .constants import DEFAULT_CACHE_PAGES, UNKNOWN_HOSTNAME
from .exceptions import (CorruptBTree, CorruptPage, InvalidValue, OutOfRange,
                         TruncatedRecord)
from .records.decoder import Record, RecordDecoder
from .report import ReportProducer, emit_reports
from .storage.file_manager import FileManager
from .storage.index.bptree import BPlusTree
from .storage.index.long_value import LongValueResolver
from .storage.page import uses_extended_header

logger = logging.getLogger(__name__)


class EseDatabase:
    """Read-only view of an ESE store"""

    def __init__(self, db_path, verify_checksums: bool = True,
                 cache_pages: int = DEFAULT_CACHE_PAGES):
        """
        Open the store and load its catalog

        Raises:
            SidrIOError: If the file cannot be read
            CorruptPage: If the header is unusable
            UnsupportedVersion: If the format is not supported
            CatalogCorrupt: If the catalog cannot be read
        """
        self.file_manager = FileManager(db_path, verify_checksums, cache_pages)
        try:
            self.catalog = Catalog.load(self.file_manager)
        except Exception:
            self.file_manager.close()
            raise
        self.decoder = RecordDecoder(uses_extended_header(self.file_manager.format_revision,
                                                          self.file_manager.page_size))
        self.scan_stats: Dict[str, Dict[str, Any]] = {}

    @property
    def db_path(self):
        return self.file_manager.db_path

    def get_schema(self, table_name: str) -> TableSchema:
        schema = self.catalog.get_table(table_name)
        if schema is None:
            raise KeyError(f"Table '{table_name}' not in catalog")
        return schema

    def scan(self, table_name: str, resolve_columns: Optional[Set[int]] = None,
             track_stats: bool = True) -> Iterator[Record]:
        """
        Yield every decodable record of a table in key order

        Records that fail to decode are logged and skipped. A structural
        fault in the table's tree ends the scan; records already yielded stand.

        Args:
            table_name: Table to scan
            resolve_columns: Column ids whose long values are fetched, default all
            track_stats: Record the outcome in scan_stats

        Raises:
            KeyError: If the table is not in the catalog
        """
        schema = self.get_schema(table_name)
        resolver = None
        if schema.long_value_root:
            resolver = LongValueResolver(self.file_manager, schema.long_value_root, schema.name)

        stats = {"records": 0, "skipped": 0, "complete": False}
        if track_stats:
            self.scan_stats[table_name] = stats
        tree = BPlusTree(self.file_manager, schema.root_page, schema.name)

        try:
            for raw in tree:
                try:
                    record = self.decoder.decode(schema, raw.data, raw.key)
                    self.decoder.resolve_long_values(schema, record, resolver, resolve_columns)
                except (TruncatedRecord, InvalidValue, CorruptPage, CorruptBTree, OutOfRange) as e:
                    stats["skipped"] += 1
                    logger.warning(f"{self.db_path}: skipping {table_name} record on page "
                                   f"{raw.page_number} tag {raw.tag_index}: {e}")
                    continue
                stats["records"] += 1
                yield record
        except (CorruptBTree, CorruptPage, OutOfRange) as e:
            logger.error(f"{self.db_path}: scan of {table_name} stopped after "
                         f"{stats['records']} records: {e}")
            return
        stats["complete"] = True

    def records(self, table_name: str) -> Iterator[Dict[str, Any]]:
        """Yield records of a table as column name -> value mappings"""
        schema = self.get_schema(table_name)
        for record in self.scan(table_name):
            yield record.by_name(schema)

    def close(self) -> None:
        self.file_manager.close()

    def __enter__(self) -> "EseDatabase":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def recover_hostname(db: EseDatabase, mapper: ArtifactMapper) -> str:
    """
    Pre-scan the search tables for the first recorded computer name

    Only the computer name's long values are fetched, and scan_stats is left
    to the report scan.
    """
    for table_name in mapper.tables:
        if table_name not in db.catalog:
            continue
        schema = db.get_schema(table_name)
        wanted = {column.column_id for column in schema.columns
                  if canonical_name(column.name) == HOSTNAME_COLUMN}
        if not wanted:
            continue
        records = (record.by_name(schema)
                   for record in db.scan(table_name, resolve_columns=wanted, track_stats=False))
        hostname = mapper.extract_hostname(records)
        if hostname != UNKNOWN_HOSTNAME:
            return hostname
    return UNKNOWN_HOSTNAME


def generate_report(db_path, producer: ReportProducer, verify_checksums: bool = True,
                    cache_pages: int = DEFAULT_CACHE_PAGES,
                    mapper: Optional[ArtifactMapper] = None) -> Dict[str, int]:
    """
    Produce the File, Activity History and Internet History reports of a Windows.edb

    Args:
        db_path: Path to the store
        producer: Report producer
        verify_checksums: Reject pages with a bad checksum
        cache_pages: Page cache capacity
        mapper: Artifact mapper, default rules if omitted

    Returns:
        Number of records written per report kind name

    Raises:
        SidrError: If the store cannot be opened or its catalog read
    """
    mapper = mapper or ArtifactMapper()
    with EseDatabase(db_path, verify_checksums, cache_pages) as db:
        tables = [t for t in mapper.tables if t in db.catalog]
        if not tables:
            logger.warning(f"{db_path}: no Windows Search property tables in catalog "
                           f"({', '.join(db.catalog.list_tables())})")

        hostname = recover_hostname(db, mapper)
        logger.info(f"{db_path}: hostname {hostname}")

        def mapped():
            for table_name in tables:
                for record in db.records(table_name):
                    report_record = mapper.map(table_name, record)
                    if report_record is not None:
                        yield report_record

        counts = emit_reports(producer, db_path, hostname, mapped())

    return {kind.value: count for kind, count in counts.items()}
