"""
SQLite Store Driver - Windows.db reading and reporting

Windows 11 keeps the search index properties in SQLite as an
entity-attribute-value table:

    SystemIndex_1_PropertyStore_Metadata(Id, UniqueKey, ...)
    SystemIndex_1_PropertyStore(WorkId, ColumnId, Value)

Rows are grouped per WorkId into one column name -> value mapping and fed
to the same artifact rules as the ESE property store.
"""

import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from .artifacts.mapper import ArtifactMapper
from .exceptions import SidrIOError
from .report import ReportProducer, emit_reports

logger = logging.getLogger(__name__)

METADATA_TABLE = "SystemIndex_1_PropertyStore_Metadata"
PROPERTY_TABLE = "SystemIndex_1_PropertyStore"
# Rules for the ESE property store apply unchanged
RULES_TABLE = "SystemIndex_PropertyStore"


class SqliteStore:
    """Read-only Windows.db reader"""

    def __init__(self, db_path):
        """
        Raises:
            SidrIOError: If the database cannot be opened or lacks the property tables
        """
        self.db_path = Path(db_path)
        uri = f"{self.db_path.resolve().as_uri()}?mode=ro"
        try:
            self.connection = sqlite3.connect(uri, uri=True)
        except sqlite3.Error as e:
            raise SidrIOError(f"Cannot open SQLite store {self.db_path}: {e}") from e
        try:
            self.columns = self._load_metadata()
        except sqlite3.Error as e:
            self.connection.close()
            raise SidrIOError(f"Cannot read SQLite store {self.db_path}: {e}") from e

    def _load_metadata(self) -> Dict[int, str]:
        """Map property column ids to their names"""
        cursor = self.connection.execute(f"SELECT Id, UniqueKey FROM {METADATA_TABLE}")
        columns = {}
        for column_id, unique_key in cursor:
            if unique_key:
                columns[column_id] = str(unique_key).replace('.', '_')
        logger.debug(f"{self.db_path}: {len(columns)} property columns")
        return columns

    def records(self) -> Iterator[Dict[str, Any]]:
        """
        Yield one mapping per WorkId, in WorkId order

        Raises:
            SidrIOError: If the property table cannot be read
        """
        query = f"SELECT WorkId, ColumnId, Value FROM {PROPERTY_TABLE} ORDER BY WorkId"
        current_id: Optional[int] = None
        current: Dict[str, Any] = {}
        try:
            for work_id, column_id, value in self.connection.execute(query):
                if work_id != current_id:
                    if current_id is not None:
                        yield current
                    current_id = work_id
                    current = {"WorkID": work_id}
                name = self.columns.get(column_id)
                if name is None:
                    logger.debug(f"{self.db_path}: WorkId {work_id} has unknown column {column_id}")
                    continue
                current[name] = value
        except sqlite3.Error as e:
            raise SidrIOError(f"Reading {PROPERTY_TABLE} of {self.db_path} failed: {e}") from e

        if current_id is not None:
            yield current

    def close(self) -> None:
        self.connection.close()

    def __enter__(self) -> "SqliteStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def generate_report(db_path, producer: ReportProducer,
                    mapper: Optional[ArtifactMapper] = None) -> Dict[str, int]:
    """
    Produce the File, Activity History and Internet History reports of a Windows.db

    Returns:
        Number of records written per report kind name

    Raises:
        SidrIOError: If the database cannot be read
    """
    mapper = mapper or ArtifactMapper()
    with SqliteStore(db_path) as store:
        hostname = mapper.extract_hostname(store.records())
        logger.info(f"{db_path}: hostname {hostname}")

        def mapped():
            for record in store.records():
                report_record = mapper.map(RULES_TABLE, record)
                if report_record is not None:
                    yield report_record

        counts = emit_reports(producer, db_path, hostname, mapped())

    return {kind.value: count for kind, count in counts.items()}
