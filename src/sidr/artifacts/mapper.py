"""
Artifact Mapper - Turns decoded Windows Search records into report records
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .rules import HOSTNAME_COLUMN, TABLE_RULES, TRANSFORMS, ReportKind, ReportRule
from ..constants import UNKNOWN_HOSTNAME

logger = logging.getLogger(__name__)

# Windows Search prefixes property columns with a numeric id: "4447-System_ItemPathDisplay"
_COLUMN_PREFIX = re.compile(r'^\d+-')


def canonical_name(column_name: str) -> str:
    """Strip the numeric property id prefix from a column name"""
    return _COLUMN_PREFIX.sub('', column_name, count=1)


def canonicalize(record: Mapping[str, Any]) -> Dict[str, Any]:
    """Re-key a record by canonical column names, first occurrence wins"""
    canonical: Dict[str, Any] = {}
    for name, value in record.items():
        canonical.setdefault(canonical_name(name), value)
    return canonical


@dataclass
class ReportRecord:
    """One output row: report kind plus ordered (field, value) pairs"""
    kind: ReportKind
    fields: List[Tuple[str, Any]] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return dict(self.fields)


class ArtifactMapper:
    """Applies the table rules to records"""

    def __init__(self, table_rules: Optional[Dict[str, Tuple[ReportRule, ...]]] = None):
        self.table_rules = TABLE_RULES if table_rules is None else table_rules

    @property
    def tables(self) -> List[str]:
        """Tables the mapper has rules for"""
        return list(self.table_rules)

    def map(self, table_name: str, record: Mapping[str, Any]) -> Optional[ReportRecord]:
        """
        Map one record to a report record

        Args:
            table_name: Table the record was read from
            record: Column name -> decoded value

        Returns:
            ReportRecord, or None when no rule covers the table or record
        """
        rules = self.table_rules.get(table_name)
        if not rules:
            return None

        values = canonicalize(record)
        for rule in rules:
            if rule.selector(values):
                return self._apply(rule, values)
        return None

    @staticmethod
    def _apply(rule: ReportRule, values: Mapping[str, Any]) -> ReportRecord:
        report_record = ReportRecord(rule.kind)
        for source, field_name, transform in rule.fields:
            raw = values.get(source)
            try:
                value = TRANSFORMS[transform](raw)
            except (TypeError, ValueError, OverflowError) as e:
                logger.debug(f"Cannot apply {transform} to {source}={raw!r}: {e}")
                value = None
            report_record.fields.append((field_name, value))
        return report_record

    @staticmethod
    def extract_hostname(records: Iterable[Mapping[str, Any]]) -> str:
        """First non-empty computer name among records, or UNKNOWN_HOSTNAME"""
        for record in records:
            value = canonicalize(record).get(HOSTNAME_COLUMN)
            if isinstance(value, list):
                value = next((v for v in value if v), None)
            hostname = str(value).strip() if value else ""
            if hostname:
                return hostname
        return UNKNOWN_HOSTNAME
