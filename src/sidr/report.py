"""
Report Module - JSON-lines and CSV report sinks

A ReportProducer creates one Report per (database, report kind). Reports are
written either to timestamped files or, interleaved, to standard output; in
the latter case each record carries a report_suffix naming its kind.
"""

import csv
import datetime
import json
import logging
import re
import sys
import threading
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, TextIO, Tuple

from .artifacts.mapper import ReportRecord
from .artifacts.rules import ReportKind, rules_for

logger = logging.getLogger(__name__)

# Every stdout report shares this lock so records from parallel stores never interleave
_STDOUT_LOCK = threading.Lock()

_UNSAFE_FILENAME_CHARS = re.compile(r'[\\/:*?"<>|\s]')


class ReportFormat(Enum):
    JSON = "json"
    CSV = "csv"


class ReportOutput(Enum):
    TO_FILE = "to-file"
    TO_STDOUT = "to-stdout"


class Report:
    """
    Base report sink

    Usage:
        report.begin_record()
        report.set_string("System_ItemName", "a.txt")
        report.set_integer("WorkId", 12)
        report.end_record()
    """

    def __init__(self, stream: TextIO, kind: ReportKind, lock: threading.Lock,
                 report_suffix: Optional[str] = None, owns_stream: bool = True):
        """
        Args:
            stream: Text stream records are written to
            kind: Report kind
            lock: Serializes writes to stream
            report_suffix: Value of the report_suffix field (stdout mode only)
            owns_stream: Close stream on close()
        """
        self.stream = stream
        self.kind = kind
        self.lock = lock
        self.report_suffix = report_suffix
        self.owns_stream = owns_stream
        self.fields: List[str] = []
        self.records_written = 0
        self.closed = False
        self._values: Dict[str, Any] = {}

    def set_field(self, name: str) -> None:
        """Declare a field; declared fields fix the CSV column order"""
        if name not in self.fields:
            self.fields.append(name)

    def begin_record(self) -> None:
        self._values = {}

    def set_string(self, name: str, value: Optional[str]) -> None:
        self.set_field(name)
        if value is not None:
            self._values[name] = str(value)

    def set_integer(self, name: str, value: Optional[int]) -> None:
        self.set_field(name)
        if value is not None:
            self._values[name] = int(value)

    def has_values(self) -> bool:
        return any(v != "" for v in self._values.values())

    def end_record(self) -> bool:
        """
        Write the current record

        Returns:
            False if the record carried no values and was dropped
        """
        values, self._values = self._values, {}
        if not any(v != "" for v in values.values()):
            return False
        with self.lock:
            self._write(values)
            self.stream.flush()
        self.records_written += 1
        return True

    def write_record(self, record: ReportRecord) -> bool:
        """Write a mapped record, choosing integer or string by value type"""
        self.begin_record()
        for name, value in record.fields:
            if isinstance(value, int) and not isinstance(value, bool):
                self.set_integer(name, value)
            else:
                self.set_string(name, value)
        return self.end_record()

    def _write(self, values: Dict[str, Any]) -> None:
        raise NotImplementedError

    def close(self) -> None:
        """Flush a pending record and release the stream"""
        if self.closed:
            return
        if self.has_values():
            self.end_record()
        self.closed = True
        if self.owns_stream:
            self.stream.close()

    def __enter__(self) -> "Report":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class JsonReport(Report):
    """One JSON object per line"""

    def _write(self, values: Dict[str, Any]) -> None:
        payload = {}
        if self.report_suffix is not None:
            payload["report_suffix"] = self.report_suffix
        for name in self.fields:
            if name in values:
                payload[name] = values[name]
        self.stream.write(json.dumps(payload, ensure_ascii=False) + "\n")


class CsvReport(Report):
    """CSV with a header row taken from the fields known at the first written record"""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._writer = csv.writer(self.stream, lineterminator="\n")
        self._header: Optional[List[str]] = None

    def _write(self, values: Dict[str, Any]) -> None:
        if self._header is None:
            self._header = list(self.fields)
            prefix = ["Report Suffix"] if self.report_suffix is not None else []
            self._writer.writerow(prefix + self._header)

        row = [values.get(name, "") for name in self._header]
        if self.report_suffix is not None:
            row.insert(0, self.report_suffix)
        self._writer.writerow(row)


_REPORT_CLASSES = {
    ReportFormat.JSON: JsonReport,
    ReportFormat.CSV: CsvReport,
}


class ReportProducer:
    """Creates report sinks for a run"""

    def __init__(self, out_dir=None, fmt: ReportFormat = ReportFormat.JSON,
                 output: ReportOutput = ReportOutput.TO_FILE):
        """
        Args:
            out_dir: Directory for report files (created if missing), default cwd
            fmt: Report format
            output: Write to files or to standard output
        """
        self.out_dir = Path(out_dir) if out_dir else Path.cwd()
        self.format = fmt
        self.output = output
        if output == ReportOutput.TO_FILE:
            self.out_dir.mkdir(parents=True, exist_ok=True)

    def report_path(self, hostname: str, kind: ReportKind) -> Path:
        """Path of a new report: {hostname}_{kind}_{UTC timestamp}.{ext}"""
        timestamp = datetime.datetime.now(datetime.timezone.utc).strftime('%Y%m%d_%H%M%S.%f')
        safe_host = _UNSAFE_FILENAME_CHARS.sub('_', hostname) or "Unknown"
        return self.out_dir / f"{safe_host}_{kind.value}_{timestamp}.{self.format.value}"

    def new_report(self, db_path, hostname: str, kind: ReportKind) -> Tuple[Optional[Path], Report]:
        """
        Create a report sink

        Args:
            db_path: Store the report is produced from
            hostname: Recovered host name
            kind: Report kind

        Returns:
            (report file path or None for stdout, Report)
        """
        report_class = _REPORT_CLASSES[self.format]
        if self.output == ReportOutput.TO_STDOUT:
            report = report_class(sys.stdout, kind, _STDOUT_LOCK,
                                  report_suffix=kind.suffix, owns_stream=False)
            return None, report

        path = self.report_path(hostname, kind)
        stream = open(path, 'w', encoding='utf-8', newline='')
        logger.debug(f"{db_path}: {kind.value} -> {path}")
        return path, report_class(stream, kind, threading.Lock())


def emit_reports(producer: ReportProducer, db_path, hostname: str,
                 records: Iterable[ReportRecord]) -> Dict[ReportKind, int]:
    """
    Write mapped records into one report per kind

    Args:
        producer: Report producer
        db_path: Source store
        hostname: Recovered host name used in report names
        records: Mapped records in output order

    Returns:
        Number of records written per kind
    """
    reports: Dict[ReportKind, Report] = {}
    try:
        for kind in ReportKind:
            path, report = producer.new_report(db_path, hostname, kind)
            for name in rules_for(kind).field_names:
                report.set_field(name)
            reports[kind] = report
            if path is not None:
                logger.info(f"Creating report {path}")

        for record in records:
            reports[record.kind].write_record(record)
    finally:
        for report in reports.values():
            report.close()

    return {kind: report.records_written for kind, report in reports.items()}
