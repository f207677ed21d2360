import csv
import io
import json
import re
import threading

import pytest
from sidr.artifacts.mapper import ReportRecord
from sidr.artifacts.rules import ReportKind
from sidr.report import (CsvReport, JsonReport, ReportFormat, ReportOutput, ReportProducer,
                         emit_reports)


def json_report(suffix=None):
    stream = io.StringIO()
    return stream, JsonReport(stream, ReportKind.FILE, threading.Lock(),
                              report_suffix=suffix, owns_stream=False)


def csv_report(suffix=None):
    stream = io.StringIO()
    return stream, CsvReport(stream, ReportKind.FILE, threading.Lock(),
                             report_suffix=suffix, owns_stream=False)


def test_json_record():
    stream, report = json_report()
    report.set_field("WorkId")
    report.set_field("System_ItemName")
    report.begin_record()
    report.set_string("System_ItemName", "naïve.txt")
    report.set_integer("WorkId", 12)
    assert report.end_record()

    line = stream.getvalue()
    assert line.endswith("\n")
    assert "naïve" in line
    assert list(json.loads(line).items()) == [("WorkId", 12), ("System_ItemName", "naïve.txt")]
    assert report.records_written == 1


def test_json_report_suffix_comes_first():
    stream, report = json_report(suffix="file_report")
    report.begin_record()
    report.set_string("System_ItemName", "a")
    report.end_record()
    assert list(json.loads(stream.getvalue())) == ["report_suffix", "System_ItemName"]


def test_empty_record_is_dropped():
    stream, report = json_report()
    report.begin_record()
    report.set_string("System_ItemName", None)
    report.set_integer("WorkId", None)
    assert not report.end_record()

    report.begin_record()
    report.set_string("System_ItemName", "")
    assert not report.end_record()

    assert stream.getvalue() == ""
    assert report.records_written == 0


def test_close_writes_pending_record():
    stream, report = json_report()
    report.begin_record()
    report.set_string("a", "b")
    report.close()
    assert json.loads(stream.getvalue()) == {"a": "b"}
    assert report.closed
    report.close()


def test_csv_header_and_rows():
    stream, report = csv_report()
    for name in ("WorkId", "System_ItemName", "System_Size"):
        report.set_field(name)
    report.write_record(ReportRecord(ReportKind.FILE, [
        ("WorkId", 1), ("System_ItemName", "a, b"), ("System_Size", None)]))
    report.write_record(ReportRecord(ReportKind.FILE, [
        ("WorkId", 2), ("System_ItemName", None), ("System_Size", 5)]))

    rows = list(csv.reader(io.StringIO(stream.getvalue())))
    assert rows == [
        ["WorkId", "System_ItemName", "System_Size"],
        ["1", "a, b", ""],
        ["2", "", "5"],
    ]


def test_csv_report_suffix_column():
    stream, report = csv_report(suffix="internet_history")
    report.begin_record()
    report.set_string("System_ItemUrl", "iehistory://x")
    report.end_record()
    assert stream.getvalue().splitlines() == ["Report Suffix,System_ItemUrl",
                                              "internet_history,iehistory://x"]


def test_write_record_keeps_booleans_as_text():
    stream, report = json_report()
    report.write_record(ReportRecord(ReportKind.FILE, [("flag", True), ("n", 3)]))
    assert json.loads(stream.getvalue()) == {"flag": "True", "n": 3}


def test_report_file_name(tmp_path):
    producer = ReportProducer(tmp_path / "reports", ReportFormat.CSV)
    assert (tmp_path / "reports").is_dir()

    path = producer.report_path("WKS 01/x", ReportKind.ACTIVITY_HISTORY)
    assert path.parent == tmp_path / "reports"
    assert re.fullmatch(r"WKS_01_x_Activity_History_Report_\d{8}_\d{6}\.\d{6}\.csv", path.name)


def test_new_report_to_file(tmp_path):
    producer = ReportProducer(tmp_path)
    path, report = producer.new_report("Windows.edb", "HOST", ReportKind.FILE)
    with report:
        report.begin_record()
        report.set_integer("WorkId", 1)
        report.end_record()
    assert path.exists()
    assert json.loads(path.read_text(encoding="utf-8")) == {"WorkId": 1}
    assert report.report_suffix is None


def test_stdout_mode_creates_no_directory(tmp_path):
    ReportProducer(tmp_path / "unused", output=ReportOutput.TO_STDOUT)
    assert not (tmp_path / "unused").exists()


def test_emit_reports_to_stdout(capsys):
    producer = ReportProducer(output=ReportOutput.TO_STDOUT, fmt=ReportFormat.CSV)
    counts = emit_reports(producer, "Windows.db", "HOST", [
        ReportRecord(ReportKind.INTERNET_HISTORY, [("WorkId", 4), ("System_ItemUrl", "iehistory://a")]),
        ReportRecord(ReportKind.FILE, [("WorkId", 5)]),
    ])

    assert counts == {ReportKind.FILE: 1, ReportKind.ACTIVITY_HISTORY: 0,
                      ReportKind.INTERNET_HISTORY: 1}
    rows = list(csv.reader(io.StringIO(capsys.readouterr().out)))
    suffixes = [row[0] for row in rows if row[0] != "Report Suffix"]
    assert suffixes == ["internet_history", "file_report"]
    assert rows[0][:2] == ["Report Suffix", "WorkId"]


def test_concurrent_stdout_reports_write_whole_lines(capsys):
    producer = ReportProducer(output=ReportOutput.TO_STDOUT)
    kinds = list(ReportKind)
    writers, per_writer, width = 6, 200, 12
    reports = [producer.new_report("Windows.edb", "HOST", kinds[i % len(kinds)])[1]
               for i in range(writers)]
    start = threading.Barrier(writers)

    def write_all(writer):
        start.wait()
        for index in range(per_writer):
            fields = [("WorkId", writer * per_writer + index)]
            fields += [(f"field_{n}", f"w{writer}-r{index}-" + "x" * 40) for n in range(width)]
            reports[writer].write_record(ReportRecord(kinds[writer % len(kinds)], fields))

    threads = [threading.Thread(target=write_all, args=(w,)) for w in range(writers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    lines = capsys.readouterr().out.splitlines()
    assert len(lines) == writers * per_writer
    seen = set()
    for line in lines:
        record = json.loads(line)
        writer, index = divmod(record["WorkId"], per_writer)
        assert record["report_suffix"] == kinds[writer % len(kinds)].suffix
        assert len(record) == width + 2
        for n in range(width):
            assert record[f"field_{n}"] == f"w{writer}-r{index}-" + "x" * 40
        seen.add(record["WorkId"])
    assert len(seen) == writers * per_writer


def test_emit_reports_closes_on_error(tmp_path):
    producer = ReportProducer(tmp_path)

    def failing():
        yield ReportRecord(ReportKind.FILE, [("WorkId", 1)])
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        emit_reports(producer, "Windows.edb", "HOST", failing())

    reports = sorted(tmp_path.glob("HOST_File_Report_*.json"))
    assert len(reports) == 1
    assert json.loads(reports[0].read_text(encoding="utf-8")) == {"WorkId": 1}
