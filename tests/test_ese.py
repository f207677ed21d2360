import json
import struct

import pytest
from sidr import ese
from sidr.artifacts.mapper import ArtifactMapper
from sidr.artifacts.rules import FieldRule, ReportKind, ReportRule, is_any
from sidr.ese import EseDatabase, recover_hostname
from sidr.report import ReportFormat, ReportOutput, ReportProducer
from sidr.types.value import LongValueRef

import ese_builder as eb

MODIFIED = struct.pack('<Q', eb.filetime(2023, 3, 7, 1, 52, 44))
STARTED = struct.pack('<Q', eb.filetime(2024, 1, 2, 3, 4, 5))

T_RULES = {"T": (ReportRule(ReportKind.FILE, is_any, (
    FieldRule("id", "id", "integer"),
    FieldRule("name", "name"),
)),)}


def read_lines(path):
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def only(paths):
    paths = list(paths)
    assert len(paths) == 1
    return paths[0]


@pytest.fixture
def search_db(tmp_path):
    path = tmp_path / "Windows.edb"
    eb.search_store(path, {
        1: eb.search_record(work_id=1, size=1234, text={
            eb.ITEM_PATH: "C:\\Users\\a\\doc.txt",
            eb.ITEM_TYPE: ".txt",
        }, binary={eb.DATE_MODIFIED: MODIFIED}),
        2: eb.search_record(work_id=2, text={
            eb.COMPUTER_NAME: "WKS-01",
            eb.ITEM_URL: "iehistory://{S-1-5-21}/https://example.org/",
        }),
        3: eb.search_record(work_id=3, text={
            eb.COMPUTER_NAME: "WKS-01",
            eb.ITEM_TYPE: "ActivityHistoryItem",
            eb.APP_NAME: "Notepad",
        }, binary={eb.ACTIVITY_START: STARTED}),
    }, leaf_pages=[20, 21])
    return path


def test_table_records_in_key_order(tmp_path):
    path = tmp_path / "Windows.edb"
    eb.simple_store(path, [(2, "bb"), (1, "a")])
    with EseDatabase(path) as db:
        assert db.catalog.list_tables() == ["T"]
        assert list(db.records("T")) == [{"id": 1, "name": "a"}, {"id": 2, "name": "bb"}]


def test_new_format_pages_in_older_revision(tmp_path):
    path = tmp_path / "Windows.edb"
    eb.simple_store(path, [(2, "bb"), (1, "a")], leaf_pages=[20, 21], new_format=True)
    with EseDatabase(path) as db:
        assert db.catalog.list_tables() == ["T"]
        assert list(db.records("T")) == [{"id": 1, "name": "a"}, {"id": 2, "name": "bb"}]


def test_records_across_leaf_pages(tmp_path):
    path = tmp_path / "Windows.edb"
    eb.simple_store(path, [(i, f"n{i}") for i in range(1, 31)], leaf_pages=[20, 21, 22])
    with EseDatabase(path) as db:
        ids = [r["id"] for r in db.records("T")]
    assert ids == list(range(1, 31))


def test_null_variable_column_is_absent(tmp_path):
    path = tmp_path / "Windows.edb"
    eb.simple_store(path, [(1, None)])
    with EseDatabase(path) as db:
        assert list(db.records("T")) == [{"id": 1}]


def test_unknown_table(tmp_path):
    path = tmp_path / "Windows.edb"
    eb.simple_store(path, [(1, "a")])
    with EseDatabase(path) as db:
        with pytest.raises(KeyError):
            list(db.scan("Nope"))


def test_undecodable_record_is_skipped(tmp_path):
    builder = eb.EseFileBuilder()
    table = eb.TableSpec("T", objid=10, root_page=10, columns=[eb.ColumnSpec(1, "id", eb.LONG)])
    builder.add_catalog([table])
    builder.add_tree(10, [
        (eb.key_of(1), eb.encode_record([(4, struct.pack('<i', 1))])),
        (eb.key_of(2), b'\x01'),
        (eb.key_of(3), eb.encode_record([(4, struct.pack('<i', 3))])),
    ], fdp_objid=10)
    path = tmp_path / "Windows.edb"
    builder.write(path)

    with EseDatabase(path) as db:
        assert [r["id"] for r in db.records("T")] == [1, 3]
        assert db.scan_stats["T"] == {"records": 2, "skipped": 1, "complete": True}


def test_tree_fault_keeps_records_already_read(tmp_path):
    builder = eb.EseFileBuilder()
    table = eb.TableSpec("T", objid=10, root_page=3, columns=[eb.ColumnSpec(1, "id", eb.LONG)])
    builder.add_catalog([table])
    builder.page(5, [(eb.leaf_entry(eb.key_of(1), eb.encode_record([(4, struct.pack('<i', 1))])), 0)],
                 eb.LEAF, next_page=9, fdp_objid=10)
    builder.page(9, [(eb.leaf_entry(eb.key_of(2), eb.encode_record([(4, struct.pack('<i', 2))])), 0)],
                 eb.LEAF, prev_page=5, next_page=5, fdp_objid=10)
    builder.page(3, [(eb.branch_entry(eb.key_of(1), 5), 0), (eb.branch_entry(b'', 9), 0)],
                 eb.ROOT | eb.PARENT, fdp_objid=10)
    path = tmp_path / "Windows.edb"
    builder.write(path)

    with EseDatabase(path) as db:
        assert [r["id"] for r in db.records("T")] == [1, 2]
        assert db.scan_stats["T"]["complete"] is False


def test_checksum_verification_toggle(tmp_path):
    path = tmp_path / "Windows.edb"
    eb.simple_store(path, [(1, "a")])
    data = bytearray(path.read_bytes())
    # Page 10 follows the two header pages
    data[11 * 4096 + 2000] ^= 0xFF
    path.write_bytes(bytes(data))

    with EseDatabase(path) as db:
        assert list(db.records("T")) == []
        assert db.scan_stats["T"]["complete"] is False
    with EseDatabase(path, verify_checksums=False) as db:
        assert list(db.records("T")) == [{"id": 1, "name": "a"}]


def test_recover_hostname(search_db):
    with EseDatabase(search_db) as db:
        assert recover_hostname(db, ArtifactMapper()) == "WKS-01"


def test_recover_hostname_leaves_scan_stats(search_db):
    with EseDatabase(search_db) as db:
        recover_hostname(db, ArtifactMapper())
        assert db.scan_stats == {}
        list(db.records(eb.SEARCH_TABLE))
        assert db.scan_stats[eb.SEARCH_TABLE] == {"records": 3, "skipped": 0, "complete": True}


def test_recover_hostname_fetches_only_computer_name(tmp_path):
    path = tmp_path / "Windows.edb"
    eb.search_store(path, {
        1: eb.search_record(work_id=1, long_values={eb.COMPUTER_NAME: 0x20, eb.AUTO_SUMMARY: 0x10}),
    }, long_values={0x10: eb.utf16("summary " * 40), 0x20: eb.utf16("WKS-LONG")})

    with EseDatabase(path) as db:
        assert recover_hostname(db, ArtifactMapper()) == "WKS-LONG"

        record = next(db.scan(eb.SEARCH_TABLE, resolve_columns={eb.COMPUTER_NAME}))
        assert record.values[eb.COMPUTER_NAME] == "WKS-LONG"
        assert isinstance(record.values[eb.AUTO_SUMMARY], LongValueRef)


def test_recover_hostname_skips_tables_without_computer_name(tmp_path, monkeypatch):
    path = tmp_path / "Windows.edb"
    eb.simple_store(path, [(1, "a")])
    with EseDatabase(path) as db:
        def no_scan(*args, **kwargs):
            raise AssertionError("table without a computer name column was scanned")

        monkeypatch.setattr(db, "scan", no_scan)
        assert recover_hostname(db, ArtifactMapper(T_RULES)) == "Unknown"


def test_recover_hostname_unknown(tmp_path):
    path = tmp_path / "Windows.edb"
    eb.search_store(path, {1: eb.search_record(work_id=1, text={eb.ITEM_PATH: "C:\\x"})})
    with EseDatabase(path) as db:
        assert recover_hostname(db, ArtifactMapper()) == "Unknown"


def test_generate_report_with_custom_rules(tmp_path):
    path = tmp_path / "Windows.edb"
    eb.simple_store(path, [(1, "a"), (2, "bb")])
    producer = ReportProducer(tmp_path / "out")

    counts = ese.generate_report(path, producer, mapper=ArtifactMapper(T_RULES))

    assert counts == {"File_Report": 2, "Activity_History_Report": 0, "Internet_History_Report": 0}
    report = only((tmp_path / "out").glob("Unknown_File_Report_*.json"))
    assert read_lines(report) == [{"id": 1, "name": "a"}, {"id": 2, "name": "bb"}]


def test_generate_report_routes_records(search_db, tmp_path):
    out = tmp_path / "out"
    counts = ese.generate_report(search_db, ReportProducer(out))
    assert counts == {"File_Report": 1, "Activity_History_Report": 1, "Internet_History_Report": 1}

    files = read_lines(only(out.glob("WKS-01_File_Report_*.json")))
    assert files == [{
        "WorkId": 1,
        "System_ItemPathDisplay": "C:\\Users\\a\\doc.txt",
        "System_DateModified": "2023-03-07T01:52:44.000000Z",
        "System_Size": 1234,
        "System_ItemType": ".txt",
    }]
    assert list(files[0]) == ["WorkId", "System_ItemPathDisplay", "System_DateModified",
                              "System_Size", "System_ItemType"]

    internet = read_lines(only(out.glob("WKS-01_Internet_History_Report_*.json")))
    assert internet == [{
        "WorkId": 2,
        "System_ComputerName": "WKS-01",
        "System_ItemUrl": "iehistory://{S-1-5-21}/https://example.org/",
    }]

    activity = read_lines(only(out.glob("WKS-01_Activity_History_Report_*.json")))
    assert activity == [{
        "WorkId": 3,
        "System_ComputerName": "WKS-01",
        "System_ActivityHistory_StartTime": "2024-01-02T03:04:05.000000Z",
        "System_Activity_AppDisplayName": "Notepad",
    }]


def test_generate_report_csv(search_db, tmp_path):
    out = tmp_path / "out"
    ese.generate_report(search_db, ReportProducer(out, ReportFormat.CSV))

    lines = only(out.glob("WKS-01_File_Report_*.csv")).read_text(encoding="utf-8").splitlines()
    assert lines[0].split(",")[:3] == ["WorkId", "System_ComputerName", "System_ItemPathDisplay"]
    assert lines[1].startswith("1,,C:\\Users\\a\\doc.txt,2023-03-07T01:52:44.000000Z,")
    assert len(lines) == 2


def test_generate_report_to_stdout(search_db, capsys):
    ese.generate_report(search_db, ReportProducer(output=ReportOutput.TO_STDOUT))

    lines = [json.loads(line) for line in capsys.readouterr().out.splitlines()]
    assert sorted(line["report_suffix"] for line in lines) == [
        "activity_history", "file_report", "internet_history"]
    assert all(list(line)[0] == "report_suffix" for line in lines)


def test_generate_report_without_search_tables(tmp_path):
    path = tmp_path / "Windows.edb"
    eb.simple_store(path, [(1, "a")])
    out = tmp_path / "out"

    counts = ese.generate_report(path, ReportProducer(out))

    assert set(counts.values()) == {0}
    assert len(list(out.glob("Unknown_*.json"))) == 3
