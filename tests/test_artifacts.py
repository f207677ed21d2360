import datetime
import struct

import pytest
from sidr.artifacts.mapper import ArtifactMapper, ReportRecord, canonical_name, canonicalize
from sidr.artifacts.rules import (FILE_RULE, ReportKind, rules_for, to_filetime, to_hex,
                                  to_integer, to_text)

import ese_builder as eb


@pytest.fixture
def mapper():
    return ArtifactMapper()


def test_canonical_names():
    assert canonical_name("4447-System_ItemPathDisplay") == "System_ItemPathDisplay"
    assert canonical_name("WorkID") == "WorkID"
    assert canonical_name("System_Size") == "System_Size"
    assert canonical_name("12-34-x") == "34-x"


def test_canonicalize_keeps_first_occurrence():
    record = {"4447-System_ItemName": "first", "5000-System_ItemName": "second", "WorkID": 1}
    assert canonicalize(record) == {"System_ItemName": "first", "WorkID": 1}


def test_file_record(mapper):
    record = mapper.map("SystemIndex_PropertyStore", {
        "WorkID": 7,
        "4447-System_ItemPathDisplay": "C:\\a.txt",
        "4184-System_Size": 10,
        "4252-System_DateModified": struct.pack('<Q', eb.filetime(2023, 3, 7, 1, 52, 44)),
    })
    assert record.kind == ReportKind.FILE
    assert [name for name, _ in record.fields] == FILE_RULE.field_names
    values = record.as_dict()
    assert values["WorkId"] == 7
    assert values["System_ItemPathDisplay"] == "C:\\a.txt"
    assert values["System_Size"] == 10
    assert values["System_DateModified"] == "2023-03-07T01:52:44.000000Z"
    assert values["System_FileOwner"] is None


def test_activity_history_record(mapper):
    record = mapper.map("SystemIndex_PropertyStore", {
        "WorkID": 1,
        "4408-System_ItemType": "ActivityHistoryItem",
        "4133-System_Activity_AppDisplayName": "Notepad",
    })
    assert record.kind == ReportKind.ACTIVITY_HISTORY
    assert record.as_dict()["System_Activity_AppDisplayName"] == "Notepad"


def test_internet_history_record(mapper):
    record = mapper.map("SystemIndex_0A", {
        "WorkID": 1,
        "4323-System_ItemUrl": "iehistory://{S-1-5-21}/https://example.org/",
    })
    assert record.kind == ReportKind.INTERNET_HISTORY
    assert record.as_dict()["System_ItemUrl"].endswith("example.org/")


def test_activity_takes_precedence_over_internet(mapper):
    record = mapper.map("SystemIndex_PropertyStore", {
        "System_ItemType": "ActivityHistoryItem",
        "System_ItemUrl": "iehistory://x",
    })
    assert record.kind == ReportKind.ACTIVITY_HISTORY


def test_unmapped_table(mapper):
    assert mapper.map("MSysLocales", {"Id": 1}) is None
    assert mapper.tables == ["SystemIndex_PropertyStore", "SystemIndex_0A"]


def test_custom_rules_without_match():
    rule = rules_for(ReportKind.INTERNET_HISTORY)
    mapper = ArtifactMapper({"T": (rule,)})
    assert mapper.map("T", {"System_ItemUrl": "file://x"}) is None
    assert mapper.map("SystemIndex_PropertyStore", {}) is None


def test_extract_hostname():
    records = [
        {"WorkID": 1},
        {"4390-System_ComputerName": "   "},
        {"4390-System_ComputerName": ["", "DESKTOP-7"]},
        {"4390-System_ComputerName": "LATER"},
    ]
    assert ArtifactMapper.extract_hostname(records) == "DESKTOP-7"
    assert ArtifactMapper.extract_hostname([{"WorkID": 1}]) == "Unknown"
    assert ArtifactMapper.extract_hostname([]) == "Unknown"


def test_report_record_as_dict():
    record = ReportRecord(ReportKind.FILE, [("a", 1), ("b", None)])
    assert record.as_dict() == {"a": 1, "b": None}


# --------------------------------------------------------------------
# Transforms
# --------------------------------------------------------------------

def test_to_text():
    assert to_text(None) is None
    assert to_text("x") == "x"
    assert to_text(5) == "5"
    assert to_text(b'\x01\xff') == "01ff"
    assert to_text(["a", None, "b"]) == "a; b"
    moment = datetime.datetime(2020, 1, 1, tzinfo=datetime.timezone.utc)
    assert to_text(moment) == "2020-01-01T00:00:00.000000Z"


def test_to_integer():
    assert to_integer(None) is None
    assert to_integer("") is None
    assert to_integer("42") == 42
    assert to_integer(b'\x01\x01') == 257
    assert to_integer([3, 4]) == 3
    assert to_integer("nope") is None


def test_to_filetime():
    value = eb.filetime(2023, 3, 7, 1, 52, 44)
    expected = "2023-03-07T01:52:44.000000Z"
    assert to_filetime(value) == expected
    assert to_filetime(struct.pack('<Q', value)) == expected
    assert to_filetime(str(value)) == expected
    assert to_filetime(b'\x00' * 4) is None
    assert to_filetime(0) is None
    assert to_filetime(None) is None


def test_to_hex():
    assert to_hex(b'\xab\x01') == "ab01"
    assert to_hex(255) == "ff"
    assert to_hex(None) is None


def test_report_kind_suffix():
    assert ReportKind.FILE.suffix == "file_report"
    assert ReportKind.ACTIVITY_HISTORY.suffix == "activity_history"
    assert ReportKind.INTERNET_HISTORY.suffix == "internet_history"
