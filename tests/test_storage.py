import struct

import pytest
from sidr.storage.page import Page, PageRole, xor32_checksum, compute_page_checksum
from sidr.storage.file_manager import FileManager, parse_header
from sidr.storage.buffer_pool import BufferPool
from sidr.exceptions import CorruptPage, OutOfRange, SidrIOError, UnsupportedVersion

import ese_builder as eb


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "Windows.edb"
    eb.simple_store(path, [(1, "a"), (2, "bb")])
    return path


def test_xor_checksum_matches_builder():
    data = bytes(range(256)) * 4
    assert xor32_checksum(data) == eb.xor32(data)
    page = eb.build_page(7, [(eb.leaf_entry(b'k', b'v'), 0)], eb.ROOT | eb.LEAF)
    assert struct.unpack_from('<I', page)[0] == compute_page_checksum(page, 7, 0x0C)


def test_parse_header():
    header = parse_header(eb.build_header(page_size=8192, revision=0x14, state=2))
    assert header.page_size == 8192
    assert header.format_revision == 0x14
    assert header.format_version == 0x620
    assert header.state_name == "dirty shutdown"
    assert header.file_type == 0
    assert header.database_time == 0x1234
    assert header.checksum_ok


def test_parse_header_rejects_bad_signature():
    with pytest.raises(CorruptPage):
        parse_header(eb.build_header(signature=0x12345678))


def test_parse_header_rejects_bad_page_size():
    with pytest.raises(CorruptPage):
        parse_header(eb.build_header(page_size=3000))


def test_parse_header_rejects_unknown_version():
    with pytest.raises(UnsupportedVersion):
        parse_header(eb.build_header(version=0x600))
    with pytest.raises(UnsupportedVersion):
        parse_header(eb.build_header(revision=0x40))


def test_parse_header_rejects_streaming_file():
    with pytest.raises(UnsupportedVersion):
        parse_header(eb.build_header(file_type=1))


def test_file_manager_rejects_streaming_file(tmp_path):
    path = tmp_path / "Windows.stm"
    eb.simple_store(path, [(1, "a")], file_type=1)
    with pytest.raises(UnsupportedVersion):
        FileManager(path)


def test_header_checksum_mismatch_is_reported():
    data = bytearray(eb.build_header())
    data[100] ^= 0xFF
    header = parse_header(bytes(data))
    assert not header.checksum_ok


def test_page_tags_and_role():
    entries = [(eb.leaf_entry(b'\x00\x01', b'one'), 0), (eb.leaf_entry(b'\x00\x02', b'two'), 0)]
    data = eb.build_page(3, entries, eb.ROOT | eb.LEAF, fdp_objid=9, next_page=0)
    page = Page(3, data, 0x0C)

    assert page.role == PageRole.LEAF
    assert page.is_root
    assert page.fdp_objid == 9
    assert page.tag_count == 3
    assert page.entry_count == 2
    assert page.tag_data(1) == eb.leaf_entry(b'\x00\x01', b'one')
    assert page.tag_data(2) == eb.leaf_entry(b'\x00\x02', b'two')


def test_page_roles():
    assert Page(1, eb.build_page(1, [], eb.ROOT | eb.PARENT), 0x0C).role == PageRole.ROOT
    assert Page(1, eb.build_page(1, [], eb.PARENT), 0x0C).role == PageRole.BRANCH
    assert Page(1, eb.build_page(1, [], eb.LEAF | eb.LONG_VALUE), 0x0C).role == PageRole.LONG_VALUE
    assert Page(1, eb.build_page(1, [], eb.EMPTY), 0x0C).role == PageRole.EMPTY
    assert Page(1, bytes(4096), 0x0C).role == PageRole.EMPTY


def test_page_leaf_and_parent_is_corrupt():
    with pytest.raises(CorruptPage):
        Page(1, eb.build_page(1, [], eb.LEAF | eb.PARENT), 0x0C)


def test_page_checksum_mismatch():
    data = bytearray(eb.build_page(5, [(eb.leaf_entry(b'k', b'v'), 0)], eb.ROOT | eb.LEAF))
    data[200] ^= 0x01
    with pytest.raises(CorruptPage):
        Page(5, bytes(data), 0x0C)
    # Tolerated when verification is disabled
    page = Page(5, bytes(data), 0x0C, verify_checksum=False)
    assert page.entry_count == 1


def test_page_new_checksum_format():
    flags = eb.ROOT | eb.LEAF | eb.NEW_RECORD_FORMAT
    data = eb.build_page(12, [(eb.leaf_entry(b'k', b'v'), 0)], flags, revision=0x14)
    page = Page(12, data, 0x14)
    assert page.entry_count == 1
    # The checksum is seeded with the page number
    with pytest.raises(CorruptPage):
        Page(13, data, 0x14)


def test_new_format_page_in_older_revision():
    flags = eb.ROOT | eb.LEAF | eb.NEW_RECORD_FORMAT
    data = eb.build_page(12, [(eb.leaf_entry(b'k', b'v'), 0)], flags, revision=0x0C)
    # Bytes 4..8 hold the ECC word, not the page number
    assert struct.unpack_from('<I', data, 4)[0] == eb.ECC_FILLER
    page = Page(12, data, 0x0C)
    assert page.entry_count == 1
    assert struct.unpack_from('<I', data)[0] == compute_page_checksum(data, 12, 0x0C)


def test_legacy_page_in_newer_revision():
    data = eb.build_page(12, [(eb.leaf_entry(b'k', b'v'), 0)], eb.ROOT | eb.LEAF,
                         revision=0x14)
    assert struct.unpack_from('<I', data, 4)[0] == 12
    assert Page(12, data, 0x14).entry_count == 1
    with pytest.raises(CorruptPage):
        Page(13, data, 0x14)


def test_page_number_mismatch_tolerated_without_verification():
    data = eb.build_page(5, [], eb.ROOT | eb.PARENT)
    page = Page(6, data, 0x0C, verify_checksum=False)
    assert page.role == PageRole.ROOT


def test_new_format_store_is_readable(tmp_path):
    path = tmp_path / "Windows.edb"
    eb.simple_store(path, [(1, "a"), (2, "bb")], new_format=True)
    with FileManager(path) as fm:
        page = fm.read_page(10)
        assert page.flags & eb.NEW_RECORD_FORMAT
        assert page.entry_count == 2


def test_page_number_mismatch():
    data = eb.build_page(5, [], eb.ROOT | eb.LEAF)
    with pytest.raises(CorruptPage):
        Page(6, data, 0x0C)


def test_tag_count_exceeding_page_is_corrupt():
    data = bytearray(eb.build_page(2, [], eb.ROOT | eb.LEAF))
    struct.pack_into('<H', data, 34, 2000)
    with pytest.raises(CorruptPage):
        Page(2, eb.seal_page(data, 2), 0x0C)


def test_overlapping_tags_are_corrupt():
    entries = [(eb.leaf_entry(b'a', b'xxxx'), 0), (eb.leaf_entry(b'b', b'yyyy'), 0)]
    data = bytearray(eb.build_page(2, entries, eb.ROOT | eb.LEAF))
    # Point tag 2 at the bytes of tag 1
    size, _ = struct.unpack_from('<HH', data, 4096 - 12)
    struct.pack_into('<HH', data, 4096 - 12, size, 2)
    with pytest.raises(CorruptPage):
        Page(2, eb.seal_page(data, 2), 0x0C)


def test_tag_into_tag_table_is_corrupt():
    data = bytearray(eb.build_page(2, [(eb.leaf_entry(b'a', b'x'), 0)], eb.ROOT | eb.LEAF))
    struct.pack_into('<HH', data, 4096 - 8, 100, 4096 - 40 - 50)
    with pytest.raises(CorruptPage):
        Page(2, eb.seal_page(data, 2), 0x0C)


def test_file_manager_reads_pages(db_path):
    with FileManager(db_path) as fm:
        assert fm.page_size == 4096
        assert fm.page_count == 10
        catalog_page = fm.read_page(4)
        assert catalog_page.role == PageRole.LEAF
        assert catalog_page.fdp_objid == eb.CATALOG_OBJID
        assert fm.read_page(5).role == PageRole.EMPTY

        info = fm.get_database_info()
        assert info["total_pages"] == 10
        assert info["state"] == "clean shutdown"
        assert info["database_time"] == 0x1234


def test_file_manager_out_of_range(db_path):
    with FileManager(db_path) as fm:
        with pytest.raises(OutOfRange):
            fm.read_page(0)
        with pytest.raises(OutOfRange):
            fm.read_page(11)


def test_file_manager_shadow_header(tmp_path):
    builder = eb.EseFileBuilder()
    builder.page(4, [], eb.ROOT | eb.LEAF, fdp_objid=2)
    builder.header = eb.build_header(signature=0)
    path = tmp_path / "shadow.edb"
    builder.write(path)

    with FileManager(path) as fm:
        assert fm.header.from_shadow
        assert fm.page_size == 4096


def test_file_manager_missing_file(tmp_path):
    with pytest.raises(SidrIOError):
        FileManager(tmp_path / "missing.edb")


def test_file_manager_uses_cache(db_path):
    with FileManager(db_path, cache_pages=4) as fm:
        first = fm.read_page(4)
        assert fm.read_page(4) is first
        stats = fm.buffer_pool.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1


def test_buffer_pool_lru():
    pool = BufferPool(capacity=2)
    loads = []

    def loader(n):
        loads.append(n)
        return Page(n, bytes(4096), 0x0C)

    pool.get_page(1, loader)
    pool.get_page(2, loader)
    pool.get_page(1, loader)  # 1 becomes most recent
    pool.get_page(3, loader)  # evicts 2

    assert pool.peek(2) is None
    assert pool.peek(1) is not None
    assert loads == [1, 2, 3]
    assert pool.get_stats()["evictions"] == 1


def test_buffer_pool_disabled():
    pool = BufferPool(capacity=0)
    pool.get_page(1, lambda n: Page(n, bytes(4096), 0x0C))
    assert pool.peek(1) is None
