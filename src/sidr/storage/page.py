"""
Page Module - Core storage unit of an ESE store
Parses the page header, validates checksum and tag geometry and exposes
typed, bounds-checked access to the page's line entries (tags).
"""

import struct
from dataclasses import dataclass
from enum import Enum
from functools import reduce
from operator import xor
from typing import List

from ..constants import (PAGE_HEADER_SIZE, PAGE_EXTENDED_HEADER_SIZE, PAGE_CHECKSUM_OFFSET,
                         PAGE_NUMBER_OFFSET, PAGE_MODIFIED_TIME_OFFSET, PAGE_PREV_OFFSET,
                         PAGE_NEXT_OFFSET, PAGE_FDP_OBJID_OFFSET, PAGE_AVAILABLE_SIZE_OFFSET,
                         PAGE_FIRST_AVAILABLE_OFFSET, PAGE_TAG_COUNT_OFFSET, PAGE_FLAGS_OFFSET,
                         PAGE_FLAG_ROOT, PAGE_FLAG_LEAF, PAGE_FLAG_PARENT, PAGE_FLAG_EMPTY,
                         PAGE_FLAG_SPACE_TREE, PAGE_FLAG_INDEX, PAGE_FLAG_LONG_VALUE,
                         PAGE_FLAG_NEW_RECORD_FORMAT, PAGE_FLAG_NEW_CHECKSUM,
                         EXTENDED_HEADER_REVISION, NEW_RECORD_FORMAT_REVISION, LARGE_PAGE_SIZE, TAG_SIZE, CHECKSUM_SEED,
                         SMALL_PAGE_VALUE_MASK, LARGE_PAGE_VALUE_MASK)
from ..exceptions import CorruptPage


class PageRole(Enum):
    """Structural role of a page, decided once when the page is read"""
    LEAF = 0
    BRANCH = 1
    LONG_VALUE = 2
    ROOT = 3
    EMPTY = 4


@dataclass(frozen=True)
class PageTag:
    """One line entry: a byte range inside the page plus its tag flags"""
    index: int
    offset: int  # absolute offset within the page
    size: int
    flags: int


def xor32_checksum(data: bytes, seed: int = CHECKSUM_SEED) -> int:
    """
    XOR all little-endian 32-bit words of data into seed

    Args:
        data: Buffer whose length is a multiple of 4
        seed: Initial value

    Returns:
        32-bit checksum
    """
    words = struct.unpack_from(f'<{len(data) // 4}I', data)
    return reduce(xor, words, seed) & 0xFFFFFFFF


def uses_extended_header(format_revision: int, page_size: int) -> bool:
    """Pages of revision 0x11+ stores with 16 KiB or larger pages carry an 80-byte header"""
    return format_revision >= EXTENDED_HEADER_REVISION and page_size >= LARGE_PAGE_SIZE


def uses_ecc_checksum(flags: int, format_revision: int) -> bool:
    """
    Pages written in the new record format carry an ECC word where older
    pages store their own page number, and seed the XOR with the page number
    """
    return (format_revision >= NEW_RECORD_FORMAT_REVISION and
            bool(flags & (PAGE_FLAG_NEW_RECORD_FORMAT | PAGE_FLAG_NEW_CHECKSUM)))


def compute_page_checksum(data: bytes, page_number: int, format_revision: int) -> int:
    """Compute the XOR checksum a well-formed page stores in its first 4 bytes"""
    flags = struct.unpack_from('<I', data, PAGE_FLAGS_OFFSET)[0]
    if uses_ecc_checksum(flags, format_revision):
        return xor32_checksum(data[8:], CHECKSUM_SEED ^ page_number)
    return xor32_checksum(data[4:])


class Page:
    """Read-only ESE page with typed access to its header and tags"""

    def __init__(self, page_number: int, data: bytes, format_revision: int,
                 verify_checksum: bool = True):
        """
        Parse and validate a page

        Args:
            page_number: 1-based database page number
            data: Raw page bytes (exactly one page)
            format_revision: Store format revision from the file header
            verify_checksum: Compare the stored XOR checksum and page number with the
                expected ones

        Raises:
            CorruptPage: If checksum, page number, flags or tag geometry are inconsistent
        """
        self.page_number = page_number
        self.data = bytes(data)
        self.page_size = len(self.data)
        self.format_revision = format_revision
        self.large = self.page_size >= LARGE_PAGE_SIZE
        self.header_size = (PAGE_EXTENDED_HEADER_SIZE
                            if uses_extended_header(format_revision, self.page_size)
                            else PAGE_HEADER_SIZE)
        self.is_zeroed = self.data.count(0) == self.page_size

        if self.is_zeroed:
            self._init_zeroed()
            return

        self.prev_page = self.read_int(PAGE_PREV_OFFSET)
        self.next_page = self.read_int(PAGE_NEXT_OFFSET)
        self.fdp_objid = self.read_int(PAGE_FDP_OBJID_OFFSET)
        self.modified_time = self.read_long(PAGE_MODIFIED_TIME_OFFSET)
        self.available_size = self.read_short(PAGE_AVAILABLE_SIZE_OFFSET)
        self.first_available_offset = self.read_short(PAGE_FIRST_AVAILABLE_OFFSET)
        self.tag_count = self.read_short(PAGE_TAG_COUNT_OFFSET)
        self.flags = self.read_int(PAGE_FLAGS_OFFSET)

        if verify_checksum:
            self._validate_checksum()
            self._validate_page_number()
        self.role = self._decide_role()
        self.tags = self._read_tags()

    def _init_zeroed(self) -> None:
        """Unused pages are all zero: treat as EMPTY without further checks"""
        self.prev_page = 0
        self.next_page = 0
        self.fdp_objid = 0
        self.modified_time = 0
        self.available_size = 0
        self.first_available_offset = 0
        self.tag_count = 0
        self.flags = 0
        self.role = PageRole.EMPTY
        self.tags = []

    # --------------------------------------------------------------------
    # Validation
    # --------------------------------------------------------------------

    def _validate_checksum(self) -> None:
        if self.header_size == PAGE_EXTENDED_HEADER_SIZE:
            # Large pages checksum each block separately; not verified
            return
        stored = self.read_int(PAGE_CHECKSUM_OFFSET)
        calculated = compute_page_checksum(self.data, self.page_number, self.format_revision)
        if stored != calculated:
            raise CorruptPage(f"Page {self.page_number}: checksum mismatch "
                              f"(stored {stored:#010x}, calculated {calculated:#010x})")

    def _validate_page_number(self) -> None:
        if self.header_size == PAGE_EXTENDED_HEADER_SIZE:
            return
        if uses_ecc_checksum(self.flags, self.format_revision):
            return
        stored = self.read_int(PAGE_NUMBER_OFFSET)
        if stored != self.page_number:
            raise CorruptPage(f"Page {self.page_number}: header claims page number {stored}")

    def _decide_role(self) -> PageRole:
        leaf = bool(self.flags & PAGE_FLAG_LEAF)
        parent = bool(self.flags & PAGE_FLAG_PARENT)

        if leaf and parent:
            raise CorruptPage(f"Page {self.page_number}: both leaf and parent flags set "
                              f"(flags {self.flags:#x})")
        if self.flags & PAGE_FLAG_EMPTY:
            return PageRole.EMPTY
        if leaf:
            return PageRole.LONG_VALUE if self.flags & PAGE_FLAG_LONG_VALUE else PageRole.LEAF
        if parent:
            return PageRole.ROOT if self.flags & PAGE_FLAG_ROOT else PageRole.BRANCH
        return PageRole.EMPTY

    def _read_tags(self) -> List[PageTag]:
        """
        Read the tag table stored back-to-front from the end of the page

        Raises:
            CorruptPage: If the tag table does not fit or entries overlap
        """
        tag_table_start = self.page_size - self.tag_count * TAG_SIZE
        if tag_table_start < self.header_size:
            raise CorruptPage(f"Page {self.page_number}: {self.tag_count} tags do not fit "
                              f"in a {self.page_size} byte page")

        mask = LARGE_PAGE_VALUE_MASK if self.large else SMALL_PAGE_VALUE_MASK
        tags = []
        for index in range(self.tag_count):
            position = self.page_size - (index + 1) * TAG_SIZE
            size_word, offset_word = struct.unpack_from('<HH', self.data, position)
            size = size_word & mask
            offset = self.header_size + (offset_word & mask)

            if offset + size > tag_table_start:
                raise CorruptPage(f"Page {self.page_number}: tag {index} "
                                  f"[{offset}, {offset + size}) overlaps the tag table")

            if self.large:
                flags = (self.read_short(offset) >> 13) if size >= 2 else 0
            else:
                flags = offset_word >> 13
            tags.append(PageTag(index, offset, size, flags))

        # Entries may not share bytes with each other
        previous_end = self.header_size
        for tag in sorted((t for t in tags if t.size), key=lambda t: t.offset):
            if tag.offset < previous_end:
                raise CorruptPage(f"Page {self.page_number}: tag {tag.index} overlaps "
                                  f"a preceding entry")
            previous_end = tag.offset + tag.size

        return tags

    # --------------------------------------------------------------------
    # Typed Data Access Methods (little-endian, bounds-checked)
    # --------------------------------------------------------------------

    def _check_bounds(self, offset: int, length: int) -> None:
        if offset < 0 or offset + length > self.page_size:
            raise CorruptPage(f"Page {self.page_number}: read of {length} bytes at "
                              f"{offset} exceeds page bounds")

    def read_byte(self, offset: int) -> int:
        """Read single byte from offset"""
        self._check_bounds(offset, 1)
        return self.data[offset]

    def read_short(self, offset: int) -> int:
        """Read 2-byte unsigned integer"""
        self._check_bounds(offset, 2)
        return struct.unpack_from('<H', self.data, offset)[0]

    def read_int(self, offset: int) -> int:
        """Read 4-byte unsigned integer"""
        self._check_bounds(offset, 4)
        return struct.unpack_from('<I', self.data, offset)[0]

    def read_long(self, offset: int) -> int:
        """Read 8-byte unsigned integer"""
        self._check_bounds(offset, 8)
        return struct.unpack_from('<Q', self.data, offset)[0]

    def read_bytes(self, offset: int, length: int) -> bytes:
        """Read raw bytes from offset"""
        self._check_bounds(offset, length)
        return self.data[offset:offset + length]

    # --------------------------------------------------------------------
    # Tag Access
    # --------------------------------------------------------------------

    def tag_data(self, index: int) -> bytes:
        """
        Get the bytes of a tag, with large-page flag bits stripped

        Args:
            index: Tag index (0 is the page's external header)

        Returns:
            Entry bytes
        """
        if index < 0 or index >= len(self.tags):
            raise CorruptPage(f"Page {self.page_number}: tag {index} out of range")
        tag = self.tags[index]
        data = self.data[tag.offset:tag.offset + tag.size]
        if self.large and tag.size >= 2:
            first = struct.unpack_from('<H', data)[0] & SMALL_PAGE_VALUE_MASK
            data = struct.pack('<H', first) + data[2:]
        return data

    @property
    def key_prefix(self) -> bytes:
        """Common key prefix shared by entries flagged with COMMON_KEY"""
        if self.is_root or not self.tags:
            return b''
        return self.tag_data(0)

    # --------------------------------------------------------------------
    # Utility Methods
    # --------------------------------------------------------------------

    @property
    def is_root(self) -> bool:
        return bool(self.flags & PAGE_FLAG_ROOT)

    @property
    def is_space_tree(self) -> bool:
        return bool(self.flags & PAGE_FLAG_SPACE_TREE)

    @property
    def is_index(self) -> bool:
        return bool(self.flags & PAGE_FLAG_INDEX)

    @property
    def is_long_value(self) -> bool:
        return bool(self.flags & PAGE_FLAG_LONG_VALUE)

    @property
    def entry_count(self) -> int:
        """Number of record / index entries (tags after the external header)"""
        return max(len(self.tags) - 1, 0)

    def __repr__(self) -> str:
        """String representation of page"""
        return (f"Page(no={self.page_number}, role={self.role.name}, "
                f"flags={self.flags:#x}, tags={self.tag_count}, "
                f"prev={self.prev_page}, next={self.next_page})")
