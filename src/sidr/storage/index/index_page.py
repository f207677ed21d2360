"""
Index Page - Key/value view over B+ tree node pages

Structure of a node page:
[Header]
... Entries ...
[Tag n] ... [Tag 1][Tag 0]   (tag table grows backwards from the page end)

Tag 0: external header (root header, or the page's common key prefix)
Tag i: [common key size:2 if COMMON_KEY][local key size:2][local key][payload]
Payload: record data on leaf pages, 4-byte child page number on branch pages.
"""

import struct
from dataclasses import dataclass
from typing import List, Tuple

from ..page import Page, PageRole
from ...constants import TAG_FLAG_COMMON_KEY, TAG_FLAG_DEFUNCT
from ...exceptions import CorruptPage


@dataclass(frozen=True)
class LeafEntry:
    """Key and record bytes of one leaf entry"""
    key: bytes
    data: bytes
    tag_index: int
    flags: int


@dataclass(frozen=True)
class BranchEntry:
    """Separator key and child pointer of one branch entry"""
    key: bytes
    child_page: int
    tag_index: int


class IndexPage:
    """Interprets a Page's tags as B+ tree node entries"""

    CHILD_POINTER_SIZE = 4

    def __init__(self, page: Page):
        self.page = page

    @property
    def page_number(self) -> int:
        return self.page.page_number

    @property
    def is_leaf(self) -> bool:
        return self.page.role in (PageRole.LEAF, PageRole.LONG_VALUE)

    @property
    def is_branch(self) -> bool:
        return self.page.role in (PageRole.BRANCH, PageRole.ROOT)

    def _split_entry(self, index: int) -> Tuple[bytes, bytes]:
        """
        Split a tag into its full key and payload

        Raises:
            CorruptPage: If key sizes point beyond the entry
        """
        raw = self.page.tag_data(index)
        flags = self.page.tags[index].flags
        position = 0
        prefix = b''

        if flags & TAG_FLAG_COMMON_KEY:
            if len(raw) < 2:
                raise CorruptPage(f"Page {self.page_number}: tag {index} too short "
                                  f"for common key size")
            common_size = struct.unpack_from('<H', raw, 0)[0]
            page_prefix = self.page.key_prefix
            if common_size > len(page_prefix):
                raise CorruptPage(f"Page {self.page_number}: tag {index} shares "
                                  f"{common_size} key bytes, page prefix has {len(page_prefix)}")
            prefix = page_prefix[:common_size]
            position = 2

        if position + 2 > len(raw):
            raise CorruptPage(f"Page {self.page_number}: tag {index} too short for key size")
        local_size = struct.unpack_from('<H', raw, position)[0]
        position += 2
        if position + local_size > len(raw):
            raise CorruptPage(f"Page {self.page_number}: tag {index} key of {local_size} "
                              f"bytes exceeds entry size {len(raw)}")

        key = prefix + raw[position:position + local_size]
        return key, raw[position + local_size:]

    def _live_tags(self):
        for index in range(1, len(self.page.tags)):
            if self.page.tags[index].flags & TAG_FLAG_DEFUNCT:
                continue
            yield index

    def leaf_entries(self) -> List[LeafEntry]:
        """Get all live leaf entries in tag (key) order"""
        entries = []
        for index in self._live_tags():
            key, data = self._split_entry(index)
            entries.append(LeafEntry(key, data, index, self.page.tags[index].flags))
        return entries

    def branch_entries(self) -> List[BranchEntry]:
        """Get all live branch entries in tag (key) order"""
        entries = []
        for index in self._live_tags():
            key, payload = self._split_entry(index)
            if len(payload) < self.CHILD_POINTER_SIZE:
                raise CorruptPage(f"Page {self.page_number}: branch tag {index} has no "
                                  f"child page pointer")
            child = struct.unpack_from('<I', payload, 0)[0]
            entries.append(BranchEntry(key, child, index))
        return entries
