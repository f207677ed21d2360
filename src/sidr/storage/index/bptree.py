"""
B+ Tree Navigator
Read-only cursor over an ESE B+ tree: leftmost descent, leaf chaining
through "next page" pointers and key seeks, with structural guards.
"""

import logging
from dataclasses import dataclass
from typing import Iterator, Optional, Set, Tuple

from .index_page import IndexPage, LeafEntry
from ..file_manager import FileManager
from ..page import PageRole
from ...exceptions import CorruptBTree

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RawRecord:
    """Undecoded leaf entry: full key plus record bytes"""
    key: bytes
    data: bytes
    page_number: int
    tag_index: int


def _to_record(page: IndexPage, entry: LeafEntry) -> RawRecord:
    return RawRecord(entry.key, entry.data, page.page_number, entry.tag_index)


class BPlusTree:
    """B+ tree rooted at a catalog-provided page"""

    def __init__(self, file_manager: FileManager, root_page: int, name: str = ""):
        """
        Initialize B+ Tree

        Args:
            file_manager: File manager for page access
            root_page: Page number of the tree's root (its FDP)
            name: Owner name used in diagnostics
        """
        self.file_manager = file_manager
        self.root_page = root_page
        self.name = name or f"tree@{root_page}"
        self.leaf_depth: Optional[int] = None
        self._fdp_objid: Optional[int] = None

    # ----------------------------------------------------------------
    # Page access and structural checks
    # ----------------------------------------------------------------

    def _get_page(self, page_number: int) -> IndexPage:
        """Get index page wrapper, checking it belongs to this tree"""
        page = IndexPage(self.file_manager.read_page(page_number))
        raw = page.page

        if page_number == self.root_page:
            self._fdp_objid = raw.fdp_objid
        if raw.role == PageRole.EMPTY:
            raise CorruptBTree(f"{self.name}: page {page_number} is empty but linked into the tree")
        if raw.is_space_tree:
            raise CorruptBTree(f"{self.name}: page {page_number} is a space tree page")
        if self._fdp_objid is not None and raw.fdp_objid != self._fdp_objid:
            raise CorruptBTree(f"{self.name}: page {page_number} belongs to object "
                               f"{raw.fdp_objid}, expected {self._fdp_objid}")
        return page

    def _root(self) -> IndexPage:
        self._fdp_objid = None
        return self._get_page(self.root_page)

    def _check_leaf_depth(self, page: IndexPage, depth: int) -> None:
        if self.leaf_depth is None:
            self.leaf_depth = depth
        elif depth != self.leaf_depth:
            raise CorruptBTree(f"{self.name}: leaf page {page.page_number} at depth {depth}, "
                               f"expected {self.leaf_depth}")

    def _follow(self, page: IndexPage, child: int, depth: int, path: Set[int]) -> IndexPage:
        if child in path:
            raise CorruptBTree(f"{self.name}: page {child} revisited during descent")
        if depth > self.file_manager.page_count:
            raise CorruptBTree(f"{self.name}: descent deeper than the file's page count")
        path.add(child)
        return self._get_page(child)

    def _descend(self, key: Optional[bytes]) -> Tuple[IndexPage, int]:
        """
        Descend from the root to a leaf

        Args:
            key: Key to seek, or None to take the leftmost child at every level

        Returns:
            (leaf page, depth of the leaf)
        """
        page = self._root()
        path = {self.root_page}
        depth = 0

        while page.is_branch:
            entries = page.branch_entries()
            if not entries:
                raise CorruptBTree(f"{self.name}: branch page {page.page_number} has no children")
            chosen = entries[-1]
            if key is None:
                chosen = entries[0]
            else:
                for entry in entries:
                    # An empty separator bounds everything to its right
                    if not entry.key or entry.key >= key:
                        chosen = entry
                        break
            depth += 1
            page = self._follow(page, chosen.child_page, depth, path)

        if not page.is_leaf:
            raise CorruptBTree(f"{self.name}: descent ended on non-leaf page {page.page_number}")
        self._check_leaf_depth(page, depth)
        return page, depth

    # ----------------------------------------------------------------
    # Public API
    # ----------------------------------------------------------------

    def cursor(self) -> "Cursor":
        """Open a new cursor positioned before the first record"""
        return Cursor(self)

    def __iter__(self) -> Iterator[RawRecord]:
        """Iterate all leaf records in key order via leaf chaining"""
        cursor = self.cursor()
        record = cursor.first()
        while record is not None:
            yield record
            record = cursor.next()

    def seek(self, key: bytes) -> Optional[RawRecord]:
        """Find the first record whose key is >= key"""
        return self.cursor().seek(key)

    def scan_by_descent(self) -> Iterator[RawRecord]:
        """
        Iterate all leaf records by re-descending from the root for every record

        Slower than leaf chaining; ignores "next page" pointers entirely.
        """
        last_key = None
        while True:
            record = self._successor(self.root_page, last_key, 0, {self.root_page})
            if record is None:
                return
            yield record
            last_key = record.key

    def _successor(self, page_number: int, key: Optional[bytes], depth: int,
                   path: Set[int]) -> Optional[RawRecord]:
        """Find the first record with a key strictly greater than key below page_number"""
        page = self._root() if page_number == self.root_page else self._get_page(page_number)

        if page.is_leaf:
            self._check_leaf_depth(page, depth)
            for entry in page.leaf_entries():
                if key is None or entry.key > key:
                    return _to_record(page, entry)
            return None

        entries = page.branch_entries()
        if not entries:
            raise CorruptBTree(f"{self.name}: branch page {page_number} has no children")
        start = 0
        if key is not None:
            start = len(entries) - 1
            for index, entry in enumerate(entries):
                if not entry.key or entry.key >= key:
                    start = index
                    break

        for entry in entries[start:]:
            if entry.child_page in path:
                raise CorruptBTree(f"{self.name}: page {entry.child_page} revisited during descent")
            if depth + 1 > self.file_manager.page_count:
                raise CorruptBTree(f"{self.name}: descent deeper than the file's page count")
            found = self._successor(entry.child_page, key, depth + 1, path | {entry.child_page})
            if found is not None:
                return found
        return None

    def get_tree_info(self) -> dict:
        """Get tree statistics"""
        return {
            'name': self.name,
            'root_page': self.root_page,
            'leaf_depth': self.leaf_depth,
            'fdp_objid': self._fdp_objid,
        }


class Cursor:
    """Forward cursor over the leaf level of a BPlusTree"""

    def __init__(self, tree: BPlusTree):
        self.tree = tree
        self._page: Optional[IndexPage] = None
        self._entries = []
        self._position = -1
        self._visited: Set[int] = set()
        self._exhausted = False

    def _load(self, page: IndexPage) -> None:
        self._page = page
        self._entries = page.leaf_entries()
        self._position = -1

    def first(self) -> Optional[RawRecord]:
        """Position on the first record of the tree"""
        leaf, _ = self.tree._descend(None)
        self._visited = {leaf.page_number}
        self._exhausted = False
        self._load(leaf)
        return self.next()

    def next(self) -> Optional[RawRecord]:
        """
        Advance to the next record, following leaf "next page" pointers

        Raises:
            CorruptBTree: On a cycle or a non-leaf page in the leaf chain
        """
        if self._exhausted:
            return None
        if self._page is None:
            return self.first()

        while True:
            self._position += 1
            if self._position < len(self._entries):
                return _to_record(self._page, self._entries[self._position])

            next_page = self._page.page.next_page
            if next_page == 0:
                self._exhausted = True
                return None
            if next_page in self._visited:
                raise CorruptBTree(f"{self.tree.name}: leaf chain revisits page {next_page} "
                                   f"after page {self._page.page_number}")
            if len(self._visited) >= self.tree.file_manager.page_count:
                raise CorruptBTree(f"{self.tree.name}: leaf chain longer than the file")

            page = self.tree._get_page(next_page)
            if not page.is_leaf:
                raise CorruptBTree(f"{self.tree.name}: leaf chain reached "
                                   f"{page.page.role.name} page {next_page}")
            self._visited.add(next_page)
            self._load(page)

    def seek(self, key: bytes) -> Optional[RawRecord]:
        """Position on the first record whose key is >= key"""
        leaf, _ = self.tree._descend(key)
        self._visited = {leaf.page_number}
        self._exhausted = False
        self._load(leaf)

        record = self.next()
        while record is not None and record.key < key:
            record = self.next()
        return record


def open_cursor(file_manager: FileManager, root_page: int, name: str = "") -> Cursor:
    """Open a cursor on the tree rooted at root_page"""
    return BPlusTree(file_manager, root_page, name).cursor()
