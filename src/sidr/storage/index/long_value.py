"""
Long Value Resolver - Reassembles out-of-line column values

Long-value tree keys:
    [lid:4 BE]              header record: [ref count:4][total size:4]
    [lid:4 BE][offset:4 BE] segment record: raw value bytes
"""

import logging
import struct
from collections import OrderedDict
from typing import List, Tuple

from .bptree import BPlusTree
from ..file_manager import FileManager
from ...constants import LONG_VALUE_HEADER_SIZE, DEFAULT_LONG_VALUE_CACHE
from ...exceptions import DanglingLongValue

logger = logging.getLogger(__name__)


class LongValueResolver:
    """Resolves long-value ids of one table into byte strings"""

    def __init__(self, file_manager: FileManager, lv_root_page: int, table_name: str = "",
                 cache_size: int = DEFAULT_LONG_VALUE_CACHE):
        """
        Args:
            file_manager: File manager for page access
            lv_root_page: Root page of the table's long-value tree
            table_name: Owning table, for diagnostics
            cache_size: Number of recently resolved values kept (0 disables caching)
        """
        self.tree = BPlusTree(file_manager, lv_root_page, f"{table_name} long values")
        self.cache_size = cache_size
        self.cache: "OrderedDict[int, bytes]" = OrderedDict()

    @staticmethod
    def _lid_key(lid: int, width: int = 4) -> bytes:
        return lid.to_bytes(width, 'big')

    def resolve(self, lid: int, width: int = 4) -> bytes:
        """
        Reassemble a long value

        Args:
            lid: Long-value identifier from the record
            width: Width of the identifier in bytes (4 or 8)

        Returns:
            Value bytes, segments concatenated in offset order

        Raises:
            DanglingLongValue: If no segment exists for lid
        """
        if lid in self.cache:
            self.cache.move_to_end(lid)
            return self.cache[lid]

        prefix = self._lid_key(lid, width)
        total_size = None
        segments: List[Tuple[int, bytes]] = []

        cursor = self.tree.cursor()
        record = cursor.seek(prefix)
        while record is not None and record.key[:width] == prefix:
            suffix = record.key[width:]
            if not suffix:
                if len(record.data) >= LONG_VALUE_HEADER_SIZE:
                    total_size = struct.unpack_from('<I', record.data, 4)[0]
            elif len(suffix) == 4:
                segments.append((struct.unpack('>I', suffix)[0], record.data))
            else:
                logger.debug(f"{self.tree.name}: ignoring key of unexpected length "
                             f"{len(record.key)} for id {lid:#x}")
            record = cursor.next()

        if not segments:
            raise DanglingLongValue(lid)

        segments.sort(key=lambda item: item[0])
        value = bytearray()
        for offset, data in segments:
            if offset != len(value):
                logger.warning(f"{self.tree.name}: id {lid:#x} has a gap at offset "
                               f"{len(value)}, keeping the contiguous prefix")
                break
            value.extend(data)

        if total_size is not None:
            if total_size > len(value):
                logger.warning(f"{self.tree.name}: id {lid:#x} declares {total_size} bytes, "
                               f"only {len(value)} recovered")
            value = value[:total_size]

        result = bytes(value)
        if self.cache_size > 0:
            self.cache[lid] = result
            while len(self.cache) > self.cache_size:
                self.cache.popitem(last=False)
        return result
