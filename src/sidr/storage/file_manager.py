"""
File Manager Module - Handles store file I/O
Responsible for reading the file header, bounds-checked positioned page reads
and the page cache. The store is only ever opened read-only.
"""

import logging
import os
import struct
import threading
from dataclasses import dataclass
from pathlib import Path

from .buffer_pool import BufferPool
from .page import Page, xor32_checksum
from ..constants import (HEADER_CHECKSUM_OFFSET, HEADER_SIGNATURE_OFFSET,
                         HEADER_FORMAT_VERSION_OFFSET, HEADER_FILE_TYPE_OFFSET,
                         HEADER_DB_TIME_OFFSET, HEADER_DB_STATE_OFFSET,
                         HEADER_FORMAT_REVISION_OFFSET, HEADER_PAGE_SIZE_OFFSET,
                         HEADER_CHECKSUM_END, HEADER_MIN_SIZE, HEADER_PAGE_SLOTS,
                         ESE_SIGNATURE, SUPPORTED_FORMAT_VERSIONS, MAX_FORMAT_REVISION,
                         SUPPORTED_PAGE_SIZES, FILE_TYPE_DATABASE, DB_STATES, DEFAULT_CACHE_PAGES)
from ..exceptions import CorruptPage, OutOfRange, SidrIOError, UnsupportedVersion

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoreHeader:
    """Immutable view of the store file header"""
    format_version: int
    format_revision: int
    file_type: int
    page_size: int
    database_state: int
    database_time: int
    checksum_ok: bool
    from_shadow: bool = False

    @property
    def state_name(self) -> str:
        return DB_STATES.get(self.database_state, f"unknown ({self.database_state})")


def parse_header(data: bytes, from_shadow: bool = False) -> StoreHeader:
    """
    Parse and validate a file header copy

    Args:
        data: At least HEADER_MIN_SIZE bytes starting at the header copy
        from_shadow: Whether this is the backup copy

    Returns:
        Parsed header

    Raises:
        CorruptPage: If the signature or page size is invalid
        UnsupportedVersion: If the format version or revision is not supported, or the
            file is not a database (e.g. a streaming file)
    """
    if len(data) < HEADER_MIN_SIZE:
        raise CorruptPage(f"File header truncated ({len(data)} bytes)")

    signature = struct.unpack_from('<I', data, HEADER_SIGNATURE_OFFSET)[0]
    if signature != ESE_SIGNATURE:
        raise CorruptPage(f"Bad file signature {signature:#010x}")

    version = struct.unpack_from('<I', data, HEADER_FORMAT_VERSION_OFFSET)[0]
    revision = struct.unpack_from('<I', data, HEADER_FORMAT_REVISION_OFFSET)[0]
    if version not in SUPPORTED_FORMAT_VERSIONS:
        raise UnsupportedVersion(f"Unsupported format version {version:#x}")
    if revision > MAX_FORMAT_REVISION:
        raise UnsupportedVersion(f"Unsupported format revision {revision:#x}")

    file_type = struct.unpack_from('<I', data, HEADER_FILE_TYPE_OFFSET)[0]
    if file_type != FILE_TYPE_DATABASE:
        raise UnsupportedVersion(f"Not a database file (file type {file_type})")

    page_size = struct.unpack_from('<I', data, HEADER_PAGE_SIZE_OFFSET)[0]
    if page_size not in SUPPORTED_PAGE_SIZES:
        raise CorruptPage(f"Invalid page size {page_size}")

    stored = struct.unpack_from('<I', data, HEADER_CHECKSUM_OFFSET)[0]
    calculated = xor32_checksum(data[HEADER_SIGNATURE_OFFSET:HEADER_CHECKSUM_END])

    return StoreHeader(
        format_version=version,
        format_revision=revision,
        file_type=file_type,
        page_size=page_size,
        database_state=struct.unpack_from('<I', data, HEADER_DB_STATE_OFFSET)[0],
        database_time=struct.unpack_from('<Q', data, HEADER_DB_TIME_OFFSET)[0],
        checksum_ok=stored == calculated,
        from_shadow=from_shadow,
    )


class FileManager:
    """Read-only access to an ESE store's header and pages"""

    def __init__(self, db_path, verify_checksums: bool = True,
                 cache_pages: int = DEFAULT_CACHE_PAGES):
        """
        Open store file and read its header

        Args:
            db_path: Path to the store file
            verify_checksums: Reject pages whose stored checksum is wrong
            cache_pages: Capacity of the page cache (0 disables it)

        Raises:
            SidrIOError: If the file cannot be opened
            CorruptPage: If no valid header copy exists
            UnsupportedVersion: If the format is not supported
        """
        self.db_path = Path(db_path)
        self.verify_checksums = verify_checksums
        self.buffer_pool = BufferPool(cache_pages)
        self._lock = threading.Lock()

        try:
            self._file = open(self.db_path, 'rb')
            self.file_size = os.fstat(self._file.fileno()).st_size
        except OSError as e:
            raise SidrIOError(f"Cannot open store {self.db_path}: {e}") from e

        try:
            self.header = self._read_header()
        except Exception:
            self._file.close()
            raise

        self.page_size = self.header.page_size
        self.format_revision = self.header.format_revision
        self.page_count = max(self.file_size // self.page_size - HEADER_PAGE_SLOTS, 0)

        logger.debug(f"Opened {self.db_path}: version {self.header.format_version:#x} "
                     f"revision {self.format_revision:#x}, page size {self.page_size}, "
                     f"{self.page_count} pages, state {self.header.state_name}, "
                     f"db time {self.header.database_time:#x}")

    def _read_header(self) -> StoreHeader:
        """Read the primary header, falling back to the shadow copy"""
        primary = self._pread(0, max(SUPPORTED_PAGE_SIZES[0], HEADER_MIN_SIZE))
        try:
            header = parse_header(primary)
        except CorruptPage as primary_error:
            logger.warning(f"{self.db_path}: primary header unusable ({primary_error}), "
                           f"trying shadow copy")
            header = self._read_shadow_header(primary_error)

        if not header.checksum_ok:
            logger.warning(f"{self.db_path}: file header checksum mismatch")
        return header

    def _read_shadow_header(self, primary_error: CorruptPage) -> StoreHeader:
        for page_size in SUPPORTED_PAGE_SIZES:
            data = self._pread(page_size, HEADER_MIN_SIZE)
            try:
                header = parse_header(data, from_shadow=True)
            except CorruptPage:
                continue
            if header.page_size == page_size:
                return header
        raise primary_error

    def _pread(self, offset: int, length: int) -> bytes:
        """Positioned read that is safe to call from several threads"""
        try:
            if hasattr(os, 'pread'):
                return os.pread(self._file.fileno(), length, offset)
            with self._lock:
                self._file.seek(offset)
                return self._file.read(length)
        except OSError as e:
            raise SidrIOError(f"Read of {length} bytes at {offset} failed: {e}") from e

    def read_page(self, page_number: int) -> Page:
        """
        Read page from disk (or the page cache)

        Args:
            page_number: 1-based database page number

        Returns:
            Validated Page object

        Raises:
            OutOfRange: If page_number is outside the file
            CorruptPage: If the page fails validation
        """
        if page_number < 1 or page_number > self.page_count:
            raise OutOfRange(f"Page {page_number} outside 1..{self.page_count}")
        return self.buffer_pool.get_page(page_number, self._load_page)

    def _load_page(self, page_number: int) -> Page:
        offset = (page_number + HEADER_PAGE_SLOTS - 1) * self.page_size
        data = self._pread(offset, self.page_size)
        if len(data) < self.page_size:
            raise CorruptPage(f"Page {page_number} truncated ({len(data)} bytes)")
        return Page(page_number, data, self.format_revision, self.verify_checksums)

    def close(self) -> None:
        """Close the underlying file"""
        if not self._file.closed:
            self._file.close()

    def __enter__(self) -> "FileManager":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def get_database_info(self) -> dict:
        """Get basic store information"""
        return {
            "path": str(self.db_path),
            "file_size": self.file_size,
            "page_size": self.page_size,
            "total_pages": self.page_count,
            "format_version": self.header.format_version,
            "format_revision": self.format_revision,
            "state": self.header.state_name,
            "database_time": self.header.database_time,
            "header_checksum_ok": self.header.checksum_ok,
            "cache": self.buffer_pool.get_stats(),
        }
