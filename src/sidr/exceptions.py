"""
SIDR Exceptions - Error taxonomy for reading Windows Search stores
"""


class SidrError(Exception):
    """Base class for all store reading errors"""
    pass


class SidrIOError(SidrError):
    """Underlying file could not be opened or read"""
    pass


class OutOfRange(SidrError):
    """Page number outside the file's page range"""
    pass


class CorruptPage(SidrError):
    """Page header, tag table or checksum is inconsistent"""
    pass


class UnsupportedVersion(SidrError):
    """Store format version or revision is not supported"""
    pass


class CatalogCorrupt(SidrError):
    """Catalog table cannot be turned into usable schemas"""
    pass


class CorruptBTree(SidrError):
    """B+tree structure contradicts itself (wrong depth, cycle, foreign page)"""
    pass


class TruncatedRecord(SidrError):
    """Record offsets point past the end of the record buffer"""
    pass


class DanglingLongValue(SidrError):
    """Long-value reference with no matching segments"""

    def __init__(self, lid: int):
        super().__init__(f"No long value segments for id {lid:#x}")
        self.lid = lid


class InvalidValue(SidrError):
    """Column bytes cannot be converted to the declared column type"""
    pass
