"""
SIDR - ESE Format Constants
Constants for the file header, page layout, catalog and record encoding.
"""

# File Header (offset 0, shadow copy at offset page_size)
HEADER_CHECKSUM_OFFSET = 0  # 4 bytes
HEADER_SIGNATURE_OFFSET = 4  # 4 bytes
HEADER_FORMAT_VERSION_OFFSET = 8  # 4 bytes
HEADER_FILE_TYPE_OFFSET = 12  # 4 bytes
HEADER_DB_TIME_OFFSET = 16  # 8 bytes
HEADER_DB_STATE_OFFSET = 52  # 4 bytes
HEADER_FORMAT_REVISION_OFFSET = 232  # 4 bytes
HEADER_PAGE_SIZE_OFFSET = 236  # 4 bytes
HEADER_CHECKSUM_END = 668  # XOR checksum covers bytes 4..668
HEADER_MIN_SIZE = HEADER_CHECKSUM_END

ESE_SIGNATURE = 0x89ABCDEF
CHECKSUM_SEED = 0x89ABCDEF
SUPPORTED_FORMAT_VERSIONS = (0x620, 0x623)
MAX_FORMAT_REVISION = 0x20
SUPPORTED_PAGE_SIZES = (2048, 4096, 8192, 16384, 32768)
FILE_TYPE_DATABASE = 0

DB_STATES = {
    1: "just created",
    2: "dirty shutdown",
    3: "clean shutdown",
    4: "being converted",
    5: "force detach",
}

# Page numbering: the two header copies occupy the first two page slots
HEADER_PAGE_SLOTS = 2

# Page Header Offsets
PAGE_CHECKSUM_OFFSET = 0  # 4 bytes (8 with ECC)
PAGE_NUMBER_OFFSET = 4  # 4 bytes, revisions before 0x11 only
PAGE_MODIFIED_TIME_OFFSET = 8  # 8 bytes
PAGE_PREV_OFFSET = 16  # 4 bytes
PAGE_NEXT_OFFSET = 20  # 4 bytes
PAGE_FDP_OBJID_OFFSET = 24  # 4 bytes
PAGE_AVAILABLE_SIZE_OFFSET = 28  # 2 bytes
PAGE_FIRST_AVAILABLE_OFFSET = 32  # 2 bytes
PAGE_TAG_COUNT_OFFSET = 34  # 2 bytes
PAGE_FLAGS_OFFSET = 36  # 4 bytes
PAGE_HEADER_SIZE = 40
PAGE_EXTENDED_HEADER_SIZE = 80  # revision >= 0x11 with pages >= 16 KiB

EXTENDED_HEADER_REVISION = 0x11
NEW_RECORD_FORMAT_REVISION = 0x0B  # page flags may select the ECC checksum layout
LARGE_PAGE_SIZE = 16384
TAG_SIZE = 4

# Page Flags
PAGE_FLAG_ROOT = 0x0001
PAGE_FLAG_LEAF = 0x0002
PAGE_FLAG_PARENT = 0x0004
PAGE_FLAG_EMPTY = 0x0008
PAGE_FLAG_SPACE_TREE = 0x0020
PAGE_FLAG_INDEX = 0x0040
PAGE_FLAG_LONG_VALUE = 0x0080
PAGE_FLAG_NEW_RECORD_FORMAT = 0x2000
PAGE_FLAG_NEW_CHECKSUM = 0x8000

# Tag Flags
TAG_FLAG_DEFUNCT = 0x2
TAG_FLAG_COMMON_KEY = 0x4

SMALL_PAGE_VALUE_MASK = 0x1FFF
LARGE_PAGE_VALUE_MASK = 0x7FFF

# Catalog (MSysObjects)
CATALOG_ROOT_PAGE = 4
CATALOG_SHADOW_ROOT_PAGE = 24
CATALOG_TABLE_NAME = "MSysObjects"

CATALOG_TYPE_TABLE = 1
CATALOG_TYPE_COLUMN = 2
CATALOG_TYPE_INDEX = 3
CATALOG_TYPE_LONG_VALUE = 4
CATALOG_TYPE_CALLBACK = 5

# Catalog record bootstrap layout (fixed columns)
CATALOG_OBJID_TABLE_OFFSET = 4  # 4 bytes
CATALOG_TYPE_OFFSET = 8  # 2 bytes
CATALOG_ID_OFFSET = 10  # 4 bytes
CATALOG_COLTYP_OR_PGNO_OFFSET = 14  # 4 bytes
CATALOG_SPACE_USAGE_OFFSET = 18  # 4 bytes
CATALOG_FLAGS_OFFSET = 22  # 4 bytes
CATALOG_PAGES_OR_LOCALE_OFFSET = 26  # 4 bytes
CATALOG_FIXED_END = 30
CATALOG_LAST_REQUIRED_FIXED_ID = 7

# Record layout
RECORD_HEADER_SIZE = 4
LAST_FIXED_COLUMN_ID = 127
FIRST_VARIABLE_COLUMN_ID = 128
LAST_VARIABLE_COLUMN_ID = 255

VARIABLE_NULL_FLAG = 0x8000
VARIABLE_OFFSET_MASK = 0x7FFF

TAGGED_OFFSET_MASK = 0x3FFF
TAGGED_LARGE_OFFSET_MASK = 0x7FFF
TAGGED_HAS_FLAGS = 0x4000

TAGGED_FLAG_COMPRESSED = 0x02
TAGGED_FLAG_LONG_VALUE = 0x04
TAGGED_FLAG_MULTI_VALUE = 0x08
TAGGED_FLAG_MULTI_VALUE_SIZE = 0x10

MULTI_VALUE_OFFSET_MASK = 0x7FFF

# Column flags (JET_bitColumn*)
COLUMN_FLAG_MULTI_VALUED = 0x00000400
COLUMN_FLAG_COMPRESSED = 0x00080000

# Code pages
CODEPAGE_UNICODE = 1200
CODEPAGE_WESTERN = 1252
CODEPAGE_ASCII = 20127

# Long values
LONG_VALUE_HEADER_SIZE = 8

# Runtime defaults
DEFAULT_CACHE_PAGES = 256
DEFAULT_LONG_VALUE_CACHE = 16
UNKNOWN_HOSTNAME = "Unknown"
