"""
Directory Scanner - Locates Windows Search databases below a directory
"""

import logging
import os
from enum import Enum
from pathlib import Path
from typing import Iterator, Tuple


logger = logging.getLogger(__name__)


class StoreKind(Enum):
    """Database flavours, valued by the file name Windows Search gives them"""
    ESE = "Windows.edb"
    SQLITE = "Windows.db"


_KINDS_BY_NAME = {kind.value: kind for kind in StoreKind}


def find_databases(root) -> Iterator[Tuple[Path, StoreKind]]:
    """
    Recursively find Windows.edb and Windows.db files

    Args:
        root: Directory to scan

    Yields:
        (path, store kind) in directory walk order
    """
    def on_error(error: OSError) -> None:
        logger.warning(f"Cannot read directory {error.filename}: {error.strerror}")

    for directory, subdirs, files in os.walk(root, onerror=on_error):
        subdirs.sort()
        for name in sorted(files):
            kind = _KINDS_BY_NAME.get(name)
            if kind is not None:
                yield Path(directory) / name, kind
