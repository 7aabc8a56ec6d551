"""Content-hash keys for analysis results.

A key identifies a file's content by path, size and modification time, so any
rewrite of the file invalidates cached analysis automatically.
"""

from __future__ import annotations

import hashlib
import logging
import os
from pathlib import Path
from typing import Union

logger = logging.getLogger(__name__)

KEY_LENGTH = 32


def content_hash_key(file_path: Union[str, Path]) -> str:
    """Return the 32 hex character content key for ``file_path``.

    Falls back to hashing the path alone when the file cannot be stat'ed.
    """
    path = str(file_path)
    try:
        stat = os.stat(path)
        material = f"{path}|{stat.st_size}|{stat.st_mtime_ns}"
    except OSError as e:
        logger.debug(f"Could not stat {path} for content key: {e}")
        material = path

    return hashlib.sha256(material.encode("utf-8")).hexdigest()[:KEY_LENGTH]
