"""Content fingerprints for change detection.

MD5 is used as a fast 128-bit equality fingerprint, not as a security
primitive.
"""

import hashlib
from pathlib import Path
from typing import Union

from .errors import FilesystemError

CHUNK_SIZE = 64 * 1024


def hash_bytes(data: bytes) -> str:
    """Return the hex digest of data."""
    return hashlib.md5(data, usedforsecurity=False).hexdigest()


def hash_file(path: Union[str, Path]) -> str:
    """Return the hex digest of a file's bytes, read in chunks.

    Args:
        path: File to hash

    Returns:
        32-character hex digest

    Raises:
        FilesystemError: If the file cannot be read
    """
    digest = hashlib.md5(usedforsecurity=False)
    try:
        with open(path, 'rb') as f:
            for chunk in iter(lambda: f.read(CHUNK_SIZE), b''):
                digest.update(chunk)
    except OSError as e:
        raise FilesystemError(str(path), 'hash', str(e))
    return digest.hexdigest()
