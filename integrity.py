"""Streaming content checksums for on-disk assets."""

from __future__ import annotations

import hashlib
from pathlib import Path

from app_paths import get_logger

logger = get_logger(__name__)

CHUNK_SIZE = 1 << 20  # 1 MiB
SUPPORTED_ALGORITHMS = ("md5", "sha1", "sha256")


def checksum(path: Path, algorithm: str = "md5", chunk_size: int = CHUNK_SIZE) -> str:
    """Return the lowercase hex digest of ``path``.

    The file is read in ``chunk_size`` pieces so multi-gigabyte models never
    sit in memory. Any read failure (including the file vanishing mid-read)
    propagates as ``OSError``; a partial digest is never returned.
    """
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise ValueError(f"unsupported checksum algorithm: {algorithm}")
    digest = hashlib.new(algorithm)
    with Path(path).open("rb") as handle:
        for chunk in iter(lambda: handle.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


def matches(path: Path, expected: str, algorithm: str = "md5") -> bool:
    """Compare against ``expected`` case-insensitively. Raises ``OSError``."""
    actual = checksum(path, algorithm)
    if actual != expected.strip().lower():
        logger.debug("Checksum mismatch for %s: expected %s, got %s", path, expected, actual)
        return False
    return True
