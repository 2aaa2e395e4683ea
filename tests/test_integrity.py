from __future__ import annotations

import hashlib
from pathlib import Path

import pytest

from integrity import checksum, matches


def test_checksum_streams_in_chunks(tmp_path: Path) -> None:
    data = bytes(range(256)) * 1000
    path = tmp_path / "model.bin"
    path.write_bytes(data)

    assert checksum(path, chunk_size=1000) == hashlib.md5(data).hexdigest()
    assert checksum(path, "sha256") == hashlib.sha256(data).hexdigest()


def test_matches_is_case_insensitive(tmp_path: Path) -> None:
    path = tmp_path / "model.bin"
    path.write_bytes(b"weights")
    expected = hashlib.md5(b"weights").hexdigest().upper()

    assert matches(path, expected) is True
    assert matches(path, "0" * 32) is False


def test_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(OSError):
        checksum(tmp_path / "absent.bin")


def test_unsupported_algorithm(tmp_path: Path) -> None:
    path = tmp_path / "model.bin"
    path.write_bytes(b"x")

    with pytest.raises(ValueError):
        checksum(path, "crc32")
