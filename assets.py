"""Copy-once provisioning of assets bundled with the application."""

from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path
from typing import Iterable

from app_paths import get_logger
from models import ProvisionResult

logger = get_logger(__name__)

DEFAULT_PATTERNS = ("*.bin",)


def _iter_bundled(source_dir: Path, patterns: Iterable[str]) -> list[Path]:
    found: dict[str, Path] = {}
    for pattern in patterns:
        for candidate in sorted(source_dir.glob(pattern)):
            if candidate.is_file():
                found.setdefault(candidate.name, candidate)
    return [found[name] for name in sorted(found)]


def _copy_atomic(source: Path, dest: Path) -> None:
    fd, tmp_name = tempfile.mkstemp(prefix=f".{dest.name}.", suffix=".tmp", dir=dest.parent)
    tmp_path = Path(tmp_name)
    try:
        with source.open("rb") as src, os.fdopen(fd, "wb") as out:
            shutil.copyfileobj(src, out)
            out.flush()
            os.fsync(out.fileno())
        os.replace(tmp_path, dest)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


def ensure_bundled_assets(
    source_dir: Path,
    dest_dir: Path,
    patterns: Iterable[str] = DEFAULT_PATTERNS,
) -> ProvisionResult:
    """Copy bundled files into ``dest_dir`` unless a file of that name exists.

    Existing destination files are trusted as-is. Copies go through a
    temporary file and an atomic rename, so an interrupted copy never leaves
    a truncated file under the final name.
    """
    result = ProvisionResult()
    source_dir = Path(source_dir)
    dest_dir = Path(dest_dir)
    if not source_dir.is_dir():
        logger.debug("No bundled asset directory at %s", source_dir)
        return result

    dest_dir.mkdir(parents=True, exist_ok=True)
    for source in _iter_bundled(source_dir, patterns):
        dest = dest_dir / source.name
        if dest.exists():
            result.skipped.append(source.name)
            continue
        try:
            _copy_atomic(source, dest)
        except OSError:
            logger.exception("Asset copy failed: %s -> %s", source, dest)
            result.failed.append(source.name)
            continue
        logger.info("Copied bundled asset %s", source.name)
        result.copied.append(source.name)
    return result
