"""Model catalog: which files exist, where they come from, how to verify them.

``primary-model`` is the pinned whisper-large-v3 TFLite export. The desktop
engine runs whisper.cpp, so dictation defaults to one of the ggml entries,
which are verified by SHA-1.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

from app_paths import get_logger
from integrity import SUPPORTED_ALGORITHMS
from models import ModelAsset

logger = get_logger(__name__)

PRIMARY_MODEL = "primary-model"
DICTATION_MODEL = "large-v3"
VOCAB_MULTILINGUAL = "filters_vocab_multilingual.bin"
VOCAB_ENGLISH = "filters_vocab_en.bin"

WHISPER_CPP_BASE_URL = "https://huggingface.co/ggerganov/whisper.cpp/resolve/main/"


@dataclass(frozen=True)
class ModelSpec:
    logical_name: str
    filename: str
    url: str
    checksum: str
    size_bytes: int = 0
    checksum_algorithm: str = "md5"

    @property
    def is_multilingual(self) -> bool:
        stem = Path(self.filename).stem
        return not stem.endswith(".en")

    @property
    def vocab_filename(self) -> str:
        return VOCAB_MULTILINGUAL if self.is_multilingual else VOCAB_ENGLISH


def _ggml(name: str, sha1: str, size_bytes: int) -> ModelSpec:
    filename = f"ggml-{name}.bin"
    return ModelSpec(
        logical_name=name,
        filename=filename,
        url=WHISPER_CPP_BASE_URL + filename,
        checksum=sha1,
        size_bytes=size_bytes,
        checksum_algorithm="sha1",
    )


DEFAULT_MODELS: dict[str, ModelSpec] = {
    PRIMARY_MODEL: ModelSpec(
        logical_name=PRIMARY_MODEL,
        filename="whisper-large-v3.tflite",
        url=(
            "https://huggingface.co/cik009/whisper/resolve/"
            "43804efaf0605cc62d7f132fa94901731733c75b/whisper-large-v3.tflite"
        ),
        checksum="b346515bc5e3d8178680577da0cc2d99",
        size_bytes=1_556_766_936,
    ),
    "tiny": _ggml("tiny", "bd577a113a864445d4c299885e0cb97d4ba92b5f", 77_691_713),
    "medium": _ggml("medium", "fd9727b6e1217c2f614027e6336b9ee0d4567b8a", 1_533_763_059),
    "large-v3": _ggml("large-v3", "ad82bf6a9043ceed055076d0c39101a3aaa8c4e3", 3_095_033_483),
}


def _spec_from_mapping(name: str, raw: Mapping[str, Any], base: Optional[ModelSpec]) -> ModelSpec:
    def pick(key: str, fallback: Any) -> Any:
        value = raw.get(key)
        return fallback if value in (None, "") else value

    algorithm = str(pick("checksum_algorithm", base.checksum_algorithm if base else "md5")).lower()
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise ValueError(f"{name}: unsupported checksum algorithm {algorithm!r}")
    filename = str(pick("filename", base.filename if base else ""))
    url = str(pick("url", base.url if base else ""))
    checksum = str(pick("checksum", base.checksum if base else "")).lower()
    if not filename or not url or not checksum:
        raise ValueError(f"{name}: filename, url and checksum are required")
    return ModelSpec(
        logical_name=name,
        filename=filename,
        url=url,
        checksum=checksum,
        size_bytes=int(pick("size_bytes", base.size_bytes if base else 0)),
        checksum_algorithm=algorithm,
    )


def load_catalog(overrides: Optional[Mapping[str, Any]] = None) -> dict[str, ModelSpec]:
    """Merge user-supplied entries over the built-in catalog.

    Invalid override entries are logged and skipped.
    """
    catalog = dict(DEFAULT_MODELS)
    for name, raw in (overrides or {}).items():
        if not isinstance(raw, Mapping):
            logger.warning("Ignoring catalog entry %r: expected an object", name)
            continue
        try:
            catalog[name] = _spec_from_mapping(name, raw, catalog.get(name))
        except (TypeError, ValueError) as exc:
            logger.warning("Ignoring catalog entry %r: %s", name, exc)
    return catalog


def build_asset(spec: ModelSpec, models_dir: Path) -> ModelAsset:
    return ModelAsset(
        logical_name=spec.logical_name,
        local_path=Path(models_dir) / spec.filename,
        expected_checksum=spec.checksum,
        expected_size_bytes=spec.size_bytes,
        url=spec.url,
        checksum_algorithm=spec.checksum_algorithm,
    )


def vocab_path_for(spec: ModelSpec, models_dir: Path) -> Path:
    return Path(models_dir) / spec.vocab_filename
