"""Post-processing applied to raw transcription text before delivery."""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Optional

from opencc import OpenCC

from models import PostProcessOptions, ScriptVariant

# Languages whose written form has a simplified/traditional split.
SCRIPT_CONVERTIBLE_LANGUAGES = frozenset({"zh", "yue"})

_CONVERSIONS = {
    ScriptVariant.SIMPLIFIED: "t2s",
    ScriptVariant.TRADITIONAL: "s2t",
}


def primary_language(tag: Optional[str]) -> str:
    """``"zh-TW"`` / ``"zh_Hant"`` / ``"ZH"`` -> ``"zh"``."""
    if not tag:
        return ""
    return re.split(r"[-_]", tag.strip(), maxsplit=1)[0].lower()


@lru_cache(maxsize=None)
def _converter(config: str) -> OpenCC:
    return OpenCC(config)


def convert_script(text: str, variant: ScriptVariant) -> str:
    config = _CONVERSIONS.get(variant)
    if config is None:
        return text
    return _converter(config).convert(text)


def post_process(
    raw_text: str,
    detected_language: Optional[str],
    options: PostProcessOptions = PostProcessOptions(),
) -> str:
    text = raw_text.strip()
    if not text:
        return text
    if primary_language(detected_language) not in SCRIPT_CONVERTIBLE_LANGUAGES:
        return text
    return convert_script(text, options.script_variant)
