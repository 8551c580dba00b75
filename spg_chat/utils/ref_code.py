"""
Reference codes: the short, shareable identity of a conversation.

Format is PREFIX-XXXXX, e.g. SPG-7K2QX, with the suffix drawn from A-Z0-9.
Input is case-insensitive; everything is normalised to uppercase before use.
"""

from __future__ import annotations

import re
import secrets
from functools import lru_cache

from spg_chat.constants.chat import REF_CODE_ALPHABET, REF_CODE_LENGTH, REF_CODE_PREFIX


def generate_ref_code(prefix: str = REF_CODE_PREFIX, length: int = REF_CODE_LENGTH) -> str:
    suffix = "".join(secrets.choice(REF_CODE_ALPHABET) for _ in range(length))
    return f"{prefix}-{suffix}"


def normalize_ref_code(raw: str) -> str:
    return (raw or "").strip().upper()


@lru_cache(maxsize=8)
def _pattern(prefix: str, length: int) -> re.Pattern[str]:
    return re.compile(rf"^{re.escape(prefix)}-[A-Z0-9]{{{length}}}$")


def is_valid_ref_code(
    code: str, prefix: str = REF_CODE_PREFIX, length: int = REF_CODE_LENGTH
) -> bool:
    return bool(_pattern(prefix, length).match(code or ""))
