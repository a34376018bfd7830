"""Shared settings read from environment variables."""

import os
from typing import Optional

__all__ = [
    "ENCODING",
    "PROGRAM_NAME",
    "PROGRAM_VERSION",
    "LOG_LEVEL",
    "SNIFF_SIZE",
]

DEFAULT_ENCODING = "cp437"  # PC8, mandated by the SIE 4 specification
DEFAULT_SNIFF_SIZE = 256


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


ENCODING = _env_str("SIE_ENCODING", DEFAULT_ENCODING)
PROGRAM_NAME = _env_str("SIE_PROGRAM_NAME", "sie-parser")
# Empty means "use the library version"
PROGRAM_VERSION = _env_str("SIE_PROGRAM_VERSION", "")
LOG_LEVEL = _env_str("SIE_LOG_LEVEL", "WARNING").upper()
SNIFF_SIZE = _env_int("SIE_SNIFF_SIZE") or DEFAULT_SNIFF_SIZE
