"""Runtime configuration profiles for reconlib."""
from __future__ import annotations

import os
from typing import Dict

PROFILE = os.getenv("RECONLIB_PROFILE", "default")

PROFILES: Dict[str, Dict[str, str]] = {
    "default": {
        "RECONLIB_RPC_URL": "http://localhost:38083",
        "RECONLIB_RPC_TIMEOUT": "120",
        "RECONLIB_MAX_QUERY_RETRIES": "3",
        "RECONLIB_CURRENCY_UNIT": "XMR",
        "RECONLIB_ATOMIC_UNITS": "12",
    },
    "debug": {
        "RECONLIB_DEBUG": "1",
        "RECONLIB_RPC_TIMEOUT": "30",
    },
    "strict": {
        "RECONLIB_MAX_QUERY_RETRIES": "1",
    },
}


def apply_profile() -> None:
    profile = os.getenv("RECONLIB_PROFILE", PROFILE)
    if not profile:
        return
    settings = PROFILES.get(profile)
    if not settings:
        return
    for key, value in settings.items():
        os.environ.setdefault(key, value)


def get_int(name: str, default: int) -> int:
    """Read an integer setting, falling back to ``default`` when unset or invalid"""
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def is_debug() -> bool:
    return os.getenv("RECONLIB_DEBUG", "0") == "1"
