import os
from typing import List, Optional, Sequence


def parse_bool_env(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    key = str(value).strip().lower()
    if key in {"1", "true", "yes", "y", "on"}:
        return True
    if key in {"0", "false", "no", "n", "off"}:
        return False
    return default


def parse_float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def parse_int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def parse_str_env(name: str, default: str = "") -> str:
    value = os.getenv(name)
    if value is None:
        return default
    return str(value).strip() or default


def parse_str_list_env(name: str, default: Optional[Sequence[str]] = None, sep: str = ",") -> List[str]:
    """Split a separated variable into unique, non-empty items (order kept)."""
    value = os.getenv(name)
    if value is None:
        return [str(item) for item in (default or [])]
    items: List[str] = []
    seen = set()
    for raw in str(value).split(sep):
        item = raw.strip()
        if not item or item in seen:
            continue
        items.append(item)
        seen.add(item)
    return items
