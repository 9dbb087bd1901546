from __future__ import annotations

import base64
from datetime import datetime
from pathlib import Path
from typing import Optional


def ensure_dir(path: Path) -> Path:
    """Ensure directory exists and return the normalized path."""
    p = Path(path).expanduser()
    p.mkdir(parents=True, exist_ok=True)
    return p


def get_data_path(data_dir: Optional[str] = None) -> Path:
    """Get parley data directory (~/.parley unless overridden)."""
    if data_dir:
        return ensure_dir(Path(data_dir))
    return ensure_dir(Path.home() / ".parley")


def get_threads_path(data_dir: Optional[str] = None) -> Path:
    return ensure_dir(get_data_path(data_dir) / "threads")


def encode_key(key: str) -> str:
    raw = str(key).encode("utf-8")
    encoded = base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")
    return encoded or "thread"


def today_date() -> str:
    return datetime.now().strftime("%Y-%m-%d")


def timestamp() -> str:
    return datetime.now().isoformat()


def truncate_string(text: str, max_len: int, suffix: str = "...") -> str:
    value = str(text or "")
    if len(value) <= max_len:
        return value
    return value[: max(0, max_len - len(suffix))] + suffix
