"""Utility helpers for parley agent subsystems."""

from .helpers import (
    encode_key,
    ensure_dir,
    get_data_path,
    get_threads_path,
    timestamp,
    today_date,
    truncate_string,
)

__all__ = [
    "encode_key",
    "ensure_dir",
    "get_data_path",
    "get_threads_path",
    "timestamp",
    "today_date",
    "truncate_string",
]
