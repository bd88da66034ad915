"""Shared utility helpers."""

from cr_batch.utils.paths import atomic_temp_path, write_json_atomically

__all__ = [
    "atomic_temp_path",
    "write_json_atomically",
]
