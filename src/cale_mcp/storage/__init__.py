"""Storage abstractions for Cale."""

from .jsonfile import JsonFileError, read_json, remove_file, write_json_atomic

__all__ = [
    "JsonFileError",
    "read_json",
    "remove_file",
    "write_json_atomic",
]
