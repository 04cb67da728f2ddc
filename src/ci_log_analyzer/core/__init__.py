"""Core: sanitizing, indexing and extracting build logs."""

from __future__ import annotations

from .extract import ExtractConfig, IgnorePatterns, extract, extract_indices, score
from .index import Index, IndexFormatError, IndexNotFoundError, load, load_or_create, save
from .models import LogLine, Sanitized, SanitizedLine
from .sanitize import clean, split_lines, strip_timestamp
from .storage import FileSystemStorage, IndexStorage, S3Storage, resolve_storage

__all__ = [
    "ExtractConfig",
    "FileSystemStorage",
    "IgnorePatterns",
    "Index",
    "IndexFormatError",
    "IndexNotFoundError",
    "IndexStorage",
    "LogLine",
    "S3Storage",
    "Sanitized",
    "SanitizedLine",
    "clean",
    "extract",
    "extract_indices",
    "load",
    "load_or_create",
    "resolve_storage",
    "save",
    "score",
    "split_lines",
    "strip_timestamp",
]
