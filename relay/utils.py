"""Utility helper functions for the relay."""

import os
import re
from datetime import datetime, timezone

from common.constants import DEFAULT_FILENAME, MAX_FILENAME_LENGTH


_INVALID_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f\x7f]')

_SIZE_UNITS = ["B", "KB", "MB", "GB", "TB"]


def utc_now() -> datetime:
    """
    Get the current time as a timezone-aware UTC datetime.

    Returns:
        Current UTC datetime
    """
    return datetime.now(timezone.utc)


def sanitize_filename(file_name: str) -> str:
    """
    Reduce a client supplied filename to a safe display name.

    Strips directory components (both separators), characters that are
    invalid on common filesystems, and limits the length.

    Args:
        file_name: Raw filename from the uploader

    Returns:
        Sanitized filename, or "file" if nothing usable remains
    """
    if not file_name or not file_name.strip():
        return DEFAULT_FILENAME

    file_name = os.path.basename(file_name.replace("\\", "/"))
    file_name = _INVALID_FILENAME_CHARS.sub("", file_name)

    if len(file_name) > MAX_FILENAME_LENGTH:
        file_name = file_name[:MAX_FILENAME_LENGTH]

    if not file_name.strip() or file_name in (".", ".."):
        return DEFAULT_FILENAME
    return file_name


def format_size(size_bytes: int) -> str:
    """
    Format a byte count for humans.

    Args:
        size_bytes: Size in bytes

    Returns:
        String like "1.5 MB" (at most two decimals)
    """
    size = float(size_bytes)
    order = 0
    while size >= 1024 and order < len(_SIZE_UNITS) - 1:
        order += 1
        size /= 1024

    text = f"{size:.2f}".rstrip("0").rstrip(".")
    return f"{text} {_SIZE_UNITS[order]}"


def parse_bool_header(value) -> bool:
    """Interpret a "true"/"false" header value (case-insensitive)."""
    return value is not None and value.strip().lower() == "true"


def parse_size_header(value) -> int:
    """Interpret a declared size header; unknown or malformed sizes become 0."""
    try:
        size = int(value)
    except (TypeError, ValueError):
        return 0
    return size if size >= 0 else 0
