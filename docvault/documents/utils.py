"""
Path/identity helpers — pure functions, no state.

Size/date formatting, MIME inference, icon and thumbnail selection by
extension, path segment arithmetic, and revision version bumping.
"""

from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone
from typing import Optional, Tuple

from docvault.documents.models import PATH_SEPARATOR

MIME_TYPES = {
    # Images
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "svg": "image/svg+xml",
    "bmp": "image/bmp",
    "ico": "image/x-icon",
    "tif": "image/tiff",
    "tiff": "image/tiff",
    # Documents
    "pdf": "application/pdf",
    "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "xls": "application/vnd.ms-excel",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "ppt": "application/vnd.ms-powerpoint",
    "pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    # Text
    "txt": "text/plain",
    "csv": "text/csv",
    "html": "text/html",
    "htm": "text/html",
    "xml": "text/xml",
    "json": "application/json",
    "md": "text/markdown",
    # Engineering drawings
    "dwg": "application/acad",
    "dxf": "application/dxf",
    "dwf": "application/x-dwf",
    # Archives
    "zip": "application/zip",
    "rar": "application/x-rar-compressed",
    "tar": "application/x-tar",
    "gz": "application/gzip",
    # Audio
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "ogg": "audio/ogg",
    # Video
    "mp4": "video/mp4",
    "webm": "video/webm",
    "avi": "video/x-msvideo",
    "mov": "video/quicktime",
    "wmv": "video/x-ms-wmv",
}

DEFAULT_CONTENT_TYPE = "application/octet-stream"

_ICON_GROUPS = {
    "pdf": ("pdf",),
    "code": ("dwg", "dxf", "dwf"),
    "image": ("jpg", "jpeg", "png", "gif", "bmp", "svg"),
    "document": ("doc", "docx", "txt", "rtf"),
    "table": ("xls", "xlsx", "csv"),
    "presentation": ("ppt", "pptx"),
    "archive": ("zip", "rar", "7z"),
    "audio": ("mp3", "wav", "ogg"),
    "video": ("mp4", "avi", "mov"),
}
ICONS = {ext: icon for icon, exts in _ICON_GROUPS.items() for ext in exts}

_THUMBNAIL_BASE = "https://images.unsplash.com/photo-{}?w=500&q=80"
THUMBNAILS = {
    "pdf": _THUMBNAIL_BASE.format("1581291518633-83b4ebd1d83e"),
    "code": _THUMBNAIL_BASE.format("1581094794329-c8112a89af12"),
    "image": _THUMBNAIL_BASE.format("1575936123452-b67c3203c357"),
    "document": _THUMBNAIL_BASE.format("1618077360395-f3068be8e001"),
    "table": _THUMBNAIL_BASE.format("1586282391129-76a6df230234"),
    "presentation": _THUMBNAIL_BASE.format("1590593162201-f67611a18b87"),
    "archive": _THUMBNAIL_BASE.format("1527689368864-3a821dbccc34"),
}

SIZE_UNITS = ["Bytes", "KB", "MB", "GB", "TB"]

INITIAL_VERSION = "1.0"
_VERSION_RE = re.compile(r"^(\d+)\.(\d+)\Z", re.ASCII)


def new_id() -> str:
    return str(uuid.uuid4())


def file_extension(file_name: str) -> str:
    """Lowercase extension without the dot; "" when the name has none."""
    base = file_name.rsplit(PATH_SEPARATOR, 1)[-1]
    if "." not in base.strip("."):
        return ""
    return base.rsplit(".", 1)[-1].lower()


def get_mime_type(file_name: str) -> Optional[str]:
    """MIME type from the file extension, or None if not recognised."""
    if not file_name:
        return None
    ext = file_extension(file_name)
    return MIME_TYPES.get(ext) if ext else None


def get_file_icon(file_type: str) -> str:
    return ICONS.get((file_type or "").lower(), "document")


def get_file_thumbnail(file_type: str) -> str:
    """Preview image chosen by extension; unknown types fall back to the pdf preview."""
    icon = ICONS.get((file_type or "").lower())
    return THUMBNAILS.get(icon, THUMBNAILS["pdf"])


def format_file_size(num_bytes: int) -> str:
    """Human-readable size in base 1024, e.g. ``"1.5 KB"``."""
    if num_bytes <= 0:
        return "0 Bytes"
    value = float(num_bytes)
    i = 0
    while value >= 1024 and i < len(SIZE_UNITS) - 1:
        value /= 1024
        i += 1
    return f"{round(value, 2):g} {SIZE_UNITS[i]}"


def format_date(value: datetime, now: Optional[datetime] = None) -> str:
    """
    Relative date label: Today, Yesterday, N days ago, N week(s) ago,
    otherwise the ISO date.
    """
    now = now or datetime.now(timezone.utc)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    diff_days = abs(now - value).days
    if diff_days == 0:
        return "Today"
    if diff_days == 1:
        return "Yesterday"
    if diff_days < 7:
        return f"{diff_days} days ago"
    if diff_days < 30:
        weeks = diff_days // 7
        return f"{weeks} {'week' if weeks == 1 else 'weeks'} ago"
    return value.date().isoformat()


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

def join_path(parent_path: str, name: str) -> str:
    return f"{parent_path}{PATH_SEPARATOR}{name}"


def root_path(root_name: str) -> str:
    return f"{PATH_SEPARATOR}{root_name}"


def parent_path_of(path: str) -> str:
    """Everything before the trailing segment ("" for a root path)."""
    return path.rsplit(PATH_SEPARATOR, 1)[0]


def replace_trailing_segment(path: str, new_name: str) -> str:
    return join_path(parent_path_of(path), new_name)


def rebase_path(path: str, old_prefix: str, new_prefix: str) -> Optional[str]:
    """
    Swap ``old_prefix`` for ``new_prefix`` when ``path`` lies strictly below
    it; None otherwise. Only the leading prefix is replaced.
    """
    marker = old_prefix + PATH_SEPARATOR
    if not path.startswith(marker):
        return None
    return new_prefix + path[len(old_prefix):]


def validate_name(name: Optional[str]) -> Optional[str]:
    """Return a reason the name is unusable, or None when it is fine."""
    if name is None or not name.strip():
        return "name must not be empty"
    if PATH_SEPARATOR in name:
        return f"name must not contain '{PATH_SEPARATOR}'"
    if name in (".", ".."):
        return "name must not be '.' or '..'"
    if len(name) > 255:
        return "name must be at most 255 characters"
    return None


# ---------------------------------------------------------------------------
# Revision versions
# ---------------------------------------------------------------------------

def parse_version(version: str) -> Optional[Tuple[int, int]]:
    """``"major.minor"`` → (major, minor); None unless exactly two integers."""
    match = _VERSION_RE.match(version or "")
    if match is None:
        return None
    return int(match.group(1)), int(match.group(2))


def next_version(previous: Optional[str]) -> str:
    """
    Version following ``previous``: the minor part increments
    (``1.0 → 1.1``). Unparseable versions get ``.1`` appended.
    """
    if not previous:
        return INITIAL_VERSION
    parsed = parse_version(previous)
    if parsed is None:
        return f"{previous}.1"
    major, minor = parsed
    return f"{major}.{minor + 1}"
