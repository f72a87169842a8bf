"""File format allow-list for batch uploads.

Defines the document kinds the pipeline accepts, keyed by extension, and the
executable/installer extensions that are always refused. Shared by the task
manager, the upload API and the default parser.
"""

import os
from typing import Dict, List, Optional

SUPPORTED_FORMATS: Dict[str, List[str]] = {
    "excel": [".xlsx", ".xls"],
    "pdf": [".pdf"],
    "word": [".docx", ".doc"],
    "text": [".txt", ".md"],
    "image": [".jpg", ".jpeg", ".png", ".gif", ".bmp"],
}

DANGEROUS_EXTENSIONS = frozenset({
    ".exe", ".bat", ".cmd", ".com", ".scr", ".pif",
    ".vbs", ".js", ".jar", ".app", ".deb", ".pkg",
    ".dmg", ".iso", ".msi", ".run", ".sh",
})

_KIND_BY_EXTENSION = {
    ext: kind for kind, extensions in SUPPORTED_FORMATS.items() for ext in extensions
}


def extension_of(filename: str) -> str:
    return os.path.splitext(filename or "")[1].lower()


def detect_kind(filename: str) -> Optional[str]:
    """Return the document kind ('pdf', 'word', ...) or None if unsupported."""
    return _KIND_BY_EXTENSION.get(extension_of(filename))


def is_supported(filename: str) -> bool:
    return detect_kind(filename) is not None


def is_safe(filename: str) -> bool:
    return extension_of(filename) not in DANGEROUS_EXTENSIONS


def supported_formats() -> List[Dict[str, str]]:
    return [
        {"type": kind, "extension": ext}
        for kind, extensions in SUPPORTED_FORMATS.items()
        for ext in extensions
    ]
