"""
Content-type compatibility for the `subject_content.content_type` column.

The column only accepts STORED_CONTENT_TYPES. Any other type is stored as
FALLBACK_CONTENT_TYPE and the original tag is kept as a `[TIPO: X]` header
in front of the body, which `unwrap_content` strips again on the way out.
"""
import re
from typing import Optional, Tuple

STORED_CONTENT_TYPES = ("content", "document", "assignment", "video", "link", "text")
FALLBACK_CONTENT_TYPE = "assignment"

_TYPE_HEADER = re.compile(r"^\[TIPO: (.*?)\]\n\n(.*)", re.DOTALL)

LABELS = {
    "document": "Documento",
    "content": "Contenido",
    "assignment": "Tarea",
    "video": "Video",
    "link": "Enlace",
    "text": "Texto",
}


def wrap_content(content_type: str, content: Optional[str]) -> Tuple[str, str]:
    """Return the (stored_type, stored_body) pair for a requested type."""
    requested = (content_type or "content").strip().lower()
    body = content or ""
    if requested in STORED_CONTENT_TYPES:
        return requested, body
    return FALLBACK_CONTENT_TYPE, f"[TIPO: {requested.upper()}]\n\n{body}"


def unwrap_content(stored_type: str, content: Optional[str]) -> Tuple[str, str]:
    """Return the (original_type, clean_body) pair for a stored row."""
    body = content or ""
    match = _TYPE_HEADER.match(body)
    if match:
        return match.group(1).lower(), match.group(2)
    return stored_type, body


def content_type_label(content_type: str) -> str:
    return LABELS.get(content_type, "Contenido")
