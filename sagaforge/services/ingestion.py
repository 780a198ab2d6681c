"""Helpers for turning uploaded lore files into form text."""

from __future__ import annotations

from typing import Iterable, Optional

from werkzeug.datastructures import FileStorage

ALLOWED_EXTENSIONS = ("txt", "md", "markdown")


class IngestionError(RuntimeError):
    """Raised when an uploaded file cannot be read as text."""


def merge_uploaded_text(typed_text: Optional[str], uploads: Iterable[Optional[FileStorage]]) -> str:
    """Append the text of each upload to ``typed_text``, separated by blank lines."""

    parts: list[str] = []
    cleaned = (typed_text or "").strip()
    if cleaned:
        parts.append(cleaned)

    for upload in uploads or ():
        if not isinstance(upload, FileStorage) or not upload.filename:
            continue
        content = _read_upload(upload).strip()
        if content:
            parts.append(content)

    return "\n\n".join(parts)


def _read_upload(upload: FileStorage) -> str:
    raw = upload.read()
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise IngestionError(f"'{upload.filename}' is not a UTF-8 text file.") from exc


__all__ = ["ALLOWED_EXTENSIONS", "IngestionError", "merge_uploaded_text"]
