"""File validation, filename sanitization and text extraction.

The detected type always comes from the bytes themselves. Client-supplied
content-type headers are never consulted.
"""

import io
import logging
import os
import re
from uuid import UUID, uuid4

from lexvault.errors import ErrorKind, ServiceError
from lexvault.models import FILE_KIND_MIME_TYPES, FileKind

logger = logging.getLogger(__name__)

SNIFF_LENGTH = 16
MAX_FILENAME_BYTES = 200
DEFAULT_FILENAME = "unnamed_file"

# (signature, detected mime, accepted kind or None when rejected)
SIGNATURES: list[tuple[bytes, str, FileKind | None]] = [
    (b"%PDF-", "application/pdf", FileKind.PDF),
    (b"MZ", "application/x-msdownload", None),
    (b"\x7fELF", "application/x-executable", None),
    (b"PK\x03\x04", "application/zip", None),
    (b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1", "application/x-ole-storage", None),
    (b"\x89PNG\r\n\x1a\n", "image/png", None),
    (b"\xff\xd8\xff", "image/jpeg", None),
    (b"GIF87a", "image/gif", None),
    (b"GIF89a", "image/gif", None),
    (b"\x1f\x8b", "application/gzip", None),
    (b"{\\rtf", "application/rtf", None),
]

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_UNSAFE_CHARS = re.compile(r"""[<>:"/\\|?*`$;&']""")


def sniff_mime_type(data: bytes) -> tuple[str, FileKind | None] | None:
    """Match the byte prefix against known signatures."""
    prefix = data[:SNIFF_LENGTH]
    for signature, mime, kind in SIGNATURES:
        if prefix.startswith(signature):
            return mime, kind
    return None


def _is_utf8_text(data: bytes) -> bool:
    try:
        data.decode("utf-8", errors="strict")
    except UnicodeDecodeError:
        return False
    return True


def validate_file_type(data: bytes, claimed_filename: str) -> tuple[FileKind, str]:
    """
    Determine the true type of an upload.

    Returns:
        Tuple of (file_kind, mime_type)

    Raises:
        ServiceError(UNSUPPORTED_TYPE) when the content is not an accepted type.
    """
    sniffed = sniff_mime_type(data)
    if sniffed is not None:
        mime, kind = sniffed
        if kind is None:
            raise ServiceError(
                ErrorKind.UNSUPPORTED_TYPE,
                f'File type "{mime}" is not supported. Allowed types: '
                f"{', '.join(FILE_KIND_MIME_TYPES.values())}",
                detected_type=mime,
            )
        return kind, mime

    # Plain text carries no magic bytes, so fall back to the extension,
    # but only for content that really is text.
    extension = os.path.splitext(claimed_filename)[1].lower().lstrip(".")
    if extension == FileKind.TXT.value and _is_utf8_text(data):
        return FileKind.TXT, FILE_KIND_MIME_TYPES[FileKind.TXT]

    raise ServiceError(
        ErrorKind.UNSUPPORTED_TYPE,
        f"Unable to determine file type. Allowed extensions: "
        f"{', '.join(kind.value for kind in FileKind)}",
    )


def _truncate_utf8(text: str, max_bytes: int) -> str:
    encoded = text.encode("utf-8")
    if len(encoded) <= max_bytes:
        return text
    return encoded[:max_bytes].decode("utf-8", errors="ignore")


def sanitize_filename(name: str) -> str:
    """Make a client filename safe for display and audit. Never used as a storage key."""
    sanitized = re.split(r"[/\\]", name)[-1]
    sanitized = _CONTROL_CHARS.sub("", sanitized)
    # Collapse dot runs so no ".." survives while the extension dot does.
    sanitized = re.sub(r"\.{2,}", ".", sanitized)
    sanitized = _UNSAFE_CHARS.sub("_", sanitized)
    sanitized = re.sub(r"_{2,}", "_", sanitized)
    sanitized = re.sub(r"\s+", " ", sanitized).strip()

    if len(sanitized.encode("utf-8")) > MAX_FILENAME_BYTES:
        stem, ext = os.path.splitext(sanitized)
        if len(ext.encode("utf-8")) >= MAX_FILENAME_BYTES:
            ext = ""
        stem = _truncate_utf8(stem, MAX_FILENAME_BYTES - len(ext.encode("utf-8")))
        sanitized = stem + ext

    if not sanitized or sanitized in (".", ".."):
        return DEFAULT_FILENAME
    return sanitized


def generate_blob_key(owner_id: UUID, kind: FileKind) -> str:
    """Random storage key. Never derived from user input."""
    return f"uploads/{owner_id}/{uuid4()}.{kind.value}"


def extract_text_plain(data: bytes) -> str:
    """Decode plain text content. Uploads are validated as strict UTF-8."""
    return data.decode("utf-8")


def extract_pdf(data: bytes) -> str:
    """Extract content from a PDF using pdfminer.six."""
    from pdfminer.high_level import extract_text

    return extract_text(io.BytesIO(data))


EXTRACTORS = {
    FileKind.PDF: extract_pdf,
    FileKind.TXT: extract_text_plain,
}


def extract_text(data: bytes, kind: FileKind) -> str | None:
    """Extract searchable text. Extraction failures never fail an upload."""
    try:
        text = EXTRACTORS[kind](data)
    except Exception as e:
        logger.warning(f"Failed to extract {kind.value} text: {e}")
        return None
    # Postgres text columns reject NUL bytes.
    return text.replace("\x00", "")
