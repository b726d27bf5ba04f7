"""
Upload validation.

The media type is resolved from the filename extension first and the
declared content-type second; the client's header alone is never trusted
when the extension is known.
"""

import re
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import fitz  # PyMuPDF

from .errors import ErrorKind, GatewayError


logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 25 * 1024 * 1024
READ_CHUNK_BYTES = 1024 * 1024

# 100 base64 characters, the smallest payload worth sending as an image.
MIN_IMAGE_BYTES = 75

EXTENSION_MEDIA_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".pdf": "application/pdf",
}

CONTENT_TYPE_ALIASES = {
    "image/jpg": "image/jpeg",
}

SUPPORTED_MEDIA_TYPES = frozenset(EXTENSION_MEDIA_TYPES.values())


@dataclass
class UploadedDocument:
    data: bytes
    filename: str
    size: int
    media_type: str
    pages: Optional[int] = None

    @property
    def is_image(self) -> bool:
        return self.media_type.startswith("image/")

    @property
    def is_pdf(self) -> bool:
        return self.media_type == "application/pdf"


def safe_filename(name: str) -> str:
    """Strip path components and odd characters, for logging only."""
    name = Path(name or "").name
    return re.sub(r"[^a-zA-Z0-9._\- ]+", "", name).strip()[:180]


def resolve_media_type(filename: Optional[str], content_type: Optional[str]) -> Optional[str]:
    ext = Path((filename or "").lower()).suffix
    if ext in EXTENSION_MEDIA_TYPES:
        return EXTENSION_MEDIA_TYPES[ext]

    declared = (content_type or "").split(";", 1)[0].strip().lower()
    if not declared:
        return None
    return CONTENT_TYPE_ALIASES.get(declared, declared)


INVALID_PDF_MESSAGE = "Invalid PDF. Please ensure the document is not corrupted."


def count_pdf_pages(data: bytes) -> int:
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except (RuntimeError, ValueError) as exc:
        raise GatewayError(ErrorKind.INVALID_PAYLOAD, INVALID_PDF_MESSAGE) from exc
    try:
        pages = doc.page_count
    finally:
        doc.close()
    if pages < 1:
        raise GatewayError(ErrorKind.INVALID_PAYLOAD, INVALID_PDF_MESSAGE)
    return pages


def check_size(size: Optional[int]) -> None:
    if size is not None and size > MAX_UPLOAD_BYTES:
        raise GatewayError(ErrorKind.PAYLOAD_TOO_LARGE)


def validate_upload(
    data: bytes,
    filename: Optional[str],
    content_type: Optional[str],
    declared_size: Optional[int] = None,
) -> UploadedDocument:
    """
    Check size, type and plausibility of an uploaded document.

    Raises GatewayError with PAYLOAD_TOO_LARGE, UNSUPPORTED_MEDIA_TYPE or
    INVALID_PAYLOAD. The size ceiling applies regardless of media type.
    """
    size = len(data)
    check_size(max(size, declared_size or 0))

    media_type = resolve_media_type(filename, content_type)
    if not media_type or media_type not in SUPPORTED_MEDIA_TYPES:
        raise GatewayError(ErrorKind.UNSUPPORTED_MEDIA_TYPE)

    if size == 0:
        raise GatewayError(ErrorKind.INVALID_PAYLOAD)

    document = UploadedDocument(
        data=data,
        filename=filename or "upload",
        size=size,
        media_type=media_type,
    )

    # Coarse floor only: no decoder runs on image bytes.
    if document.is_image and size < MIN_IMAGE_BYTES:
        raise GatewayError(
            ErrorKind.INVALID_PAYLOAD,
            "Invalid image format. Please ensure the image is not corrupted "
            "and is in a supported format.",
        )

    if document.is_pdf:
        document.pages = count_pdf_pages(data)

    logger.info(
        "Validated upload %s size=%d type=%s",
        safe_filename(document.filename), size, media_type,
    )
    return document


async def read_upload(upload, limit: int = MAX_UPLOAD_BYTES) -> bytes:
    """
    Read an UploadFile in 1MB chunks, stopping as soon as the limit is
    crossed so an oversized body is never held in full.
    """
    buf = bytearray()
    while True:
        chunk = await upload.read(READ_CHUNK_BYTES)
        if not chunk:
            break
        buf.extend(chunk)
        if len(buf) > limit:
            raise GatewayError(ErrorKind.PAYLOAD_TOO_LARGE)
    return bytes(buf)
