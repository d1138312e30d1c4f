"""
Fingerprinter
=============
Deterministic content digests for documents.

A fingerprint is the SHA-256 digest of the raw document bytes, rendered as
64 lowercase hex characters. The 0x-prefixed form is what goes on the ledger
(bytes32 argument or raw transaction payload).
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
from pathlib import Path
from typing import Union

import fitz  # PyMuPDF

from .errors import InputError

logger = logging.getLogger(__name__)

FINGERPRINT_LENGTH = 64
_CHUNK_SIZE = 8192

_HEX_PATTERN = re.compile(r"^(?:0x)?([0-9a-f]{64})$", re.IGNORECASE)


def fingerprint(data: Union[bytes, bytearray, memoryview]) -> str:
    """
    Compute the fingerprint of an in-memory document.

    Raises:
        InputError: If data is not a byte sequence or is empty.
    """
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise InputError(
            f"Document must be bytes, got {type(data).__name__}"
        )
    if len(data) == 0:
        raise InputError("Cannot fingerprint an empty document")
    return hashlib.sha256(data).hexdigest()


def fingerprint_file(path: Union[str, os.PathLike], require_pdf: bool = True) -> str:
    """
    Compute the fingerprint of a document on disk, streaming in chunks.

    Args:
        path: Path to the document.
        require_pdf: Reject files that PyMuPDF cannot open as a PDF.

    Raises:
        InputError: If the file is missing, unreadable, empty or not a PDF.
    """
    path = Path(path)
    if not path.is_file():
        raise InputError(f"Document not found: {path}")

    if require_pdf:
        ensure_pdf(path)

    sha256 = hashlib.sha256()
    size = 0
    try:
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
                sha256.update(chunk)
                size += len(chunk)
    except OSError as e:
        raise InputError(f"Cannot read document {path}: {e}") from e

    if size == 0:
        raise InputError(f"Cannot fingerprint an empty document: {path}")

    digest = sha256.hexdigest()
    logger.debug(f"Fingerprint of {path.name}: {digest}")
    return digest


def fingerprint_pdf(data: bytes) -> str:
    """Fingerprint an in-memory upload, rejecting anything that is not a PDF."""
    digest = fingerprint(data)
    try:
        with fitz.open(stream=bytes(data), filetype="pdf") as doc:
            if not doc.is_pdf:
                raise InputError("Upload is not a PDF document")
    except InputError:
        raise
    except Exception as e:
        raise InputError(f"Upload is not a readable PDF document ({e})") from e
    return digest


def ensure_pdf(path: Union[str, os.PathLike]) -> None:
    """Raise InputError unless the file opens as a PDF."""
    try:
        with fitz.open(str(path)) as doc:
            if not doc.is_pdf:
                raise InputError(f"Not a PDF document: {path}")
    except InputError:
        raise
    except Exception as e:
        raise InputError(f"Not a readable PDF document: {path} ({e})") from e


def normalize_fingerprint(value: str) -> str:
    """
    Canonicalize a fingerprint to bare lowercase hex.

    Accepts bare or 0x-prefixed hex of any case.

    Raises:
        InputError: If the value is not a 256-bit hex digest.
    """
    if not isinstance(value, str):
        raise InputError(
            f"Fingerprint must be a string, got {type(value).__name__}"
        )
    match = _HEX_PATTERN.match(value.strip())
    if not match:
        raise InputError(f"Malformed fingerprint: {value!r}")
    return match.group(1).lower()


def is_fingerprint(value: str) -> bool:
    """Whether value looks like a fingerprint (bare or 0x-prefixed)."""
    return isinstance(value, str) and bool(_HEX_PATTERN.match(value.strip()))


def prefixed(fp: str) -> str:
    """0x-prefixed form of a fingerprint, as written to the ledger."""
    return "0x" + normalize_fingerprint(fp)


def to_bytes32(fp: str) -> bytes:
    """Raw 32-byte form of a fingerprint for ABI encoding."""
    return bytes.fromhex(normalize_fingerprint(fp))


def inspect_pdf(path: Union[str, os.PathLike]) -> dict:
    """
    Collect basic information about a PDF together with its fingerprint.

    Returns:
        Dict with file name, size, page count, document metadata and
        fingerprint.
    """
    path = Path(path)
    digest = fingerprint_file(path)

    with fitz.open(str(path)) as doc:
        metadata = {
            key: value
            for key, value in (doc.metadata or {}).items()
            if key in ("title", "author", "subject", "creator", "producer")
            and value
        }
        page_count = doc.page_count

    return {
        "file": path.name,
        "size_bytes": path.stat().st_size,
        "pages": page_count,
        "metadata": metadata,
        "fingerprint": digest,
    }
