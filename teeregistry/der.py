"""Bounds-checked helpers for reading raw DER certificate bytes."""

from __future__ import annotations


class CertificateFormatError(ValueError):
    """Raised when raw certificate bytes do not have the expected layout."""


def safe_index(data: bytes, idx: int) -> int:
    """Return the byte at ``idx``, raising instead of running off either end."""
    if not 0 <= idx < len(data):
        raise CertificateFormatError("Index out of bounds")
    return data[idx]


def length_from_raw_data(data: bytes, offset: int) -> tuple[int, int]:
    """Read a DER length field starting at ``offset``.

    Returns ``(length, offset)``. For the two-byte long form the returned
    offset points at the last length byte, so the content starts one byte
    after it in both forms.
    """
    length = safe_index(data, offset)
    if length > 0x80:
        length = safe_index(data, offset + 1) * 0x100 + safe_index(data, offset + 2)
        offset += 2
    return length, offset