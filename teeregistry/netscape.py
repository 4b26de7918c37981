"""Extraction of the IAS payload and the ephemeral key from a raw certificate."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass

from .der import CertificateFormatError, length_from_raw_data

NS_CMT_OID = bytes([0x06, 0x09, 0x60, 0x86, 0x48, 0x01, 0x86, 0xF8, 0x42, 0x01, 0x0D])
PRIME256V1_OID = bytes([0x06, 0x08, 0x2A, 0x86, 0x48, 0xCE, 0x3D, 0x03, 0x01, 0x07])

_SEPARATOR = b"|"


def _find(data: bytes, needle: bytes, message: str) -> int:
    position = data.find(needle)
    if position < 0:
        raise CertificateFormatError(message)
    return position


def _slice(data: bytes, start: int, end: int) -> bytes:
    if start > end or end > len(data):
        raise CertificateFormatError("Index out of bounds")
    return data[start:end]


def _b64decode(data: bytes, message: str) -> bytes:
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise CertificateFormatError(message) from exc


@dataclass(frozen=True)
class NetscapeComment:
    """The attestation report, its signature and the signing certificate."""

    attestation_raw: bytes
    sig: bytes
    sig_cert: bytes

    @classmethod
    def from_cert(cls, cert_der: bytes) -> NetscapeComment:
        """Locate the Netscape comment extension and split its payload."""
        cert_der = bytes(cert_der)
        offset = _find(cert_der, NS_CMT_OID, "Certificate does not contain 'ns_cmt_oid'")
        offset += len(NS_CMT_OID) + 1  # OID plus the octet-string tag
        length, offset = length_from_raw_data(cert_der, offset)
        offset += 1
        parts = _slice(cert_der, offset, offset + length).split(_SEPARATOR)
        if len(parts) != 3:
            raise CertificateFormatError("Invalid netscape payload")
        attestation_raw, sig_b64, cert_b64 = parts
        return cls(
            attestation_raw=attestation_raw,
            sig=_b64decode(sig_b64, "Signature Decoding Error"),
            sig_cert=_b64decode(cert_b64, "Cert Decoding Error"),
        )


@dataclass(frozen=True)
class EphemeralKey:
    """The uncompressed prime256v1 point of the certificate's subject key."""

    public_key: bytes

    @classmethod
    def from_cert(cls, cert_der: bytes) -> EphemeralKey:
        """Locate the prime256v1 key and strip the unused-bits and point-format bytes."""
        cert_der = bytes(cert_der)
        offset = _find(cert_der, PRIME256V1_OID, "Certificate does not contain 'PRIME256V1_OID'")
        offset += len(PRIME256V1_OID) + 1  # OID plus the bit-string tag
        length, offset = length_from_raw_data(cert_der, offset)
        offset += 1
        return cls(public_key=_slice(cert_der, offset + 2, offset + length))