"""Parsing and verification of IAS remote-attestation reports."""

from __future__ import annotations

import base64
import binascii
import calendar
import functools
import json
import re
import struct
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.x509.oid import ExtendedKeyUsageOID

from .der import CertificateFormatError
from .netscape import NetscapeComment

SGX_FLAGS_DEBUG = 0x0000000000000002

# Hard-coded point in time at which the IAS signing certificate is checked.
IAS_VALIDATION_TIME = 1573419050

_QUOTE_HEADER = struct.Struct("<HHIHHI32s")
_REPORT_BODY = struct.Struct("<16s4s12s16sQQ32s32s32s32s64sHHH42s16s64s")
QUOTE_SIZE = _QUOTE_HEADER.size + _REPORT_BODY.size

_TIMESTAMP_RE = re.compile(r"(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.\d+)?", re.ASCII)

_SUPPORTED_CHAIN_HASHES = (hashes.SHA256, hashes.SHA384, hashes.SHA512)

_IAS_ROOT_PEM = b"""-----BEGIN CERTIFICATE-----
MIIFSzCCA7OgAwIBAgIJANEHdl0yo7CUMA0GCSqGSIb3DQEBCwUAMH4xCzAJBgNV
BAYTAlVTMQswCQYDVQQIDAJDQTEUMBIGA1UEBwwLU2FudGEgQ2xhcmExGjAYBgNV
BAoMEUludGVsIENvcnBvcmF0aW9uMTAwLgYDVQQDDCdJbnRlbCBTR1ggQXR0ZXN0
YXRpb24gUmVwb3J0IFNpZ25pbmcgQ0EwIBcNMTYxMTE0MTUzNzMxWhgPMjA0OTEy
MzEyMzU5NTlaMH4xCzAJBgNVBAYTAlVTMQswCQYDVQQIDAJDQTEUMBIGA1UEBwwL
U2FudGEgQ2xhcmExGjAYBgNVBAoMEUludGVsIENvcnBvcmF0aW9uMTAwLgYDVQQD
DCdJbnRlbCBTR1ggQXR0ZXN0YXRpb24gUmVwb3J0IFNpZ25pbmcgQ0EwggGiMA0G
CSqGSIb3DQEBAQUAA4IBjwAwggGKAoIBgQCfPGR+tXc8u1EtJzLA10Feu1Wg+p7e
LmSRmeaCHbkQ1TF3Nwl3RmpqXkeGzNLd69QUnWovYyVSndEMyYc3sHecGgfinEeh
rgBJSEdsSJ9FpaFdesjsxqzGRa20PYdnnfWcCTvFoulpbFR4VBuXnnVLVzkUvlXT
L/TAnd8nIZk0zZkFJ7P5LtePvykkar7LcSQO85wtcQe0R1Raf/sQ6wYKaKmFgCGe
NpEJUmg4ktal4qgIAxk+QHUxQE42sxViN5mqglB0QJdUot/o9a/V/mMeH8KvOAiQ
byinkNndn+Bgk5sSV5DFgF0DffVqmVMblt5p3jPtImzBIH0QQrXJq39AT8cRwP5H
afuVeLHcDsRp6hol4P+ZFIhu8mmbI1u0hH3W/0C2BuYXB5PC+5izFFh/nP0lc2Lf
6rELO9LZdnOhpL1ExFOq9H/B8tPQ84T3Sgb4nAifDabNt/zu6MmCGo5U8lwEFtGM
RoOaX4AS+909x00lYnmtwsDVWv9vBiJCXRsCAwEAAaOByTCBxjBgBgNVHR8EWTBX
MFWgU6BRhk9odHRwOi8vdHJ1c3RlZHNlcnZpY2VzLmludGVsLmNvbS9jb250ZW50
L0NSTC9TR1gvQXR0ZXN0YXRpb25SZXBvcnRTaWduaW5nQ0EuY3JsMB0GA1UdDgQW
BBR4Q3t2pn680K9+QjfrNXw7hwFRPDAfBgNVHSMEGDAWgBR4Q3t2pn680K9+Qjfr
NXw7hwFRPDAOBgNVHQ8BAf8EBAMCAQYwEgYDVR0TAQH/BAgwBgEB/wIBADANBgkq
hkiG9w0BAQsFAAOCAYEAeF8tYMXICvQqeXYQITkV2oLJsp6J4JAqJabHWxYJHGir
IEqucRiJSSx+HjIJEUVaj8E0QjEud6Y5lNmXlcjqRXaCPOqK0eGRz6hi+ripMtPZ
sFNaBwLQVV905SDjAzDzNIDnrcnXyB4gcDFCvwDFKKgLRjOB/WAqgscDUoGq5ZVi
zLUzTqiQPmULAQaB9c6Oti6snEFJiCQ67JLyW/E83/frzCmO5Ru6WjU4tmsmy8Ra
Ud4APK0wZTGtfPXU7w+IBdG5Ez0kE1qzxGQaL4gINJ1zMyleDnbuS8UicjJijvqA
152Sq049ESDz+1rRGc2NVEqh1KaGXmtXvqxXcTB+Ljy5Bw2ke0v8iGngFBPqCTVB
3op5KBG3RjbF6RRSzwzuWfL7QErNC8WEy5yDVARzTA5+xmBc388v9Dm21HGfcC8O
DD+gT9sSpssq0ascmvH49MOgjt1yoysLtdCtJW/9FZpoOypaHx0R+mJTLwPXVMrv
DaVzWh5aiEx+idkSGMnX
-----END CERTIFICATE-----
"""


class AttestationError(ValueError):
    """Raised when a remote-attestation report cannot be verified or parsed."""


class SgxBuildMode(Enum):
    DEBUG = "Debug"
    PRODUCTION = "Production"


class SgxStatus(Enum):
    INVALID = "INVALID"
    OK = "OK"
    GROUP_OUT_OF_DATE = "GROUP_OUT_OF_DATE"
    GROUP_REVOKED = "GROUP_REVOKED"
    CONFIGURATION_NEEDED = "CONFIGURATION_NEEDED"


_QUOTE_STATUSES = {
    "OK": SgxStatus.OK,
    "GROUP_OUT_OF_DATE": SgxStatus.GROUP_OUT_OF_DATE,
    "GROUP_REVOKED": SgxStatus.GROUP_REVOKED,
    "CONFIGURATION_NEEDED": SgxStatus.CONFIGURATION_NEEDED,
}


@dataclass(frozen=True)
class SgxAttributes:
    flags: int
    xfrm: int


@dataclass(frozen=True)
class SgxReportBody:
    """The 384-byte SGX report body embedded in a quote."""

    cpu_svn: bytes
    misc_select: bytes
    reserved1: bytes
    isv_ext_prod_id: bytes
    attributes: SgxAttributes
    mr_enclave: bytes
    reserved2: bytes
    mr_signer: bytes
    reserved3: bytes
    config_id: bytes
    isv_prod_id: int
    isv_svn: int
    config_svn: int
    reserved4: bytes
    isv_family_id: bytes
    report_data: bytes

    def sgx_build_mode(self) -> SgxBuildMode:
        """Debug when the enclave's debug attribute flag is set."""
        if self.attributes.flags & SGX_FLAGS_DEBUG == SGX_FLAGS_DEBUG:
            return SgxBuildMode.DEBUG
        return SgxBuildMode.PRODUCTION


@dataclass(frozen=True)
class SgxQuote:
    """The fixed-size leading part of an SGX quote."""

    version: int
    sign_type: int
    epid_group_id: int
    qe_svn: int
    pce_svn: int
    xeid: int
    basename: bytes
    report_body: SgxReportBody

    @classmethod
    def decode(cls, data: bytes) -> SgxQuote:
        """Decode the little-endian quote layout; trailing bytes are ignored."""
        data = bytes(data)
        if len(data) < QUOTE_SIZE:
            raise AttestationError("could not decode quote")
        version, sign_type, epid_group_id, qe_svn, pce_svn, xeid, basename = (
            _QUOTE_HEADER.unpack_from(data)
        )
        (
            cpu_svn,
            misc_select,
            reserved1,
            isv_ext_prod_id,
            flags,
            xfrm,
            mr_enclave,
            reserved2,
            mr_signer,
            reserved3,
            config_id,
            isv_prod_id,
            isv_svn,
            config_svn,
            reserved4,
            isv_family_id,
            report_data,
        ) = _REPORT_BODY.unpack_from(data, _QUOTE_HEADER.size)
        body = SgxReportBody(
            cpu_svn=cpu_svn,
            misc_select=misc_select,
            reserved1=reserved1,
            isv_ext_prod_id=isv_ext_prod_id,
            attributes=SgxAttributes(flags=flags, xfrm=xfrm),
            mr_enclave=mr_enclave,
            reserved2=reserved2,
            mr_signer=mr_signer,
            reserved3=reserved3,
            config_id=config_id,
            isv_prod_id=isv_prod_id,
            isv_svn=isv_svn,
            config_svn=config_svn,
            reserved4=reserved4,
            isv_family_id=isv_family_id,
            report_data=report_data,
        )
        return cls(
            version=version,
            sign_type=sign_type,
            epid_group_id=epid_group_id,
            qe_svn=qe_svn,
            pce_svn=pce_svn,
            xeid=xeid,
            basename=basename,
            report_body=body,
        )


@dataclass(frozen=True)
class SgxReport:
    """The facts taken from a verified attestation report."""

    mr_enclave: bytes = field(default=bytes(32))
    pubkey: bytes = field(default=bytes(32))
    status: SgxStatus = SgxStatus.INVALID
    timestamp: int = 0  # unix time in milliseconds
    build_mode: SgxBuildMode = SgxBuildMode.PRODUCTION


def _parse_timestamp(value: object) -> int:
    if not isinstance(value, str):
        raise AttestationError("Failed to fetch timestamp from attestation report")
    match = _TIMESTAMP_RE.fullmatch(value)
    if match is None:
        raise AttestationError("RA report timestamp parsing error")
    try:
        moment = datetime.strptime(match.group(1), "%Y-%m-%dT%H:%M:%S")
    except ValueError as exc:
        raise AttestationError("RA report timestamp parsing error") from exc
    seconds = calendar.timegm(moment.timetuple())
    if seconds < 0:
        raise AttestationError("Error converting report.timestamp to u64")
    return seconds * 1000


def parse_report(report_raw: bytes) -> SgxReport:
    """Parse the JSON attestation report issued by IAS."""
    try:
        report = json.loads(report_raw)
    except (ValueError, TypeError) as exc:
        raise AttestationError("RA report parsing error") from exc
    fields = report if isinstance(report, dict) else {}

    timestamp = _parse_timestamp(fields.get("timestamp"))

    quote_status = fields.get("isvEnclaveQuoteStatus")
    if not isinstance(quote_status, str):
        raise AttestationError("Failed to fetch isvEnclaveQuoteStatus from attestation report")
    status = _QUOTE_STATUSES.get(quote_status, SgxStatus.INVALID)

    quote_body = fields.get("isvEnclaveQuoteBody")
    if not isinstance(quote_body, str):
        raise AttestationError("Failed to parse isvEnclaveQuoteBody from attestation report")
    try:
        quote_raw = base64.b64decode(quote_body, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise AttestationError("Quote Decoding Error") from exc
    body = SgxQuote.decode(quote_raw).report_body

    return SgxReport(
        mr_enclave=body.mr_enclave,
        pubkey=body.report_data[:32],
        status=status,
        timestamp=timestamp,
        build_mode=body.sgx_build_mode(),
    )


def verify_signature(cert: x509.Certificate, attestation_raw: bytes, signature: bytes) -> None:
    """Check an RSA PKCS#1 v1.5 SHA-256 signature made by ``cert``'s key."""
    try:
        key = cert.public_key()
    except ValueError as exc:
        raise AttestationError("bad signature") from exc
    if not isinstance(key, rsa.RSAPublicKey) or not 2048 <= key.key_size <= 8192:
        raise AttestationError("bad signature")
    try:
        key.verify(bytes(signature), bytes(attestation_raw), padding.PKCS1v15(), hashes.SHA256())
    except InvalidSignature as exc:
        raise AttestationError("bad signature") from exc


@functools.lru_cache(maxsize=None)
def _ias_root() -> x509.Certificate:
    return x509.load_pem_x509_certificate(_IAS_ROOT_PEM)


def _as_utc(moment: datetime | int | float) -> datetime:
    if isinstance(moment, datetime):
        return moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)
    return datetime.fromtimestamp(moment, tz=timezone.utc)


def _validity(cert: x509.Certificate) -> tuple[datetime, datetime]:
    try:
        return cert.not_valid_before_utc, cert.not_valid_after_utc
    except AttributeError:
        return (
            cert.not_valid_before.replace(tzinfo=timezone.utc),
            cert.not_valid_after.replace(tzinfo=timezone.utc),
        )


def _ensure_valid_at(cert: x509.Certificate, moment: datetime) -> None:
    not_before, not_after = _validity(cert)
    if not not_before <= moment <= not_after:
        raise ValueError("certificate is not valid at the given time")


def _ensure_end_entity(cert: x509.Certificate) -> None:
    try:
        constraints = cert.extensions.get_extension_for_class(x509.BasicConstraints)
    except x509.ExtensionNotFound:
        constraints = None
    if constraints is not None and constraints.value.ca:
        raise ValueError("certificate is a CA certificate")
    try:
        usage = cert.extensions.get_extension_for_class(x509.ExtendedKeyUsage)
    except x509.ExtensionNotFound:
        usage = None
    if usage is not None and ExtendedKeyUsageOID.SERVER_AUTH not in usage.value:
        raise ValueError("certificate is not valid for server authentication")


def _ensure_issued_by(cert: x509.Certificate, root: x509.Certificate) -> None:
    if cert.issuer != root.subject:
        raise ValueError("certificate is not issued by the trust anchor")
    hash_algorithm = cert.signature_hash_algorithm
    if not isinstance(hash_algorithm, _SUPPORTED_CHAIN_HASHES):
        raise ValueError("unsupported signature algorithm")
    root_key = root.public_key()
    if not isinstance(root_key, rsa.RSAPublicKey) or not 2048 <= root_key.key_size <= 8192:
        raise ValueError("unsupported trust anchor key")
    root_key.verify(
        cert.signature, cert.tbs_certificate_bytes, padding.PKCS1v15(), hash_algorithm
    )


def verify_server_cert(cert: x509.Certificate, valid_until: datetime | int | float) -> None:
    """Check that ``cert`` is issued by the IAS report-signing CA and valid then."""
    moment = _as_utc(valid_until)
    try:
        root = _ias_root()
        _ensure_valid_at(cert, moment)
        _ensure_valid_at(root, moment)
        _ensure_end_entity(cert)
        _ensure_issued_by(cert, root)
    except (InvalidSignature, ValueError, TypeError) as exc:
        raise AttestationError("CA verification failed") from exc


def verify_ias_report(cert_der: bytes) -> SgxReport:
    """Verify the IAS report carried in a certificate and return its contents."""
    try:
        netscape = NetscapeComment.from_cert(cert_der)
    except CertificateFormatError as exc:
        raise AttestationError(str(exc)) from exc
    try:
        sig_cert = x509.load_der_x509_certificate(netscape.sig_cert)
    except ValueError as exc:
        raise AttestationError("Bad der") from exc
    verify_signature(sig_cert, netscape.attestation_raw, netscape.sig)
    verify_server_cert(sig_cert, IAS_VALIDATION_TIME)
    return parse_report(netscape.attestation_raw)