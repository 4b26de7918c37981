import base64
import json
import struct
from datetime import datetime, timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509.oid import NameOID

from teeregistry.attestation import (
    AttestationError,
    SgxBuildMode,
    SgxQuote,
    SgxReport,
    SgxStatus,
    parse_report,
    verify_ias_report,
    verify_server_cert,
    verify_signature,
)
from teeregistry.netscape import NS_CMT_OID

TEST4_TIMESTAMP = 1587899785000

MR_ENCLAVE = bytes(range(32))
MR_SIGNER = bytes(range(100, 132))
REPORT_DATA = bytes(range(64, 128))


def _quote_bytes(flags=0, mr_enclave=MR_ENCLAVE, report_data=REPORT_DATA):
    header = struct.pack("<HHIHHI32s", 2, 1, 0xABC, 3, 4, 5, b"\x11" * 32)
    body = bytearray(384)
    body[48:56] = flags.to_bytes(8, "little")
    body[64:96] = mr_enclave
    body[128:160] = MR_SIGNER
    body[320:384] = report_data
    return header + bytes(body)


def _report_json(
    timestamp="2020-04-26T11:16:25.123456", status="OK", quote=None, flags=0
):
    quote = _quote_bytes(flags=flags) if quote is None else quote
    return json.dumps(
        {
            "timestamp": timestamp,
            "isvEnclaveQuoteStatus": status,
            "isvEnclaveQuoteBody": base64.b64encode(quote).decode(),
        }
    ).encode()


def _encode_length(n):
    return bytes([n]) if n < 0x80 else b"\x82" + n.to_bytes(2, "big")


def _wrap_netscape(payload):
    return b"\x30\x82\x00\x00" + NS_CMT_OID + b"\x04" + _encode_length(len(payload)) + payload


def _make_cert(key):
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "attestation test")])
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(1)
        .not_valid_before(datetime(2019, 1, 1, tzinfo=timezone.utc))
        .not_valid_after(datetime(2030, 1, 1, tzinfo=timezone.utc))
        .sign(key, hashes.SHA256())
    )


def _sign(key, data):
    return key.sign(data, padding.PKCS1v15(), hashes.SHA256())


@pytest.fixture(scope="module")
def signing_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="module")
def signing_cert(signing_key):
    return _make_cert(signing_key)


def test_quote_decode_reads_fields():
    quote = SgxQuote.decode(_quote_bytes(flags=SGX_DEBUG_FLAG))
    assert (quote.version, quote.sign_type, quote.epid_group_id) == (2, 1, 0xABC)
    assert (quote.qe_svn, quote.pce_svn, quote.xeid) == (3, 4, 5)
    assert quote.basename == b"\x11" * 32
    assert quote.report_body.mr_enclave == MR_ENCLAVE
    assert quote.report_body.mr_signer == MR_SIGNER
    assert quote.report_body.report_data == REPORT_DATA
    assert quote.report_body.attributes.flags == SGX_DEBUG_FLAG


SGX_DEBUG_FLAG = 0x0000000000000002


def test_quote_decode_ignores_trailing_signature():
    raw = _quote_bytes() + struct.pack("<I", 4) + b"sigs"
    assert SgxQuote.decode(raw).report_body.mr_enclave == MR_ENCLAVE


def test_quote_decode_too_short_fails():
    with pytest.raises(AttestationError, match="could not decode quote"):
        SgxQuote.decode(_quote_bytes()[:-1])


@pytest.mark.parametrize(
    "flags, mode",
    [
        (SGX_DEBUG_FLAG, SgxBuildMode.DEBUG),
        (SGX_DEBUG_FLAG | 0x5, SgxBuildMode.DEBUG),
        (0x0, SgxBuildMode.PRODUCTION),
        (0x5, SgxBuildMode.PRODUCTION),
    ],
)
def test_build_mode_follows_debug_flag(flags, mode):
    assert SgxQuote.decode(_quote_bytes(flags=flags)).report_body.sgx_build_mode() is mode


def test_report_defaults():
    report = SgxReport()
    assert report.status is SgxStatus.INVALID
    assert report.build_mode is SgxBuildMode.PRODUCTION
    assert report.mr_enclave == bytes(32)


def test_parse_report_extracts_fields():
    report = parse_report(_report_json(flags=SGX_DEBUG_FLAG))
    assert report.timestamp == TEST4_TIMESTAMP
    assert report.mr_enclave == MR_ENCLAVE
    assert report.pubkey == REPORT_DATA[:32]
    assert report.status is SgxStatus.OK
    assert report.build_mode is SgxBuildMode.DEBUG


def test_parse_report_without_fraction():
    assert parse_report(_report_json(timestamp="2020-04-26T11:16:25")).timestamp == (
        TEST4_TIMESTAMP
    )


@pytest.mark.parametrize(
    "status, expected",
    [
        ("OK", SgxStatus.OK),
        ("GROUP_OUT_OF_DATE", SgxStatus.GROUP_OUT_OF_DATE),
        ("GROUP_REVOKED", SgxStatus.GROUP_REVOKED),
        ("CONFIGURATION_NEEDED", SgxStatus.CONFIGURATION_NEEDED),
        ("SOMETHING_ELSE", SgxStatus.INVALID),
    ],
)
def test_parse_report_status(status, expected):
    assert parse_report(_report_json(status=status)).status is expected


@pytest.mark.parametrize(
    "raw, message",
    [
        (b"not json", "RA report parsing error"),
        (b"[1, 2]", "Failed to fetch timestamp from attestation report"),
        (b'{"timestamp": 5}', "Failed to fetch timestamp from attestation report"),
        (b'{"timestamp": "yesterday"}', "RA report timestamp parsing error"),
        (b'{"timestamp": "2020-13-40T11:16:25"}', "RA report timestamp parsing error"),
        (b'{"timestamp": "1969-12-31T23:59:59"}', "Error converting report.timestamp to u64"),
        (
            b'{"timestamp": "2020-04-26T11:16:25"}',
            "Failed to fetch isvEnclaveQuoteStatus from attestation report",
        ),
        (
            b'{"timestamp": "2020-04-26T11:16:25", "isvEnclaveQuoteStatus": "OK"}',
            "Failed to parse isvEnclaveQuoteBody from attestation report",
        ),
        (
            b'{"timestamp": "2020-04-26T11:16:25", "isvEnclaveQuoteStatus": "OK",'
            b' "isvEnclaveQuoteBody": "!!!"}',
            "Quote Decoding Error",
        ),
    ],
)
def test_parse_report_errors(raw, message):
    with pytest.raises(AttestationError, match=message):
        parse_report(raw)


def test_parse_report_short_quote_fails():
    with pytest.raises(AttestationError, match="could not decode quote"):
        parse_report(_report_json(quote=b"\x00" * 100))


def test_verify_signature_accepts_valid_and_rejects_tampered(signing_key, signing_cert):
    data = b'{"id":"1"}'
    signature = _sign(signing_key, data)
    verify_signature(signing_cert, data, signature)
    with pytest.raises(AttestationError, match="bad signature"):
        verify_signature(signing_cert, data + b" ", signature)


def test_verify_signature_rejects_small_key():
    small_key = rsa.generate_private_key(public_exponent=65537, key_size=1024)
    data = b"{}"
    with pytest.raises(AttestationError, match="bad signature"):
        verify_signature(_make_cert(small_key), data, _sign(small_key, data))


def test_verify_server_cert_rejects_untrusted_issuer(signing_cert):
    with pytest.raises(AttestationError, match="CA verification failed"):
        verify_server_cert(signing_cert, datetime(2020, 1, 1, tzinfo=timezone.utc))


def _ias_payload(key, cert, attestation, signature=None):
    signature = _sign(key, attestation) if signature is None else signature
    return (
        attestation
        + b"|"
        + base64.b64encode(signature)
        + b"|"
        + base64.b64encode(cert.public_bytes(Encoding.DER))
    )


def test_verify_ias_report_checks_chain_after_signature(signing_key, signing_cert):
    cert_der = _wrap_netscape(_ias_payload(signing_key, signing_cert, _report_json()))
    with pytest.raises(AttestationError, match="CA verification failed"):
        verify_ias_report(cert_der)


def test_verify_ias_report_rejects_bad_signature(signing_key, signing_cert):
    attestation = _report_json()
    forged = _sign(signing_key, attestation + b"x")
    cert_der = _wrap_netscape(_ias_payload(signing_key, signing_cert, attestation, forged))
    with pytest.raises(AttestationError, match="bad signature"):
        verify_ias_report(cert_der)


def test_verify_ias_report_rejects_bad_der():
    payload = b"{}|" + base64.b64encode(b"sig") + b"|" + base64.b64encode(b"not a certificate")
    with pytest.raises(AttestationError, match="Bad der"):
        verify_ias_report(_wrap_netscape(payload))


def test_verify_ias_report_reports_missing_extension():
    with pytest.raises(AttestationError, match="ns_cmt_oid"):
        verify_ias_report(b"\x30\x00")