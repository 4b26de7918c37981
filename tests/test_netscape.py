import base64

import pytest

from teeregistry.der import CertificateFormatError
from teeregistry.netscape import (
    NS_CMT_OID,
    PRIME256V1_OID,
    EphemeralKey,
    NetscapeComment,
)


def _encode_length(n):
    if n < 0x80:
        return bytes([n])
    return b"\x82" + n.to_bytes(2, "big")


def _netscape_cert(payload, prefix=b"\x30\x82\x01\x00junk", suffix=b"\x30\x0d"):
    return prefix + NS_CMT_OID + b"\x04" + _encode_length(len(payload)) + payload + suffix


def _payload(attestation, sig, cert):
    return attestation + b"|" + base64.b64encode(sig) + b"|" + base64.b64encode(cert)


def test_short_form_payload_is_split():
    attestation = b'{"id":"1"}'
    cert = _netscape_cert(_payload(attestation, b"sig-bytes", b"cert-bytes"))
    comment = NetscapeComment.from_cert(cert)
    assert comment.attestation_raw == attestation
    assert comment.sig == b"sig-bytes"
    assert comment.sig_cert == b"cert-bytes"


def test_long_form_payload_is_split():
    attestation = b'{"pad":"' + b"x" * 300 + b'"}'
    sig = bytes(range(256))
    cert_bytes = bytes(range(200)) * 3
    payload = _payload(attestation, sig, cert_bytes)
    assert len(payload) > 0x80
    comment = NetscapeComment.from_cert(_netscape_cert(payload))
    assert comment.attestation_raw == attestation
    assert comment.sig == sig
    assert comment.sig_cert == cert_bytes


def test_trailing_bytes_are_not_part_of_payload():
    payload = _payload(b"{}", b"a", b"b")
    comment = NetscapeComment.from_cert(_netscape_cert(payload, suffix=b"|more|data"))
    assert comment.attestation_raw == b"{}"
    assert comment.sig_cert == b"b"


def test_missing_oid_fails():
    with pytest.raises(CertificateFormatError, match="ns_cmt_oid"):
        NetscapeComment.from_cert(b"\x30\x03\x02\x01\x00")


def test_truncated_payload_fails():
    cert = NS_CMT_OID + b"\x04" + bytes([50]) + b"short"
    with pytest.raises(CertificateFormatError, match="Index out of bounds"):
        NetscapeComment.from_cert(cert)


def test_missing_length_fails():
    with pytest.raises(CertificateFormatError, match="Index out of bounds"):
        NetscapeComment.from_cert(NS_CMT_OID + b"\x04")


@pytest.mark.parametrize("payload", [b"only|two", b"a|b|c|d", b"nothing"])
def test_wrong_number_of_parts_fails(payload):
    with pytest.raises(CertificateFormatError, match="Invalid netscape payload"):
        NetscapeComment.from_cert(_netscape_cert(payload))


def test_bad_signature_encoding_fails():
    payload = b"{}|not*base64|" + base64.b64encode(b"cert")
    with pytest.raises(CertificateFormatError, match="Signature Decoding Error"):
        NetscapeComment.from_cert(_netscape_cert(payload))


def test_bad_cert_encoding_fails():
    payload = b"{}|" + base64.b64encode(b"sig") + b"|###"
    with pytest.raises(CertificateFormatError, match="Cert Decoding Error"):
        NetscapeComment.from_cert(_netscape_cert(payload))


def _key_cert(content, prefix=b"\x30\x59\x30\x13"):
    return prefix + PRIME256V1_OID + b"\x03" + bytes([len(content)]) + content


def test_ephemeral_key_is_extracted():
    point = bytes(range(64))
    key = EphemeralKey.from_cert(_key_cert(b"\x00\x04" + point))
    assert key.public_key == point


def test_ephemeral_key_missing_oid_fails():
    with pytest.raises(CertificateFormatError, match="PRIME256V1_OID"):
        EphemeralKey.from_cert(b"\x30\x00")


def test_ephemeral_key_truncated_fails():
    cert = PRIME256V1_OID + b"\x03" + bytes([66]) + b"\x00\x04\x01"
    with pytest.raises(CertificateFormatError, match="Index out of bounds"):
        EphemeralKey.from_cert(cert)


def test_ephemeral_key_too_short_length_fails():
    with pytest.raises(CertificateFormatError, match="Index out of bounds"):
        EphemeralKey.from_cert(_key_cert(b"\x00"))