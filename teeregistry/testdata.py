"""Known attestation fixtures and helpers for building test enclaves."""

from __future__ import annotations

from dataclasses import dataclass

from .teerex import Enclave

INCOGNITO_ACCOUNT = bytes(
    [
        44, 106, 196, 170, 141, 51, 4, 200, 143, 12, 167, 255, 252, 221, 15, 119,
        228, 141, 94, 2, 132, 145, 21, 17, 52, 41, 40, 220, 157, 130, 48, 176,
    ]
)

TEST4_MRENCLAVE = bytes.fromhex("7a3454ec8f42e265cb5be7dfd111e1d95ac6076ed82a0948b2e2a45cf17b62a0")
TEST5_MRENCLAVE = bytes.fromhex("f4dedfc9e5fcc48443332bc9b23161c34a3c3f5a692eaffdb228db27b704d9d1")
TEST6_MRENCLAVE = bytes.fromhex("f4dedfc9e5fcc48443332bc9b23161c34a3c3f5a692eaffdb228db27b704d9d1")
TEST7_MRENCLAVE = bytes.fromhex("f4dedfc9e5fcc48443332bc9b23161c34a3c3f5a692eaffdb228db27b704d9d1")
TEST8_MRENCLAVE = bytes.fromhex("bcf66abfc6b3ef259e9ecfe4cf8df667a7f5a546525dee16822741b38f6e6050")

# unix epoch in milliseconds
TEST4_TIMESTAMP = 1587899785000
TEST5_TIMESTAMP = 1587900013000
TEST6_TIMESTAMP = 1587900233000
TEST7_TIMESTAMP = 1587900450000
TEST8_TIMESTAMP = 1634156700000

TWENTY_FOUR_HOURS = 60 * 60 * 24 * 1000

URL = b"ws://127.0.0.1:9991"


def _require_32(name: str, value: bytes) -> bytes:
    value = bytes(value)
    if len(value) != 32:
        raise ValueError(f"{name} must be 32 bytes, got {len(value)}")
    return value


@dataclass(frozen=True)
class IasSetup:
    """An attestation certificate together with the facts it attests."""

    cert: bytes
    signer_pub: bytes
    mrenclave: bytes
    timestamp: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "cert", bytes(self.cert))
        object.__setattr__(self, "signer_pub", _require_32("signer_pub", self.signer_pub))
        object.__setattr__(self, "mrenclave", _require_32("mrenclave", self.mrenclave))


def get_signer(pubkey: bytes) -> bytes:
    """The account id belonging to a 32-byte public key."""
    return _require_32("pubkey", pubkey)


def test_enclave(pubkey: bytes) -> Enclave:
    """An enclave for ``pubkey`` with every other field at its default."""
    return Enclave(pubkey=bytes(pubkey))


test_enclave.__test__ = False  # not a pytest test function