"""Registry of remotely attested enclaves and the calls they may make."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace

from .attestation import AttestationError, SgxBuildMode, SgxReport, verify_ias_report
from .runtime import DispatchError, Origin, Runtime, ensure_signed

log = logging.getLogger(__name__)

MAX_RA_REPORT_LEN = 4096
MAX_URL_LEN = 256
MAX_ENCLAVE_INDEX = 2**64 - 1
MR_ENCLAVE_LEN = 32


class TeerexError(DispatchError):
    """A call to the enclave registry was rejected; ``name`` says why."""

    ENCLAVE_SIGNER_DECODE_ERROR = "EnclaveSignerDecodeError"
    SENDER_IS_NOT_ATTESTED_ENCLAVE = "SenderIsNotAttestedEnclave"
    REMOTE_ATTESTATION_VERIFICATION_FAILED = "RemoteAttestationVerificationFailed"
    REMOTE_ATTESTATION_TOO_OLD = "RemoteAttestationTooOld"
    SGX_MODE_NOT_ALLOWED = "SgxModeNotAllowed"
    ENCLAVE_IS_NOT_REGISTERED = "EnclaveIsNotRegistered"
    WRONG_MRENCLAVE_FOR_BONDING_ACCOUNT = "WrongMrenclaveForBondingAccount"
    WRONG_MRENCLAVE_FOR_SHARD = "WrongMrenclaveForShard"
    ENCLAVE_URL_TOO_LONG = "EnclaveUrlTooLong"
    RA_REPORT_TOO_LONG = "RaReportTooLong"
    EMPTY_ENCLAVE_REGISTRY = "EmptyEnclaveRegistry"

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.name = name


@dataclass(frozen=True)
class Enclave:
    """A registered enclave: its signer account, measurement, age and address."""

    pubkey: bytes
    mr_enclave: bytes = field(default=bytes(MR_ENCLAVE_LEN))
    timestamp: int = 0
    url: bytes = b""
    sgx_mode: SgxBuildMode = SgxBuildMode.PRODUCTION

    def with_mr_enclave(self, mr_enclave: bytes) -> Enclave:
        return replace(self, mr_enclave=bytes(mr_enclave))

    def with_timestamp(self, timestamp: int) -> Enclave:
        return replace(self, timestamp=timestamp)

    def with_url(self, url: bytes) -> Enclave:
        return replace(self, url=bytes(url))


@dataclass(frozen=True)
class Request:
    """An encrypted call forwarded to the workers of a shard."""

    shard: bytes
    cyphertext: bytes


@dataclass(frozen=True)
class AddedEnclave:
    account: bytes
    url: bytes


@dataclass(frozen=True)
class RemovedEnclave:
    account: bytes


@dataclass(frozen=True)
class Forwarded:
    shard: bytes


@dataclass(frozen=True)
class ShieldFunds:
    incognito_account_encrypted: bytes


@dataclass(frozen=True)
class UnshieldedFunds:
    account: bytes


@dataclass(frozen=True)
class ProcessedParentchainBlock:
    account: bytes
    block_hash: bytes
    trusted_calls_merkle_root: bytes
    block_number: int


ReportVerifier = Callable[[bytes], SgxReport]


class Teerex:
    """The enclave registry, bound to a runtime.

    Indices start at 1 so that 0 can stand for "no enclave".
    With ``skip_ias_check`` the attestation report is not verified: its first
    32 bytes, if present, are taken as the measurement.
    """

    def __init__(
        self,
        runtime: Runtime,
        *,
        skip_ias_check: bool = False,
        report_verifier: ReportVerifier | None = None,
    ) -> None:
        self.runtime = runtime
        self.skip_ias_check = skip_ias_check
        self._verify = report_verifier or verify_ias_report
        self._registry: dict[int, Enclave] = {}
        self._count = 0
        self._index: dict[bytes, int] = {}
        self._executed_calls: dict[bytes, int] = {}
        runtime.add_timestamp_hook(self.on_timestamp_set)

    # calls

    def register_enclave(self, origin: Origin, ra_report: bytes, worker_url: bytes) -> None:
        """Register or update the sender's enclave from its attestation report."""
        sender = ensure_signed(origin)
        ra_report, worker_url = bytes(ra_report), bytes(worker_url)
        if len(ra_report) > MAX_RA_REPORT_LEN:
            raise TeerexError(TeerexError.RA_REPORT_TOO_LONG)
        if len(worker_url) > MAX_URL_LEN:
            raise TeerexError(TeerexError.ENCLAVE_URL_TOO_LONG)

        if self.skip_ias_check:
            log.warning("Skipping remote attestation check. Only dev-chains may do this!")
            mr_enclave = (
                ra_report[:MR_ENCLAVE_LEN]
                if len(ra_report) >= MR_ENCLAVE_LEN
                else bytes(MR_ENCLAVE_LEN)
            )
            enclave = Enclave(
                pubkey=sender,
                mr_enclave=mr_enclave,
                timestamp=self.runtime.now,
                url=worker_url,
                sgx_mode=SgxBuildMode.PRODUCTION,
            )
        else:
            report = self._verify_report(sender, ra_report)
            enclave = Enclave(
                pubkey=sender,
                mr_enclave=report.mr_enclave,
                timestamp=report.timestamp,
                url=worker_url,
                sgx_mode=report.build_mode,
            )
            if not self.runtime.allow_sgx_debug_mode and enclave.sgx_mode is SgxBuildMode.DEBUG:
                log.error("debug mode is not allowed to attest")
                raise TeerexError(TeerexError.SGX_MODE_NOT_ALLOWED)

        self.add_enclave(sender, enclave)
        self.runtime.deposit_event(AddedEnclave(sender, worker_url))

    def unregister_enclave(self, origin: Origin) -> None:
        sender = ensure_signed(origin)
        self._remove_enclave(sender)
        self.runtime.deposit_event(RemovedEnclave(sender))

    def call_worker(self, origin: Origin, request: Request) -> None:
        ensure_signed(origin)
        log.info("call_worker with %r", request)
        self.runtime.deposit_event(Forwarded(request.shard))

    def confirm_processed_parentchain_block(
        self,
        origin: Origin,
        block_hash: bytes,
        block_number: int,
        trusted_calls_merkle_root: bytes,
    ) -> None:
        """Confirm, from a registered enclave, that a parentchain block was processed."""
        sender = ensure_signed(origin)
        self.is_registered_enclave(sender)
        log.debug("Processed parentchain block confirmed by %s", sender.hex())
        self.runtime.deposit_event(
            ProcessedParentchainBlock(
                sender, bytes(block_hash), bytes(trusted_calls_merkle_root), block_number
            )
        )

    def shield_funds(
        self,
        origin: Origin,
        incognito_account_encrypted: bytes,
        amount: int,
        bonding_account: bytes,
    ) -> None:
        """Move funds from the sender to an enclave's bonding account."""
        sender = ensure_signed(origin)
        self.runtime.balances.transfer(sender, bonding_account, amount)
        self.runtime.deposit_event(ShieldFunds(bytes(incognito_account_encrypted)))

    def unshield_funds(
        self,
        origin: Origin,
        public_account: bytes,
        amount: int,
        bonding_account: bytes,
        call_hash: bytes,
    ) -> None:
        """Pay out from the bonding account once per call hash, counting confirmations."""
        sender = ensure_signed(origin)
        self.is_registered_enclave(sender)
        sender_enclave = self._registry.get(self._index.get(sender, 0))
        if sender_enclave is None:
            raise TeerexError(TeerexError.EMPTY_ENCLAVE_REGISTRY)
        bonding_account, call_hash = bytes(bonding_account), bytes(call_hash)
        if sender_enclave.mr_enclave != bonding_account:
            raise TeerexError(TeerexError.WRONG_MRENCLAVE_FOR_BONDING_ACCOUNT)

        if call_hash not in self._executed_calls:
            log.info("Executing unshielding call: %s", call_hash.hex())
            self.runtime.balances.transfer(bonding_account, public_account, amount)
            self._executed_calls[call_hash] = 0
            self.runtime.deposit_event(UnshieldedFunds(bytes(public_account)))
        else:
            log.info("Already executed unshielding call: %s", call_hash.hex())
        self._executed_calls[call_hash] += 1

    # registry

    def add_enclave(self, sender: bytes, enclave: Enclave) -> None:
        """Store ``enclave`` under the sender's index, allocating one if needed."""
        sender = bytes(sender)
        if sender in self._index:
            log.info("Updating already registered enclave")
            index = self._index[sender]
        else:
            if self._count >= MAX_ENCLAVE_INDEX:
                raise DispatchError("[Teerex]: Overflow adding new enclave to registry")
            index = self._count + 1
            self._index[sender] = index
            self._count = index
        self._registry[index] = enclave

    def _remove_enclave(self, sender: bytes) -> None:
        sender = bytes(sender)
        if sender not in self._index:
            raise TeerexError(TeerexError.ENCLAVE_IS_NOT_REGISTERED)
        if self._count == 0:
            raise DispatchError("[Teerex]: Underflow removing an enclave from the registry")
        index_to_remove = self._index[sender]
        last_index = self._count
        last_enclave = None
        if index_to_remove != last_index:
            # swap the last entry into the hole so the indices stay contiguous
            last_enclave = self._registry.get(last_index)
            if last_enclave is None:
                raise TeerexError(TeerexError.EMPTY_ENCLAVE_REGISTRY)
        del self._index[sender]
        if last_enclave is not None:
            self._registry[index_to_remove] = last_enclave
            self._index[last_enclave.pubkey] = index_to_remove
        self._registry.pop(last_index, None)
        self._count = last_index - 1

    def is_registered_enclave(self, account: bytes) -> bool:
        """Return True, or raise if ``account`` has no registered enclave."""
        if bytes(account) not in self._index:
            raise TeerexError(TeerexError.ENCLAVE_IS_NOT_REGISTERED)
        return True

    def enclave(self, index: int) -> Enclave | None:
        return self._registry.get(index)

    def enclave_count(self) -> int:
        return self._count

    def enclave_index(self, account: bytes) -> int:
        return self._index.get(bytes(account), 0)

    def confirmed_calls(self, call_hash: bytes) -> int:
        return self._executed_calls.get(bytes(call_hash), 0)

    def list_enclaves(self) -> list[tuple[int, Enclave]]:
        return sorted(self._registry.items())

    def on_timestamp_set(self, moment: int) -> None:
        """Unregister every enclave that has been silent longer than allowed."""
        minimum = max(moment - self.runtime.max_silence_time, 0)
        silent = [e.pubkey for e in self._registry.values() if e.timestamp < minimum]
        for account in silent:
            try:
                self._remove_enclave(account)
            except DispatchError as exc:
                log.error("Cannot unregister enclave: %s", exc)
            else:
                log.info("Unregister enclave because silent worker: %s", account.hex())
                self.runtime.deposit_event(RemovedEnclave(account))

    # attestation

    def _verify_report(self, sender: bytes, ra_report: bytes) -> SgxReport:
        try:
            report = self._verify(ra_report)
        except AttestationError as exc:
            raise TeerexError(TeerexError.REMOTE_ATTESTATION_VERIFICATION_FAILED) from exc
        log.info("RA Report: %r", report)
        enclave_signer = bytes(report.pubkey)
        if len(enclave_signer) != 32:
            raise TeerexError(TeerexError.ENCLAVE_SIGNER_DECODE_ERROR)
        if sender != enclave_signer:
            raise TeerexError(TeerexError.SENDER_IS_NOT_ATTESTED_ENCLAVE)
        self._ensure_timestamp_within_24_hours(report.timestamp)
        return report

    def _ensure_timestamp_within_24_hours(self, report_timestamp: int) -> None:
        elapsed = self.runtime.now - report_timestamp
        if elapsed < 0:
            raise DispatchError("Underflow while calculating elapsed time since report creation")
        if elapsed >= self.runtime.moments_per_day:
            raise TeerexError(TeerexError.REMOTE_ATTESTATION_TOO_OLD)