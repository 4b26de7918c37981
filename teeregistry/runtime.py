"""A small in-memory chain runtime: origins, balances, events and time."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

MAX_BALANCE = 2**64 - 1

MOMENTS_PER_DAY = 86_400_000  # ms per day
MAX_SILENCE_TIME = 172_800_000  # 48h
MINIMUM_PERIOD = 6000 // 2
EXISTENTIAL_DEPOSIT = 1
MAX_WHITELISTED_RELEASES = 10

ALICE = bytes.fromhex("d43593c715fdd31c61141abd04a99fd6822c8558854ccde39a5684e7a56da27d")
GENESIS_ENDOWMENT = 1 << 60


class DispatchError(Exception):
    """A dispatched call was rejected."""


class BadOrigin(DispatchError):
    """The call was made from an origin that is not allowed to make it."""

    def __init__(self, message: str = "BadOrigin") -> None:
        super().__init__(message)


class _OriginKind(Enum):
    ROOT = "root"
    SIGNED = "signed"
    NONE = "none"


@dataclass(frozen=True)
class Origin:
    """Who a call is dispatched from."""

    kind: _OriginKind
    account: bytes | None = None

    @classmethod
    def root(cls) -> Origin:
        return cls(_OriginKind.ROOT)

    @classmethod
    def signed(cls, account: bytes) -> Origin:
        return cls(_OriginKind.SIGNED, bytes(account))

    @classmethod
    def none(cls) -> Origin:
        return cls(_OriginKind.NONE)


def ensure_signed(origin: Origin) -> bytes:
    """Return the signing account, or raise BadOrigin."""
    if origin.kind is not _OriginKind.SIGNED or origin.account is None:
        raise BadOrigin()
    return origin.account


def ensure_root(origin: Origin) -> None:
    """Raise BadOrigin unless the origin is root."""
    if origin.kind is not _OriginKind.ROOT:
        raise BadOrigin()


class Balances:
    """Free balances of accounts, with an existential deposit."""

    def __init__(self, existential_deposit: int = EXISTENTIAL_DEPOSIT) -> None:
        self.existential_deposit = existential_deposit
        self._free: dict[bytes, int] = {}

    def deposit(self, account: bytes, amount: int) -> None:
        """Credit newly issued funds to ``account``."""
        new_balance = self.free_balance(account) + amount
        if new_balance > MAX_BALANCE:
            raise DispatchError("Overflow")
        if new_balance < self.existential_deposit:
            raise DispatchError("ExistentialDeposit")
        self._free[bytes(account)] = new_balance

    def free_balance(self, account: bytes) -> int:
        return self._free.get(bytes(account), 0)

    def transfer(self, source: bytes, dest: bytes, amount: int) -> None:
        """Move ``amount`` from ``source`` to ``dest``, allowing ``source`` to be reaped."""
        source, dest = bytes(source), bytes(dest)
        if amount < 0:
            raise DispatchError("InvalidAmount")
        if amount == 0 or source == dest:
            return
        source_balance = self.free_balance(source)
        if source_balance < amount:
            raise DispatchError("InsufficientBalance")
        dest_balance = self.free_balance(dest) + amount
        if dest_balance > MAX_BALANCE:
            raise DispatchError("Overflow")
        if dest_balance < self.existential_deposit:
            raise DispatchError("ExistentialDeposit")
        remaining = source_balance - amount
        if remaining < self.existential_deposit:
            self._free.pop(source, None)
        else:
            self._free[source] = remaining
        self._free[dest] = dest_balance


class Runtime:
    """Shared chain state: block number, timestamp, events and balances."""

    def __init__(
        self,
        *,
        allow_sgx_debug_mode: bool = True,
        endowed: Mapping[bytes, int] | None = None,
        moments_per_day: int = MOMENTS_PER_DAY,
        max_silence_time: int = MAX_SILENCE_TIME,
        minimum_period: int = MINIMUM_PERIOD,
        max_whitelisted_releases: int = MAX_WHITELISTED_RELEASES,
    ) -> None:
        self.allow_sgx_debug_mode = allow_sgx_debug_mode
        self.moments_per_day = moments_per_day
        self.max_silence_time = max_silence_time
        self.minimum_period = minimum_period
        self.max_whitelisted_releases = max_whitelisted_releases
        self.balances = Balances()
        for account, amount in (endowed if endowed is not None else {ALICE: GENESIS_ENDOWMENT}).items():
            self.balances.deposit(account, amount)
        self.block_number = 1
        self.now = 0
        self.events: list[Any] = []
        self._timestamp_hooks: list[Callable[[int], None]] = []
        self._did_update = False

    def deposit_event(self, event: Any) -> None:
        self.events.append(event)

    def add_timestamp_hook(self, hook: Callable[[int], None]) -> None:
        """Register a callback run with the new moment whenever the time is set."""
        self._timestamp_hooks.append(hook)

    def set_timestamp(self, moment: int) -> None:
        """Set the block time as the timestamp inherent does, then run the hooks."""
        if self._did_update:
            raise RuntimeError("Timestamp must be updated only once in the block")
        if self.now != 0 and moment < self.now + self.minimum_period:
            raise RuntimeError(
                "Timestamp must increment by at least <MinimumPeriod> between sequential blocks"
            )
        self.now = moment
        self._did_update = True
        for hook in self._timestamp_hooks:
            hook(moment)

    def run_to_block(self, n: int) -> None:
        """Finalize blocks until block ``n`` is the current one."""
        while self.block_number < n:
            if not self._did_update:
                raise RuntimeError("Timestamp must be updated once in the block")
            self._did_update = False
            self.block_number += 1