"""Exchange-rate oracle fed by whitelisted enclave releases."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from fractions import Fraction
from numbers import Rational

from .runtime import DispatchError, Origin, Runtime, ensure_root, ensure_signed
from .teerex import Teerex, TeerexError

log = logging.getLogger(__name__)

MAX_TRADING_PAIR_LEN = 11
MAX_SOURCE_LEN = 40

_FRAC_BITS = 32
_SCALE = 1 << _FRAC_BITS
_MAX_BITS = (1 << 64) - 1


def to_u32f32(value: float | int | Decimal | Rational | str) -> Fraction:
    """Round ``value`` to the nearest unsigned 32.32 fixed-point number.

    Ties round to even. Values outside the representable range raise ValueError.
    """
    try:
        exact = Fraction(value)
    except (ValueError, OverflowError, TypeError) as exc:
        raise ValueError(f"cannot represent {value!r} as U32F32") from exc
    bits = round(exact * _SCALE)
    if not 0 <= bits <= _MAX_BITS:
        raise ValueError(f"{value!r} is out of range for U32F32")
    return Fraction(bits, _SCALE)


class TeeracleError(DispatchError):
    """A call to the oracle was rejected; ``name`` says why."""

    INVALID_CURRENCY = "InvalidCurrency"
    RELEASE_WHITELIST_OVERFLOW = "ReleaseWhitelistOverflow"
    RELEASE_NOT_WHITELISTED = "ReleaseNotWhitelisted"
    RELEASE_ALREADY_WHITELISTED = "ReleaseAlreadyWhitelisted"
    TRADING_PAIR_STRING_TOO_LONG = "TradingPairStringTooLong"
    MARKET_DATA_SOURCE_STRING_TOO_LONG = "MarketDataSourceStringTooLong"

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.name = name


@dataclass(frozen=True)
class ExchangeRateUpdated:
    data_source: str
    trading_pair: str
    new_value: Fraction | None


@dataclass(frozen=True)
class ExchangeRateDeleted:
    data_source: str
    trading_pair: str


@dataclass(frozen=True)
class AddedToWhitelist:
    data_source: str
    mrenclave: bytes


@dataclass(frozen=True)
class RemovedFromWhitelist:
    data_source: str
    mrenclave: bytes


def _byte_len(text: str) -> int:
    return len(text.encode("utf-8"))


class Teeracle:
    """Exchange rates per trading pair and data source, set by attested enclaves."""

    def __init__(self, runtime: Runtime, teerex: Teerex) -> None:
        self.runtime = runtime
        self.teerex = teerex
        self._rates: dict[tuple[str, str], Fraction] = {}
        self._whitelists: dict[str, list[bytes]] = {}

    def add_to_whitelist(self, origin: Origin, data_source: str, mrenclave: bytes) -> None:
        """Trust enclaves with ``mrenclave`` to report rates from ``data_source``."""
        ensure_root(origin)
        mrenclave = bytes(mrenclave)
        if _byte_len(data_source) > MAX_SOURCE_LEN:
            raise TeeracleError(TeeracleError.MARKET_DATA_SOURCE_STRING_TOO_LONG)
        if self.is_whitelisted(data_source, mrenclave):
            raise TeeracleError(TeeracleError.RELEASE_ALREADY_WHITELISTED)
        releases = self._whitelists.get(data_source, [])
        if len(releases) >= self.runtime.max_whitelisted_releases:
            raise TeeracleError(TeeracleError.RELEASE_WHITELIST_OVERFLOW)
        self._whitelists[data_source] = [*releases, mrenclave]
        self.runtime.deposit_event(AddedToWhitelist(data_source, mrenclave))

    def remove_from_whitelist(self, origin: Origin, data_source: str, mrenclave: bytes) -> None:
        """Stop trusting ``mrenclave`` for ``data_source``."""
        ensure_root(origin)
        mrenclave = bytes(mrenclave)
        if not self.is_whitelisted(data_source, mrenclave):
            raise TeeracleError(TeeracleError.RELEASE_NOT_WHITELISTED)
        remaining = [m for m in self._whitelists.get(data_source, []) if m != mrenclave]
        if remaining:
            self._whitelists[data_source] = remaining
        else:
            self._whitelists.pop(data_source, None)
        self.runtime.deposit_event(RemovedFromWhitelist(data_source, mrenclave))

    def update_exchange_rate(
        self,
        origin: Origin,
        data_source: str,
        trading_pair: str,
        new_value: float | int | Decimal | Rational | None,
    ) -> None:
        """Set a rate from a registered, whitelisted enclave; None or zero deletes it."""
        sender = ensure_signed(origin)
        self.teerex.is_registered_enclave(sender)
        sender_enclave = self.teerex.enclave(self.teerex.enclave_index(sender))
        if sender_enclave is None:
            raise TeerexError(TeerexError.EMPTY_ENCLAVE_REGISTRY)
        if _byte_len(trading_pair) > MAX_TRADING_PAIR_LEN:
            raise TeeracleError(TeeracleError.TRADING_PAIR_STRING_TOO_LONG)
        if not self.is_whitelisted(data_source, sender_enclave.mr_enclave):
            raise TeeracleError(TeeracleError.RELEASE_NOT_WHITELISTED)

        rate = None if new_value is None else to_u32f32(new_value)
        key = (trading_pair, data_source)
        if rate is None or rate == 0:
            log.info("Delete exchange rate: %s", rate)
            self._rates.pop(key, None)
            self.runtime.deposit_event(ExchangeRateDeleted(data_source, trading_pair))
        else:
            log.info("Update exchange rate: %s", rate)
            self._rates[key] = rate
            self.runtime.deposit_event(ExchangeRateUpdated(data_source, trading_pair, rate))

    def exchange_rate(self, trading_pair: str, data_source: str) -> Fraction:
        """The stored rate, or zero when none is stored."""
        return self._rates.get((trading_pair, data_source), Fraction(0))

    def has_exchange_rate(self, trading_pair: str, data_source: str) -> bool:
        return (trading_pair, data_source) in self._rates

    def whitelist(self, data_source: str) -> list[bytes]:
        """The whitelisted releases for ``data_source``, in insertion order."""
        return list(self._whitelists.get(data_source, []))

    def is_whitelisted(self, data_source: str, mrenclave: bytes) -> bool:
        return bytes(mrenclave) in self._whitelists.get(data_source, [])