"""Dispatch weights of the enclave registry and the exchange-rate oracle."""

from __future__ import annotations

from dataclasses import dataclass

MAX_WEIGHT = 2**64 - 1


def _saturating_add(a: int, b: int) -> int:
    return min(a + b, MAX_WEIGHT)


def _saturating_mul(a: int, b: int) -> int:
    return min(a * b, MAX_WEIGHT)


@dataclass(frozen=True)
class DbWeight:
    """Cost of a single storage read and a single storage write."""

    read: int = 0
    write: int = 0

    def reads(self, n: int) -> int:
        """Weight of ``n`` storage reads."""
        return _saturating_mul(self.read, n)

    def writes(self, n: int) -> int:
        """Weight of ``n`` storage writes."""
        return _saturating_mul(self.write, n)


ROCKS_DB_WEIGHT = DbWeight(read=25_000_000, write=100_000_000)


@dataclass(frozen=True)
class TeerexWeightInfo:
    """Weights of the enclave registry calls, given a storage cost model."""

    db_weight: DbWeight = ROCKS_DB_WEIGHT

    def register_enclave(self) -> int:
        weight = _saturating_add(1_969_500_000, self.db_weight.reads(2))
        return _saturating_add(weight, self.db_weight.writes(1))

    def unregister_enclave(self) -> int:
        weight = _saturating_add(53_300_000, self.db_weight.reads(3))
        return _saturating_add(weight, self.db_weight.writes(5))

    def call_worker(self) -> int:
        return 57_200_000

    def confirm_processed_parentchain_block(self) -> int:
        weight = _saturating_add(46_900_000, self.db_weight.reads(1))
        return _saturating_add(weight, self.db_weight.writes(2))


@dataclass(frozen=True)
class TeeracleWeightInfo:
    """Weights of the exchange-rate oracle calls."""

    def add_to_whitelist(self) -> int:
        return 46_200_000

    def remove_from_whitelist(self) -> int:
        return 46_200_000

    def update_exchange_rate(self) -> int:
        return 46_200_000