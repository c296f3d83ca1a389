from __future__ import annotations

from enum import StrEnum
from typing import Protocol, Sequence
from uuid import uuid4

from pydantic import BaseModel, ConfigDict

from .base_types import AssetId, SequenceId
from .operations import Operation


class AtomicTransactionContext(Protocol):
    """Caller-supplied view of the atomic sequence an operation runs in.

    `operations_in_sequence` is finite, ordered and already decided when any
    operation in it starts executing. `current_index` points at the operation
    currently executing.
    """

    @property
    def sequence_id(self) -> SequenceId: ...

    @property
    def current_index(self) -> int: ...

    def operations_in_sequence(self) -> Sequence[Operation]: ...


class LoanState(StrEnum):
    BORROWED = "BORROWED"
    SETTLED = "SETTLED"


class LoanMarker(BaseModel):
    """Outstanding-loan record. Exists only for the duration of one sequence."""

    model_config = ConfigDict(frozen=True)

    sequence_id: SequenceId
    underlying_asset: AssetId
    principal: int
    fee: int
    admin_fee: int
    vault_balance_snapshot: int
    state: LoanState = LoanState.BORROWED

    @property
    def required_vault_balance(self) -> int:
        return self.vault_balance_snapshot + self.fee - self.admin_fee


class AtomicSequence(AtomicTransactionContext):
    """In-process sequence context with a loan arena keyed by pool."""

    def __init__(self, operations: Sequence[Operation], *, sequence_id: SequenceId | None = None) -> None:
        self._operations = tuple(operations)
        self._sequence_id = sequence_id or SequenceId(uuid4().hex)
        self._current_index = -1
        self._loans: dict[AssetId, LoanMarker] = {}

    @property
    def sequence_id(self) -> SequenceId:
        return self._sequence_id

    @property
    def current_index(self) -> int:
        return self._current_index

    def operations_in_sequence(self) -> Sequence[Operation]:
        return self._operations

    def advance(self) -> Operation:
        if self._current_index + 1 >= len(self._operations):
            raise IndexError("sequence exhausted")
        self._current_index += 1
        return self._operations[self._current_index]

    def active_loan(self, underlying_asset: AssetId) -> LoanMarker | None:
        marker = self._loans.get(underlying_asset)
        if marker is None or marker.state != LoanState.BORROWED:
            return None
        return marker

    def open_loan(self, marker: LoanMarker) -> None:
        if self.active_loan(marker.underlying_asset) is not None:
            raise ValueError(f"loan already outstanding for {marker.underlying_asset}")
        self._loans[marker.underlying_asset] = marker

    def settle_loan(self, marker: LoanMarker) -> None:
        self._loans.pop(marker.underlying_asset, None)

    def outstanding_loans(self) -> list[LoanMarker]:
        return [marker for marker in self._loans.values() if marker.state == LoanState.BORROWED]


__all__ = ["AtomicSequence", "AtomicTransactionContext", "LoanMarker", "LoanState"]
