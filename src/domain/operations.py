from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from .base_types import AccountId, AssetId


class _Operation(BaseModel):
    model_config = ConfigDict(frozen=True)


class DepositOperation(_Operation):
    kind: Literal["deposit"] = "deposit"
    underlying_asset: AssetId
    amount: int
    depositor: str
    source: AccountId
    share_destination: AccountId


class WithdrawOperation(_Operation):
    kind: Literal["withdraw"] = "withdraw"
    underlying_asset: AssetId
    shares: int
    withdrawer: str
    share_source: AccountId
    destination: AccountId


class BorrowOperation(_Operation):
    kind: Literal["borrow"] = "borrow"
    underlying_asset: AssetId
    amount: int
    destination: AccountId


class RepayOperation(_Operation):
    kind: Literal["repay"] = "repay"
    underlying_asset: AssetId
    principal: int
    fee_paid: int
    repayer: str
    source: AccountId


class TransferOperation(_Operation):
    """Plain ledger transfer carried inside a sequence, e.g. the work funded by a flash loan."""

    kind: Literal["transfer"] = "transfer"
    source: AccountId
    destination: AccountId
    amount: int
    authority: str


Operation = Annotated[
    Union[DepositOperation, WithdrawOperation, BorrowOperation, RepayOperation, TransferOperation],
    Field(discriminator="kind"),
]


def targets_pool(operation: Operation, underlying_asset: AssetId) -> bool:
    return not isinstance(operation, TransferOperation) and operation.underlying_asset == underlying_asset


__all__ = [
    "BorrowOperation",
    "DepositOperation",
    "Operation",
    "RepayOperation",
    "TransferOperation",
    "WithdrawOperation",
    "targets_pool",
]
