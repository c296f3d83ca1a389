from __future__ import annotations

import logging

from .atomic import AtomicTransactionContext, LoanMarker, LoanState
from .base_types import BPS_DENOMINATOR, AccountId, mul_div_ceil, mul_div_floor
from .errors import (
    BorrowBeforeRepay,
    DetachedOperation,
    InsufficientLiquidity,
    InsufficientRepayment,
    InvalidAmount,
    InvariantViolation,
    NoActiveLoan,
    UnrepaidLoan,
)
from .operations import BorrowOperation, RepayOperation, targets_pool
from .pool import PoolAuthority, require_external_caller
from .token_ledger import TokenLedger

logger = logging.getLogger(__name__)


def loan_fee(pool: PoolAuthority, amount: int) -> int:
    """Fee owed on a loan, rounded up so the pool never under-charges."""
    return mul_div_ceil(amount, pool.fee_rate_bps, BPS_DENOMINATOR)


def admin_fee(pool: PoolAuthority, amount: int) -> int:
    return mul_div_floor(amount, pool.admin_fee_bps, BPS_DENOMINATOR)


class FlashLoanEngine:
    """Issue vault loans that must be repaid later in the same atomic sequence.

    Borrow inspects the sequence before moving any funds: the first later
    operation on the same pool that is a repay must cover principal and fee.
    Nothing is rolled back here; an unqualified borrow never takes effect.
    """

    def __init__(self, *, ledger: TokenLedger) -> None:
        self._ledger = ledger

    def borrow(
        self,
        pool: PoolAuthority,
        amount: int,
        *,
        destination: AccountId,
        context: AtomicTransactionContext,
    ) -> LoanMarker:
        if amount <= 0:
            raise InvalidAmount(field="amount", amount=amount)

        vault_balance = self._ledger.balance_of(pool.vault)
        if amount > vault_balance:
            raise InsufficientLiquidity(underlying_asset=pool.underlying_asset, requested=amount, available=vault_balance)

        fee = loan_fee(pool, amount)
        self._require_repayment(pool, amount, fee, context)

        self._ledger.transfer(source=pool.vault, destination=destination, amount=amount, authority=pool.authority)

        marker = LoanMarker(
            sequence_id=context.sequence_id,
            underlying_asset=pool.underlying_asset,
            principal=amount,
            fee=fee,
            admin_fee=admin_fee(pool, amount),
            vault_balance_snapshot=vault_balance,
        )
        logger.info(
            "Borrow pool=%s amount=%d fee=%d destination=%s sequence=%s",
            pool.underlying_asset,
            amount,
            fee,
            destination,
            context.sequence_id,
        )
        return marker

    def repay(
        self,
        pool: PoolAuthority,
        principal: int,
        fee_paid: int,
        *,
        repayer: str,
        source: AccountId,
        marker: LoanMarker | None,
        context: AtomicTransactionContext,
    ) -> LoanMarker:
        if (
            marker is None
            or marker.state != LoanState.BORROWED
            or marker.sequence_id != context.sequence_id
            or marker.underlying_asset != pool.underlying_asset
        ):
            raise NoActiveLoan(underlying_asset=pool.underlying_asset)
        require_external_caller(pool, operation="repay", signer=repayer, source=source)

        if principal < marker.principal or fee_paid < marker.fee:
            raise InsufficientRepayment(
                underlying_asset=pool.underlying_asset,
                principal=principal,
                fee_paid=fee_paid,
                principal_owed=marker.principal,
                fee_owed=marker.fee,
            )

        to_vault = principal + fee_paid - marker.admin_fee
        self._ledger.transfer(source=source, destination=pool.vault, amount=to_vault, authority=repayer)
        if marker.admin_fee > 0 and pool.admin_account is not None:
            self._ledger.transfer(
                source=source,
                destination=pool.admin_account,
                amount=marker.admin_fee,
                authority=repayer,
            )

        vault_balance = self._ledger.balance_of(pool.vault)
        if vault_balance < marker.required_vault_balance:
            error = InvariantViolation(
                underlying_asset=pool.underlying_asset,
                vault_balance=vault_balance,
                required_balance=marker.required_vault_balance,
            )
            logger.error("%s", error)
            raise error

        logger.info(
            "Repay pool=%s principal=%d fee=%d admin_fee=%d sequence=%s",
            pool.underlying_asset,
            principal,
            fee_paid,
            marker.admin_fee,
            context.sequence_id,
        )
        return marker.model_copy(update={"state": LoanState.SETTLED})

    def _require_repayment(
        self,
        pool: PoolAuthority,
        amount: int,
        fee: int,
        context: AtomicTransactionContext,
    ) -> None:
        operations = context.operations_in_sequence()
        current_index = context.current_index

        current = operations[current_index] if 0 <= current_index < len(operations) else None
        if not (
            isinstance(current, BorrowOperation)
            and current.underlying_asset == pool.underlying_asset
            and current.amount == amount
        ):
            raise DetachedOperation(underlying_asset=pool.underlying_asset, index=current_index)

        for index in range(current_index + 1, len(operations)):
            operation = operations[index]
            if not targets_pool(operation, pool.underlying_asset):
                continue
            if isinstance(operation, BorrowOperation):
                raise BorrowBeforeRepay(underlying_asset=pool.underlying_asset, index=index)
            if isinstance(operation, RepayOperation):
                if operation.principal < amount or operation.fee_paid < fee:
                    raise UnrepaidLoan(
                        underlying_asset=pool.underlying_asset,
                        principal=amount,
                        fee=fee,
                        reason=(
                            f"repay at index {index} covers principal={operation.principal} "
                            f"fee={operation.fee_paid}"
                        ),
                    )
                return

        raise UnrepaidLoan(
            underlying_asset=pool.underlying_asset,
            principal=amount,
            fee=fee,
            reason="no later repay operation",
        )


__all__ = ["FlashLoanEngine", "admin_fee", "loan_fee"]
