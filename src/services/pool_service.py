from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Sequence

from config import AppSettings
from domain.atomic import AtomicSequence, LoanMarker
from domain.base_types import AccountId, AssetId, SequenceId
from domain.errors import FatalInvariantError, LoanOutstanding, PoolError, UnrepaidLoan
from domain.flash_loan import FlashLoanEngine
from domain.operations import (
    BorrowOperation,
    DepositOperation,
    Operation,
    RepayOperation,
    TransferOperation,
    WithdrawOperation,
)
from domain.pool import PoolAuthority, is_derived_identity
from domain.registry import PoolRegistry, PoolStore
from domain.share_accounting import ShareAccountingEngine
from domain.token_ledger import InMemoryTokenLedger, TokenLedgerError, UnauthorizedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OperationResult:
    index: int
    kind: str
    amount: int
    loan: LoanMarker | None = None


@dataclass(frozen=True)
class SequenceReceipt:
    sequence_id: SequenceId
    results: list[OperationResult] = field(default_factory=list)


class LendingPoolService:
    """Run pool operations as all-or-nothing sequences against an in-memory ledger.

    The service is the atomic-sequence provider: every sequence holds the
    service lock from the first read to the last write, and any failure
    restores the ledger to its state before the sequence started.
    """

    def __init__(self, *, ledger: InMemoryTokenLedger, registry: PoolRegistry) -> None:
        self.ledger = ledger
        self.registry = registry
        self.shares = ShareAccountingEngine(ledger=ledger)
        self.flash_loans = FlashLoanEngine(ledger=ledger)
        self._lock = threading.RLock()

    def create_pool(
        self,
        underlying_asset: AssetId,
        *,
        share_asset: AssetId,
        share_asset_authority: str,
        fee_rate_bps: int | None = None,
        admin_fee_bps: int | None = None,
        admin_account: AccountId | None = None,
    ) -> PoolAuthority:
        with self._lock:
            snapshot = self.ledger.snapshot()
            try:
                return self.registry.create(
                    underlying_asset,
                    share_asset=share_asset,
                    share_asset_authority=share_asset_authority,
                    fee_rate_bps=fee_rate_bps,
                    admin_fee_bps=admin_fee_bps,
                    admin_account=admin_account,
                )
            except (PoolError, TokenLedgerError):
                self.ledger.restore(snapshot)
                raise
            except Exception:
                self.ledger.restore(snapshot)
                logger.exception("Pool creation for %s aborted by an unexpected error", underlying_asset)
                raise

    def deposit(
        self,
        underlying_asset: AssetId,
        amount: int,
        *,
        depositor: str,
        source: AccountId,
        share_destination: AccountId,
    ) -> int:
        receipt = self.execute(
            [
                DepositOperation(
                    underlying_asset=underlying_asset,
                    amount=amount,
                    depositor=depositor,
                    source=source,
                    share_destination=share_destination,
                )
            ]
        )
        return receipt.results[0].amount

    def withdraw(
        self,
        underlying_asset: AssetId,
        shares: int,
        *,
        withdrawer: str,
        share_source: AccountId,
        destination: AccountId,
    ) -> int:
        receipt = self.execute(
            [
                WithdrawOperation(
                    underlying_asset=underlying_asset,
                    shares=shares,
                    withdrawer=withdrawer,
                    share_source=share_source,
                    destination=destination,
                )
            ]
        )
        return receipt.results[0].amount

    def execute(self, operations: Sequence[Operation], *, sequence_id: SequenceId | None = None) -> SequenceReceipt:
        sequence = AtomicSequence(operations, sequence_id=sequence_id)
        with self._lock:
            snapshot = self.ledger.snapshot()
            try:
                results = [self._apply(sequence, sequence.advance()) for _ in range(len(operations))]
                outstanding = sequence.outstanding_loans()
                if outstanding:
                    marker = outstanding[0]
                    raise UnrepaidLoan(
                        underlying_asset=marker.underlying_asset,
                        principal=marker.principal,
                        fee=marker.fee,
                        reason="sequence ended with the loan outstanding",
                    )
            except FatalInvariantError:
                self.ledger.restore(snapshot)
                logger.error(
                    "Sequence %s aborted at index %d by an invariant violation",
                    sequence.sequence_id,
                    sequence.current_index,
                )
                raise
            except (PoolError, TokenLedgerError) as err:
                self.ledger.restore(snapshot)
                logger.info(
                    "Sequence %s rolled back at index %d: %s", sequence.sequence_id, sequence.current_index, err
                )
                raise
            except Exception:
                self.ledger.restore(snapshot)
                logger.exception(
                    "Sequence %s aborted at index %d by an unexpected error",
                    sequence.sequence_id,
                    sequence.current_index,
                )
                raise

        logger.info("Sequence %s committed %d operations", sequence.sequence_id, len(results))
        return SequenceReceipt(sequence_id=sequence.sequence_id, results=results)

    def _apply(self, sequence: AtomicSequence, operation: Operation) -> OperationResult:
        index = sequence.current_index

        if isinstance(operation, TransferOperation):
            if is_derived_identity(operation.authority):
                # Derived authorities only sign through the engines.
                raise UnauthorizedError(
                    action="transfer from", target=operation.source, expected=None, signer=operation.authority
                )
            self.ledger.transfer(
                source=operation.source,
                destination=operation.destination,
                amount=operation.amount,
                authority=operation.authority,
            )
            return OperationResult(index=index, kind=operation.kind, amount=operation.amount)

        pool = self.registry.resolve(operation.underlying_asset)

        if isinstance(operation, DepositOperation):
            self._require_no_loan(sequence, pool, "deposit into")
            shares = self.shares.deposit(
                pool,
                operation.amount,
                depositor=operation.depositor,
                source=operation.source,
                share_destination=operation.share_destination,
            )
            return OperationResult(index=index, kind=operation.kind, amount=shares)

        if isinstance(operation, WithdrawOperation):
            self._require_no_loan(sequence, pool, "withdraw from")
            amount_out = self.shares.withdraw(
                pool,
                operation.shares,
                withdrawer=operation.withdrawer,
                share_source=operation.share_source,
                destination=operation.destination,
            )
            return OperationResult(index=index, kind=operation.kind, amount=amount_out)

        if isinstance(operation, BorrowOperation):
            marker = self.flash_loans.borrow(
                pool,
                operation.amount,
                destination=operation.destination,
                context=sequence,
            )
            sequence.open_loan(marker)
            return OperationResult(index=index, kind=operation.kind, amount=operation.amount, loan=marker)

        if isinstance(operation, RepayOperation):
            settled = self.flash_loans.repay(
                pool,
                operation.principal,
                operation.fee_paid,
                repayer=operation.repayer,
                source=operation.source,
                marker=sequence.active_loan(pool.underlying_asset),
                context=sequence,
            )
            sequence.settle_loan(settled)
            return OperationResult(
                index=index,
                kind=operation.kind,
                amount=operation.principal + operation.fee_paid,
                loan=settled,
            )

        raise TypeError(f"Unsupported operation: {operation!r}")

    @staticmethod
    def _require_no_loan(sequence: AtomicSequence, pool: PoolAuthority, action: str) -> None:
        if sequence.active_loan(pool.underlying_asset) is not None:
            raise LoanOutstanding(underlying_asset=pool.underlying_asset, operation=action)


def build_service(settings: AppSettings, *, ledger: InMemoryTokenLedger, store: PoolStore) -> LendingPoolService:
    registry = PoolRegistry(
        ledger=ledger,
        store=store,
        seed=settings.pool_seed,
        program_id=settings.program_id,
        default_fee_rate_bps=settings.fee_rate_bps,
        default_admin_fee_bps=settings.admin_fee_bps,
    )
    return LendingPoolService(ledger=ledger, registry=registry)


__all__ = ["LendingPoolService", "OperationResult", "SequenceReceipt", "build_service"]
