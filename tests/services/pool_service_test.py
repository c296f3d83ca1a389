import logging

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from config import AppSettings
from db.repositories import PoolAuthorityRepository
from domain.errors import (
    AlreadyExists,
    DegenerateShareSupply,
    ForbiddenCaller,
    InsufficientShares,
    LoanOutstanding,
    NotFound,
    UnrepaidLoan,
)
from domain.flash_loan import loan_fee
from domain.operations import (
    BorrowOperation,
    DepositOperation,
    RepayOperation,
    TransferOperation,
    WithdrawOperation,
)
from domain.pool import PoolAuthority
from domain.registry import InMemoryPoolStore
from domain.token_ledger import InMemoryTokenLedger, InsufficientBalanceError, UnauthorizedError
from services.pool_service import LendingPoolService, build_service
from tests.constants import (
    ADMIN_USDC,
    ALICE,
    ALICE_SHARES,
    ALICE_USDC,
    BOB,
    BOB_SHARES,
    BOB_USDC,
    BORROWER,
    BORROWER_STARTING_BALANCE,
    BORROWER_USDC,
    CAROL,
    CAROL_SHARES,
    CAROL_USDC,
    SHARE_CREATOR,
    SOL,
    STARTING_BALANCE,
    USDC,
    USDC_SHARES,
)
from tests.helpers.ledger_setup import build_ledger


def _flash_loan(amount: int, fee: int, *, extra: list | None = None) -> list:
    return [
        BorrowOperation(underlying_asset=USDC, amount=amount, destination=BORROWER_USDC),
        *(extra or []),
        RepayOperation(underlying_asset=USDC, principal=amount, fee_paid=fee, repayer=BORROWER, source=BORROWER_USDC),
    ]


class _UnavailablePoolStore(InMemoryPoolStore):
    """Pool store whose database goes away once `failing` is set."""

    def __init__(self, *, healthy_reads: int = 0) -> None:
        super().__init__()
        self.failing = False
        self.healthy_reads = healthy_reads

    def get(self, underlying_asset: str) -> PoolAuthority | None:
        if self.failing:
            if self.healthy_reads == 0:
                raise OperationalError("SELECT pool_authorities", {}, Exception("database is locked"))
            self.healthy_reads -= 1
        return super().get(underlying_asset)

    def add(self, pool: PoolAuthority) -> PoolAuthority:
        if self.failing:
            raise OperationalError("INSERT INTO pool_authorities", {}, Exception("database is locked"))
        return super().add(pool)


def test_deposit_scenarios_through_service(
    service: LendingPoolService, pool: PoolAuthority, ledger: InMemoryTokenLedger
) -> None:
    assert service.deposit(USDC, 100, depositor=ALICE, source=ALICE_USDC, share_destination=ALICE_SHARES) == 100
    assert service.deposit(USDC, 100, depositor=BOB, source=BOB_USDC, share_destination=BOB_SHARES) == 100

    service.execute([TransferOperation(source=CAROL_USDC, destination=pool.vault, amount=77, authority=CAROL)])
    assert ledger.balance_of(pool.vault) == 277

    assert service.deposit(USDC, 33, depositor=CAROL, source=CAROL_USDC, share_destination=CAROL_SHARES) == 23
    assert ledger.supply_of(USDC_SHARES) == 223
    assert ledger.balance_of(ALICE_SHARES) == 100


def test_flash_loan_fee_accrues_to_depositors(
    service: LendingPoolService, pool: PoolAuthority, ledger: InMemoryTokenLedger
) -> None:
    service.deposit(USDC, 1_000, depositor=ALICE, source=ALICE_USDC, share_destination=ALICE_SHARES)
    vault_before = ledger.balance_of(pool.vault)
    supply_before = ledger.supply_of(USDC_SHARES)

    receipt = service.execute(_flash_loan(500, 2))

    assert [result.kind for result in receipt.results] == ["borrow", "repay"]
    assert receipt.results[1].loan is not None
    assert receipt.results[1].loan.fee == 2
    vault_after = ledger.balance_of(pool.vault)
    supply_after = ledger.supply_of(USDC_SHARES)
    # V/S strictly increases; compared by cross-multiplication.
    assert vault_after * supply_before > vault_before * supply_after
    assert vault_after == 1_002

    amount_out = service.withdraw(USDC, 1_000, withdrawer=ALICE, share_source=ALICE_SHARES, destination=ALICE_USDC)
    assert amount_out == 1_002
    assert ledger.balance_of(ALICE_USDC) == STARTING_BALANCE + 2


def test_borrowed_funds_can_be_used_inside_the_sequence(
    service: LendingPoolService, pool: PoolAuthority, ledger: InMemoryTokenLedger
) -> None:
    service.deposit(USDC, 5_000, depositor=ALICE, source=ALICE_USDC, share_destination=ALICE_SHARES)
    fee = loan_fee(pool, 4_000)
    # Borrower spends the loan and is paid back by a counterparty before repaying.
    work = [
        TransferOperation(source=BORROWER_USDC, destination=BOB_USDC, amount=4_000, authority=BORROWER),
        TransferOperation(source=BOB_USDC, destination=BORROWER_USDC, amount=4_100, authority=BOB),
    ]

    service.execute(_flash_loan(4_000, fee, extra=work))

    assert ledger.balance_of(pool.vault) == 5_000 + fee
    assert ledger.balance_of(BORROWER_USDC) == BORROWER_STARTING_BALANCE + 100 - fee


@pytest.mark.parametrize("amount", [1, 250, 999, 1_000])
def test_unrepaid_borrow_leaves_vault_untouched(
    service: LendingPoolService, pool: PoolAuthority, ledger: InMemoryTokenLedger, amount: int
) -> None:
    service.deposit(USDC, 1_000, depositor=ALICE, source=ALICE_USDC, share_destination=ALICE_SHARES)

    with pytest.raises(UnrepaidLoan):
        service.execute([BorrowOperation(underlying_asset=USDC, amount=amount, destination=BORROWER_USDC)])

    assert ledger.balance_of(pool.vault) == 1_000
    assert ledger.balance_of(BORROWER_USDC) == BORROWER_STARTING_BALANCE


def test_failed_repay_rolls_back_the_borrow(
    service: LendingPoolService, pool: PoolAuthority, ledger: InMemoryTokenLedger
) -> None:
    service.deposit(USDC, 100_000, depositor=ALICE, source=ALICE_USDC, share_destination=ALICE_SHARES)
    amount = 50_000
    fee = loan_fee(pool, amount)
    # Borrower forwards the loan away, so the repay transfer overdraws.
    sneak = [TransferOperation(source=BORROWER_USDC, destination=CAROL_USDC, amount=amount, authority=BORROWER)]

    with pytest.raises(InsufficientBalanceError):
        service.execute(_flash_loan(amount, fee, extra=sneak))

    assert ledger.balance_of(pool.vault) == 100_000
    assert ledger.balance_of(CAROL_USDC) == STARTING_BALANCE
    assert ledger.balance_of(BORROWER_USDC) == BORROWER_STARTING_BALANCE


def test_share_operations_blocked_while_loan_outstanding(
    service: LendingPoolService, pool: PoolAuthority, ledger: InMemoryTokenLedger
) -> None:
    service.deposit(USDC, 1_000, depositor=ALICE, source=ALICE_USDC, share_destination=ALICE_SHARES)
    deposit = DepositOperation(
        underlying_asset=USDC, amount=500, depositor=BOB, source=BOB_USDC, share_destination=BOB_SHARES
    )
    withdraw = WithdrawOperation(
        underlying_asset=USDC, shares=500, withdrawer=ALICE, share_source=ALICE_SHARES, destination=ALICE_USDC
    )

    for sibling in (deposit, withdraw):
        with pytest.raises(LoanOutstanding):
            service.execute(_flash_loan(900, 3, extra=[sibling]))

    assert ledger.balance_of(pool.vault) == 1_000
    assert ledger.supply_of(USDC_SHARES) == 1_000
    assert ledger.balance_of(BOB_SHARES) == 0


def test_sequence_is_all_or_nothing(service: LendingPoolService, pool: PoolAuthority, ledger: InMemoryTokenLedger) -> None:
    operations = [
        DepositOperation(underlying_asset=USDC, amount=100, depositor=ALICE, source=ALICE_USDC, share_destination=ALICE_SHARES),
        WithdrawOperation(underlying_asset=USDC, shares=1, withdrawer=BOB, share_source=BOB_SHARES, destination=BOB_USDC),
    ]

    with pytest.raises(InsufficientShares):
        service.execute(operations)

    assert ledger.balance_of(ALICE_USDC) == STARTING_BALANCE
    assert ledger.balance_of(ALICE_SHARES) == 0
    assert ledger.supply_of(USDC_SHARES) == 0
    assert ledger.balance_of(pool.vault) == 0


def test_transfers_cannot_be_signed_by_derived_authority(
    service: LendingPoolService, pool: PoolAuthority, ledger: InMemoryTokenLedger
) -> None:
    service.deposit(USDC, 1_000, depositor=ALICE, source=ALICE_USDC, share_destination=ALICE_SHARES)
    drain = TransferOperation(source=pool.vault, destination=BORROWER_USDC, amount=1_000, authority=pool.authority)

    with pytest.raises(UnauthorizedError):
        service.execute([drain])
    with pytest.raises(UnauthorizedError):
        service.execute(_flash_loan(500, 2, extra=[drain]))

    assert ledger.balance_of(pool.vault) == 1_000


def test_admin_fee_is_split_on_repay(ledger: InMemoryTokenLedger, settings: AppSettings) -> None:
    service = build_service(settings, ledger=ledger, store=InMemoryPoolStore())
    pool = service.create_pool(
        USDC,
        share_asset=USDC_SHARES,
        share_asset_authority=SHARE_CREATOR,
        fee_rate_bps=30,
        admin_fee_bps=10,
        admin_account=ADMIN_USDC,
    )
    service.deposit(USDC, 100_000, depositor=ALICE, source=ALICE_USDC, share_destination=ALICE_SHARES)

    service.execute(_flash_loan(10_000, 30))

    assert ledger.balance_of(ADMIN_USDC) == 10
    assert ledger.balance_of(pool.vault) == 100_020
    assert ledger.balance_of(BORROWER_USDC) == BORROWER_STARTING_BALANCE - 30


def test_operations_on_unknown_pool_fail(service: LendingPoolService, pool: PoolAuthority) -> None:
    with pytest.raises(NotFound):
        service.execute([BorrowOperation(underlying_asset=SOL, amount=1, destination=BORROWER_USDC)])


def test_create_pool_failure_leaves_ledger_untouched(service: LendingPoolService, ledger: InMemoryTokenLedger) -> None:
    service.create_pool(USDC, share_asset=USDC_SHARES, share_asset_authority=SHARE_CREATOR)

    with pytest.raises(AlreadyExists):
        service.create_pool(USDC, share_asset=USDC_SHARES, share_asset_authority=SHARE_CREATOR)
    with pytest.raises(UnauthorizedError):
        service.create_pool(SOL, share_asset="SOL-SHARES", share_asset_authority=ALICE)

    assert ledger.get_mint("SOL-SHARES").mint_authority == SHARE_CREATOR


def test_service_with_sql_store_rediscovers_pools(test_session: Session, settings: AppSettings) -> None:
    ledger = build_ledger()
    repository = PoolAuthorityRepository(test_session)
    service = build_service(settings, ledger=ledger, store=repository)
    created = service.create_pool(USDC, share_asset=USDC_SHARES, share_asset_authority=SHARE_CREATOR)

    rebuilt = build_service(settings, ledger=ledger, store=PoolAuthorityRepository(test_session))

    assert rebuilt.registry.resolve(USDC) == created
    assert rebuilt.deposit(USDC, 10, depositor=ALICE, source=ALICE_USDC, share_destination=ALICE_SHARES) == 10


def test_fatal_errors_are_logged(
    service: LendingPoolService, pool: PoolAuthority, ledger: InMemoryTokenLedger, caplog: pytest.LogCaptureFixture
) -> None:
    service.deposit(USDC, 100, depositor=ALICE, source=ALICE_USDC, share_destination=ALICE_SHARES)
    ledger.transfer(source=pool.vault, destination=BOB_USDC, amount=100, authority=pool.authority)

    with caplog.at_level(logging.ERROR):
        with pytest.raises(DegenerateShareSupply):
            service.deposit(USDC, 10, depositor=BOB, source=BOB_USDC, share_destination=BOB_SHARES)

    assert any("invariant violation" in record.getMessage() for record in caplog.records)


def test_forged_pool_signers_are_rejected_in_sequences(
    service: LendingPoolService, pool: PoolAuthority, ledger: InMemoryTokenLedger
) -> None:
    service.deposit(USDC, 1_000, depositor=ALICE, source=ALICE_USDC, share_destination=ALICE_SHARES)

    with pytest.raises(ForbiddenCaller):
        service.deposit(USDC, 1_000, depositor=pool.authority, source=pool.vault, share_destination=BOB_SHARES)
    with pytest.raises(ForbiddenCaller):
        service.withdraw(USDC, 500, withdrawer=pool.authority, share_source=ALICE_SHARES, destination=BOB_USDC)
    vault_repay = RepayOperation(
        underlying_asset=USDC, principal=500, fee_paid=2, repayer=pool.authority, source=pool.vault
    )
    with pytest.raises(ForbiddenCaller):
        service.execute([BorrowOperation(underlying_asset=USDC, amount=500, destination=BORROWER_USDC), vault_repay])

    assert ledger.balance_of(pool.vault) == 1_000
    assert ledger.supply_of(USDC_SHARES) == 1_000
    assert ledger.balance_of(BOB_SHARES) == 0
    assert ledger.balance_of(BORROWER_USDC) == BORROWER_STARTING_BALANCE


def test_unexpected_error_mid_sequence_rolls_back_the_loan(
    ledger: InMemoryTokenLedger, settings: AppSettings, caplog: pytest.LogCaptureFixture
) -> None:
    store = _UnavailablePoolStore(healthy_reads=1)
    service = build_service(settings, ledger=ledger, store=store)
    pool = service.create_pool(USDC, share_asset=USDC_SHARES, share_asset_authority=SHARE_CREATOR)
    service.deposit(USDC, 10_000, depositor=ALICE, source=ALICE_USDC, share_destination=ALICE_SHARES)
    # The borrow resolves the pool, then the store fails when the repay looks it up.
    store.failing = True

    with caplog.at_level(logging.ERROR):
        with pytest.raises(OperationalError):
            service.execute(_flash_loan(500, 2))

    assert ledger.balance_of(pool.vault) == 10_000
    assert ledger.balance_of(BORROWER_USDC) == BORROWER_STARTING_BALANCE
    assert any("unexpected error" in record.getMessage() for record in caplog.records)


def test_unexpected_error_during_pool_creation_restores_ledger(
    ledger: InMemoryTokenLedger, settings: AppSettings
) -> None:
    store = _UnavailablePoolStore()
    service = build_service(settings, ledger=ledger, store=store)
    accounts_before = ledger.accounts_for(USDC)
    store.failing = True
    store.healthy_reads = 3

    with pytest.raises(OperationalError):
        service.create_pool(USDC, share_asset=USDC_SHARES, share_asset_authority=SHARE_CREATOR)

    assert ledger.get_mint(USDC_SHARES).mint_authority == SHARE_CREATOR
    assert ledger.accounts_for(USDC) == accounts_before
    assert store.list() == []
