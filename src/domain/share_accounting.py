from __future__ import annotations

import logging

from .base_types import AccountId, mul_div_floor
from .errors import (
    AmountTooSmall,
    DegenerateShareSupply,
    InsufficientShares,
    InvalidAmount,
    PoolEmpty,
    WrongShareAccount,
)
from .pool import PoolAuthority, require_external_caller
from .token_ledger import TokenLedger

logger = logging.getLogger(__name__)


class ShareAccountingEngine:
    """Mint and burn pool shares against the vault balance.

    Share amounts always round down so the pool keeps any remainder. Vault
    balance and share supply are read before any effect of the current call,
    and callers must run each call inside a single-writer critical section.
    """

    def __init__(self, *, ledger: TokenLedger) -> None:
        self._ledger = ledger

    def quote_deposit(self, pool: PoolAuthority, amount: int) -> int:
        if amount <= 0:
            raise InvalidAmount(field="amount", amount=amount)

        share_supply = self._ledger.supply_of(pool.share_asset)
        vault_balance = self._ledger.balance_of(pool.vault)

        if share_supply == 0:
            # First depositor sets the 1:1 baseline.
            return amount
        if vault_balance == 0:
            raise self._degenerate(pool, share_supply)

        shares = mul_div_floor(amount, share_supply, vault_balance)
        if shares == 0:
            raise AmountTooSmall(
                underlying_asset=pool.underlying_asset,
                amount=amount,
                share_supply=share_supply,
                vault_balance=vault_balance,
            )
        return shares

    def quote_withdraw(self, pool: PoolAuthority, shares: int) -> int:
        if shares <= 0:
            raise InvalidAmount(field="shares", amount=shares)

        share_supply = self._ledger.supply_of(pool.share_asset)
        if share_supply == 0:
            raise PoolEmpty(underlying_asset=pool.underlying_asset)

        vault_balance = self._ledger.balance_of(pool.vault)
        if vault_balance == 0:
            raise self._degenerate(pool, share_supply)
        return mul_div_floor(shares, vault_balance, share_supply)

    def deposit(
        self,
        pool: PoolAuthority,
        amount: int,
        *,
        depositor: str,
        source: AccountId,
        share_destination: AccountId,
    ) -> int:
        require_external_caller(pool, operation="deposit into", signer=depositor, source=source)
        shares = self.quote_deposit(pool, amount)

        self._ledger.transfer(source=source, destination=pool.vault, amount=amount, authority=depositor)
        self._ledger.mint_to(
            asset_id=pool.share_asset,
            destination=share_destination,
            amount=shares,
            authority=pool.authority,
        )
        logger.info(
            "Deposit pool=%s amount=%d shares=%d depositor=%s", pool.underlying_asset, amount, shares, depositor
        )
        return shares

    def withdraw(
        self,
        pool: PoolAuthority,
        shares: int,
        *,
        withdrawer: str,
        share_source: AccountId,
        destination: AccountId,
    ) -> int:
        require_external_caller(pool, operation="withdraw from", signer=withdrawer)
        share_account = self._ledger.get_account(share_source)
        if share_account.mint != pool.share_asset:
            raise WrongShareAccount(
                underlying_asset=pool.underlying_asset,
                account_id=share_source,
                expected_mint=pool.share_asset,
                actual_mint=share_account.mint,
            )

        amount_out = self.quote_withdraw(pool, shares)

        available = share_account.balance
        if shares > available:
            raise InsufficientShares(account_id=share_source, requested=shares, available=available)

        self._ledger.burn(asset_id=pool.share_asset, account_id=share_source, amount=shares, authority=withdrawer)
        self._ledger.transfer(source=pool.vault, destination=destination, amount=amount_out, authority=pool.authority)
        logger.info(
            "Withdraw pool=%s shares=%d amount=%d withdrawer=%s",
            pool.underlying_asset,
            shares,
            amount_out,
            withdrawer,
        )
        return amount_out

    @staticmethod
    def _degenerate(pool: PoolAuthority, share_supply: int) -> DegenerateShareSupply:
        error = DegenerateShareSupply(underlying_asset=pool.underlying_asset, share_supply=share_supply)
        logger.error("%s", error)
        return error


__all__ = ["ShareAccountingEngine"]
