from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Protocol

from .base_types import AccountId, AssetId

logger = logging.getLogger(__name__)


class TokenLedgerError(Exception):
    """Base class for failures reported by a token ledger."""


class InsufficientBalanceError(TokenLedgerError):
    def __init__(
        self,
        *,
        account_id: str,
        asset_id: str,
        attempted_quantity: int,
        available_balance: int,
    ) -> None:
        self.account_id = account_id
        self.asset_id = asset_id
        self.attempted_quantity = attempted_quantity
        self.available_balance = available_balance
        message = (
            f"Insufficient balance for asset={asset_id} account={account_id} "
            f"attempted={attempted_quantity} available={available_balance}"
        )
        super().__init__(message)


class UnauthorizedError(TokenLedgerError):
    def __init__(self, *, action: str, target: str, expected: str | None, signer: str) -> None:
        self.action = action
        self.target = target
        self.expected = expected
        self.signer = signer
        super().__init__(f"{signer} is not allowed to {action} {target} (authority={expected})")


class UnknownAccountError(TokenLedgerError):
    def __init__(self, kind: str, identifier: str) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"Unknown {kind}: {identifier}")


class MintMismatchError(TokenLedgerError):
    def __init__(self, *, account_id: str, expected_mint: str, actual_mint: str) -> None:
        self.account_id = account_id
        self.expected_mint = expected_mint
        self.actual_mint = actual_mint
        super().__init__(f"Account {account_id} holds {actual_mint}, expected {expected_mint}")


@dataclass
class Mint:
    asset_id: AssetId
    decimals: int
    mint_authority: str | None
    supply: int = 0


@dataclass
class TokenAccount:
    account_id: AccountId
    mint: AssetId
    owner: str
    balance: int = 0


class TokenLedger(Protocol):
    """Fungible balances consumed by the pool engines. Each call is atomic and authorization-checked."""

    def get_mint(self, asset_id: AssetId) -> Mint: ...

    def get_account(self, account_id: AccountId) -> TokenAccount: ...

    def balance_of(self, account_id: AccountId) -> int: ...

    def supply_of(self, asset_id: AssetId) -> int: ...

    def create_account(self, *, account_id: AccountId, mint: AssetId, owner: str) -> TokenAccount: ...

    def transfer(self, *, source: AccountId, destination: AccountId, amount: int, authority: str) -> None: ...

    def mint_to(self, *, asset_id: AssetId, destination: AccountId, amount: int, authority: str) -> None: ...

    def burn(self, *, asset_id: AssetId, account_id: AccountId, amount: int, authority: str) -> None: ...

    def set_mint_authority(self, *, asset_id: AssetId, current_authority: str, new_authority: str) -> None: ...


@dataclass(frozen=True)
class LedgerSnapshot:
    mints: dict[AssetId, Mint]
    accounts: dict[AccountId, TokenAccount]


class InMemoryTokenLedger(TokenLedger):
    def __init__(self) -> None:
        self._mints: dict[AssetId, Mint] = {}
        self._accounts: dict[AccountId, TokenAccount] = {}

    def create_mint(self, *, asset_id: AssetId, decimals: int, mint_authority: str | None) -> Mint:
        if asset_id in self._mints:
            raise TokenLedgerError(f"Mint already exists: {asset_id}")
        if decimals < 0:
            raise TokenLedgerError(f"Mint decimals must be >= 0, got {decimals}")
        mint = Mint(asset_id=asset_id, decimals=decimals, mint_authority=mint_authority)
        self._mints[asset_id] = mint
        return mint

    def create_account(self, *, account_id: AccountId, mint: AssetId, owner: str) -> TokenAccount:
        if account_id in self._accounts:
            raise TokenLedgerError(f"Account already exists: {account_id}")
        self.get_mint(mint)
        account = TokenAccount(account_id=account_id, mint=mint, owner=owner)
        self._accounts[account_id] = account
        return account

    def get_mint(self, asset_id: AssetId) -> Mint:
        try:
            return self._mints[asset_id]
        except KeyError:
            raise UnknownAccountError("mint", asset_id) from None

    def get_account(self, account_id: AccountId) -> TokenAccount:
        try:
            return self._accounts[account_id]
        except KeyError:
            raise UnknownAccountError("account", account_id) from None

    def balance_of(self, account_id: AccountId) -> int:
        return self.get_account(account_id).balance

    def supply_of(self, asset_id: AssetId) -> int:
        return self.get_mint(asset_id).supply

    def accounts_for(self, asset_id: AssetId) -> list[TokenAccount]:
        return sorted(
            (account for account in self._accounts.values() if account.mint == asset_id),
            key=lambda account: account.account_id,
        )

    def transfer(self, *, source: AccountId, destination: AccountId, amount: int, authority: str) -> None:
        self._require_non_negative(amount)
        source_account = self.get_account(source)
        destination_account = self.get_account(destination)
        if source_account.owner != authority:
            raise UnauthorizedError(action="transfer from", target=source, expected=source_account.owner, signer=authority)
        if destination_account.mint != source_account.mint:
            raise MintMismatchError(
                account_id=destination,
                expected_mint=source_account.mint,
                actual_mint=destination_account.mint,
            )
        self._debit(source_account, amount)
        destination_account.balance += amount

    def mint_to(self, *, asset_id: AssetId, destination: AccountId, amount: int, authority: str) -> None:
        self._require_non_negative(amount)
        mint = self.get_mint(asset_id)
        account = self.get_account(destination)
        if mint.mint_authority is None or mint.mint_authority != authority:
            raise UnauthorizedError(action="mint", target=asset_id, expected=mint.mint_authority, signer=authority)
        if account.mint != asset_id:
            raise MintMismatchError(account_id=destination, expected_mint=asset_id, actual_mint=account.mint)
        account.balance += amount
        mint.supply += amount

    def burn(self, *, asset_id: AssetId, account_id: AccountId, amount: int, authority: str) -> None:
        self._require_non_negative(amount)
        mint = self.get_mint(asset_id)
        account = self.get_account(account_id)
        if account.owner != authority:
            raise UnauthorizedError(action="burn from", target=account_id, expected=account.owner, signer=authority)
        if account.mint != asset_id:
            raise MintMismatchError(account_id=account_id, expected_mint=asset_id, actual_mint=account.mint)
        self._debit(account, amount)
        mint.supply -= amount

    def set_mint_authority(self, *, asset_id: AssetId, current_authority: str, new_authority: str) -> None:
        mint = self.get_mint(asset_id)
        if mint.mint_authority is None or mint.mint_authority != current_authority:
            raise UnauthorizedError(
                action="change authority of",
                target=asset_id,
                expected=mint.mint_authority,
                signer=current_authority,
            )
        mint.mint_authority = new_authority
        logger.debug("Mint authority of %s moved to %s", asset_id, new_authority)

    def snapshot(self) -> LedgerSnapshot:
        return LedgerSnapshot(mints=copy.deepcopy(self._mints), accounts=copy.deepcopy(self._accounts))

    def restore(self, snapshot: LedgerSnapshot) -> None:
        self._mints = copy.deepcopy(snapshot.mints)
        self._accounts = copy.deepcopy(snapshot.accounts)

    @staticmethod
    def _require_non_negative(amount: int) -> None:
        if amount < 0:
            raise TokenLedgerError(f"Amount must be >= 0, got {amount}")

    @staticmethod
    def _debit(account: TokenAccount, amount: int) -> None:
        if account.balance < amount:
            raise InsufficientBalanceError(
                account_id=account.account_id,
                asset_id=account.mint,
                attempted_quantity=amount,
                available_balance=account.balance,
            )
        account.balance -= amount
