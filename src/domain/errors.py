from __future__ import annotations


class PoolError(Exception):
    """Base class for every failure raised by the pool core."""


class UserError(PoolError):
    """Expected failure caused by caller input. Raised before any effect."""


class ProtocolSafetyError(PoolError):
    """Caller attempted to bypass flash-loan atomicity. Raised before any effect."""


class FatalInvariantError(PoolError):
    """The pool's backing guarantee was already broken by an earlier sequence."""


class InvalidAmount(UserError):
    def __init__(self, *, field: str, amount: int) -> None:
        self.field = field
        self.amount = amount
        super().__init__(f"{field} must be > 0, got {amount}")


class AmountTooSmall(UserError):
    def __init__(self, *, underlying_asset: str, amount: int, share_supply: int, vault_balance: int) -> None:
        self.underlying_asset = underlying_asset
        self.amount = amount
        self.share_supply = share_supply
        self.vault_balance = vault_balance
        super().__init__(
            f"Deposit of {amount} into pool={underlying_asset} would mint zero shares "
            f"(supply={share_supply} vault={vault_balance})"
        )


class InsufficientShares(UserError):
    def __init__(self, *, account_id: str, requested: int, available: int) -> None:
        self.account_id = account_id
        self.requested = requested
        self.available = available
        super().__init__(f"Insufficient shares in account={account_id} requested={requested} available={available}")


class InsufficientLiquidity(UserError):
    def __init__(self, *, underlying_asset: str, requested: int, available: int) -> None:
        self.underlying_asset = underlying_asset
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient liquidity in pool={underlying_asset} requested={requested} available={available}"
        )


class InsufficientRepayment(UserError):
    def __init__(self, *, underlying_asset: str, principal: int, fee_paid: int, principal_owed: int, fee_owed: int) -> None:
        self.underlying_asset = underlying_asset
        self.principal = principal
        self.fee_paid = fee_paid
        self.principal_owed = principal_owed
        self.fee_owed = fee_owed
        super().__init__(
            f"Repayment to pool={underlying_asset} too small: principal={principal}/{principal_owed} "
            f"fee={fee_paid}/{fee_owed}"
        )


class PoolEmpty(UserError):
    def __init__(self, *, underlying_asset: str) -> None:
        self.underlying_asset = underlying_asset
        super().__init__(f"Pool {underlying_asset} has no shares outstanding")


class NotFound(UserError):
    def __init__(self, *, underlying_asset: str) -> None:
        self.underlying_asset = underlying_asset
        super().__init__(f"No pool exists for asset={underlying_asset}")


class AlreadyExists(UserError):
    def __init__(self, *, underlying_asset: str) -> None:
        self.underlying_asset = underlying_asset
        super().__init__(f"A pool already exists for asset={underlying_asset}")


class DecimalsMismatch(UserError):
    def __init__(self, *, underlying_asset: str, share_asset: str, underlying_decimals: int, share_decimals: int) -> None:
        self.underlying_asset = underlying_asset
        self.share_asset = share_asset
        self.underlying_decimals = underlying_decimals
        self.share_decimals = share_decimals
        super().__init__(
            f"Share mint {share_asset} has {share_decimals} decimals, "
            f"underlying {underlying_asset} has {underlying_decimals}"
        )


class ShareAssetInUse(UserError):
    def __init__(self, *, share_asset: str, reason: str) -> None:
        self.share_asset = share_asset
        self.reason = reason
        super().__init__(f"Share mint {share_asset} cannot back a new pool: {reason}")


class InvalidFeeConfiguration(UserError):
    def __init__(self, *, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Invalid fee configuration: {reason}")


class WrongShareAccount(UserError):
    def __init__(self, *, underlying_asset: str, account_id: str, expected_mint: str, actual_mint: str) -> None:
        self.underlying_asset = underlying_asset
        self.account_id = account_id
        self.expected_mint = expected_mint
        self.actual_mint = actual_mint
        super().__init__(
            f"Account {account_id} holds {actual_mint}, pool={underlying_asset} shares are {expected_mint}"
        )


class ForbiddenCaller(UserError):
    def __init__(self, *, underlying_asset: str, operation: str, reason: str) -> None:
        self.underlying_asset = underlying_asset
        self.operation = operation
        self.reason = reason
        super().__init__(f"Cannot {operation} pool={underlying_asset}: {reason}")


class UnrepaidLoan(ProtocolSafetyError):
    def __init__(self, *, underlying_asset: str, principal: int, fee: int, reason: str) -> None:
        self.underlying_asset = underlying_asset
        self.principal = principal
        self.fee = fee
        self.reason = reason
        super().__init__(
            f"Loan of {principal} (fee {fee}) from pool={underlying_asset} is not repaid in sequence: {reason}"
        )


class BorrowBeforeRepay(ProtocolSafetyError):
    def __init__(self, *, underlying_asset: str, index: int) -> None:
        self.underlying_asset = underlying_asset
        self.index = index
        super().__init__(f"Another borrow from pool={underlying_asset} at index {index} precedes the repayment")


class NoActiveLoan(ProtocolSafetyError):
    def __init__(self, *, underlying_asset: str) -> None:
        self.underlying_asset = underlying_asset
        super().__init__(f"No active loan for pool={underlying_asset} in this sequence")


class DetachedOperation(ProtocolSafetyError):
    def __init__(self, *, underlying_asset: str, index: int) -> None:
        self.underlying_asset = underlying_asset
        self.index = index
        super().__init__(
            f"Borrow from pool={underlying_asset} is not the operation at index {index} of its sequence"
        )


class LoanOutstanding(ProtocolSafetyError):
    def __init__(self, *, underlying_asset: str, operation: str) -> None:
        self.underlying_asset = underlying_asset
        self.operation = operation
        super().__init__(f"Cannot {operation} pool={underlying_asset} while its flash loan is outstanding")


class DegenerateShareSupply(FatalInvariantError):
    def __init__(self, *, underlying_asset: str, share_supply: int) -> None:
        self.underlying_asset = underlying_asset
        self.share_supply = share_supply
        super().__init__(f"Pool {underlying_asset} has {share_supply} shares outstanding but an empty vault")


class InvariantViolation(FatalInvariantError):
    def __init__(self, *, underlying_asset: str, vault_balance: int, required_balance: int) -> None:
        self.underlying_asset = underlying_asset
        self.vault_balance = vault_balance
        self.required_balance = required_balance
        super().__init__(
            f"Vault of pool={underlying_asset} holds {vault_balance} after repayment, required {required_balance}"
        )
