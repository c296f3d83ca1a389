from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from domain.pool import PoolAuthority
from domain.token_ledger import InMemoryTokenLedger

from .formatting import format_amount, format_share_price


@dataclass
class ShareHolding:
    account_id: str
    owner: str
    shares: int
    claim: int


@dataclass
class PoolSummary:
    underlying_asset: str
    share_asset: str
    decimals: int
    vault_balance: int
    share_supply: int
    share_price: Decimal | None
    holdings: list[ShareHolding] = field(default_factory=list)

    @property
    def holdings_match_supply(self) -> bool:
        return sum(holding.shares for holding in self.holdings) == self.share_supply

    @property
    def is_backed(self) -> bool:
        return self.share_supply == 0 or self.vault_balance > 0


def compute_pool_summary(pool: PoolAuthority, *, ledger: InMemoryTokenLedger) -> PoolSummary:
    vault_balance = ledger.balance_of(pool.vault)
    share_supply = ledger.supply_of(pool.share_asset)
    decimals = ledger.get_mint(pool.underlying_asset).decimals

    share_price = Decimal(vault_balance) / Decimal(share_supply) if share_supply > 0 else None

    holdings = [
        ShareHolding(
            account_id=account.account_id,
            owner=account.owner,
            shares=account.balance,
            claim=(account.balance * vault_balance) // share_supply if share_supply > 0 else 0,
        )
        for account in ledger.accounts_for(pool.share_asset)
        if account.balance > 0
    ]
    holdings.sort(key=lambda holding: (-holding.shares, holding.account_id))

    return PoolSummary(
        underlying_asset=pool.underlying_asset,
        share_asset=pool.share_asset,
        decimals=decimals,
        vault_balance=vault_balance,
        share_supply=share_supply,
        share_price=share_price,
        holdings=holdings,
    )


def render_pool_summary(summary: PoolSummary) -> None:
    print(f"Pool {summary.underlying_asset} (shares {summary.share_asset}):")
    print(f"  Vault balance: {format_amount(summary.vault_balance, summary.decimals)}")
    print(f"  Share supply:  {format_amount(summary.share_supply, summary.decimals)}")
    print(f"  Share price:   {format_share_price(summary.share_price)}")
    if not summary.holdings:
        print("  (no holders)")
        return

    shares_label = "Shares"
    claim_label = "Claim"

    rows: list[tuple[str, str, str]] = []
    for holding in summary.holdings:
        rows.append(
            (
                holding.account_id,
                format_amount(holding.shares, summary.decimals),
                format_amount(holding.claim, summary.decimals),
            )
        )

    account_width = max(len("Account"), max((len(account) for account, _, _ in rows), default=0))
    shares_width = max(len(shares_label), max((len(shares) for _, shares, _ in rows), default=0))
    claim_width = max(len(claim_label), max((len(claim) for _, _, claim in rows), default=0))

    header = f"{'Account':<{account_width}} {shares_label:>{shares_width}} {claim_label:>{claim_width}}"

    lines = [header, "-" * len(header)]

    for account_id, shares_text, claim_text in rows:
        lines.append(f"{account_id:<{account_width}} {shares_text:>{shares_width}} {claim_text:>{claim_width}}")

    lines.append("-" * len(header))
    print("\n".join(lines))
