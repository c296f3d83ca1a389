from __future__ import annotations

import logging
from typing import Protocol

from .base_types import BPS_DENOMINATOR, AccountId, AssetId
from .errors import AlreadyExists, DecimalsMismatch, InvalidFeeConfiguration, NotFound, ShareAssetInUse
from .pool import PoolAuthority, derive_authority, derive_vault
from .token_ledger import TokenLedger

logger = logging.getLogger(__name__)


class PoolStore(Protocol):
    def get(self, underlying_asset: AssetId) -> PoolAuthority | None: ...

    def get_by_share_asset(self, share_asset: AssetId) -> PoolAuthority | None: ...

    def add(self, pool: PoolAuthority) -> PoolAuthority: ...

    def list(self) -> list[PoolAuthority]: ...


class InMemoryPoolStore(PoolStore):
    def __init__(self) -> None:
        self._pools: dict[AssetId, PoolAuthority] = {}

    def get(self, underlying_asset: AssetId) -> PoolAuthority | None:
        return self._pools.get(underlying_asset)

    def get_by_share_asset(self, share_asset: AssetId) -> PoolAuthority | None:
        for pool in self._pools.values():
            if pool.share_asset == share_asset:
                return pool
        return None

    def add(self, pool: PoolAuthority) -> PoolAuthority:
        if pool.underlying_asset in self._pools:
            raise AlreadyExists(underlying_asset=pool.underlying_asset)
        self._pools[pool.underlying_asset] = pool
        return pool

    def list(self) -> list[PoolAuthority]:
        return [self._pools[key] for key in sorted(self._pools)]


class PoolRegistry:
    """Create and rediscover pools keyed by their underlying asset."""

    def __init__(
        self,
        *,
        ledger: TokenLedger,
        store: PoolStore,
        seed: str,
        program_id: str,
        default_fee_rate_bps: int,
        default_admin_fee_bps: int = 0,
    ) -> None:
        self._ledger = ledger
        self._store = store
        self.seed = seed
        self.program_id = program_id
        self.default_fee_rate_bps = default_fee_rate_bps
        self.default_admin_fee_bps = default_admin_fee_bps

    def create(
        self,
        underlying_asset: AssetId,
        *,
        share_asset: AssetId,
        share_asset_authority: str,
        fee_rate_bps: int | None = None,
        admin_fee_bps: int | None = None,
        admin_account: AccountId | None = None,
    ) -> PoolAuthority:
        if self._store.get(underlying_asset) is not None:
            raise AlreadyExists(underlying_asset=underlying_asset)

        fee_rate_bps = self.default_fee_rate_bps if fee_rate_bps is None else fee_rate_bps
        admin_fee_bps = self.default_admin_fee_bps if admin_fee_bps is None else admin_fee_bps
        self._validate_fees(underlying_asset, fee_rate_bps, admin_fee_bps, admin_account)
        self._validate_share_asset(underlying_asset, share_asset)

        authority, bump = derive_authority(underlying_asset, seed=self.seed, program_id=self.program_id)
        vault = derive_vault(authority, program_id=self.program_id)

        pool = PoolAuthority(
            underlying_asset=underlying_asset,
            share_asset=share_asset,
            vault=vault,
            authority=authority,
            seed=self.seed,
            bump=bump,
            fee_rate_bps=fee_rate_bps,
            admin_fee_bps=admin_fee_bps,
            admin_account=admin_account,
        )

        self._ledger.set_mint_authority(
            asset_id=share_asset,
            current_authority=share_asset_authority,
            new_authority=authority,
        )
        self._ledger.create_account(account_id=vault, mint=underlying_asset, owner=authority)
        self._store.add(pool)

        logger.info(
            "Created pool asset=%s share=%s authority=%s bump=%d fee_bps=%d",
            underlying_asset,
            share_asset,
            authority,
            bump,
            fee_rate_bps,
        )
        return pool

    def resolve(self, underlying_asset: AssetId) -> PoolAuthority:
        pool = self._store.get(underlying_asset)
        if pool is None:
            raise NotFound(underlying_asset=underlying_asset)
        return pool

    def list(self) -> list[PoolAuthority]:
        return self._store.list()

    def _validate_share_asset(self, underlying_asset: AssetId, share_asset: AssetId) -> None:
        if share_asset == underlying_asset:
            raise ShareAssetInUse(share_asset=share_asset, reason="share mint is the underlying mint")
        if self._store.get(share_asset) is not None:
            raise ShareAssetInUse(share_asset=share_asset, reason="share mint is the underlying asset of another pool")
        if self._store.get_by_share_asset(share_asset) is not None:
            raise ShareAssetInUse(share_asset=share_asset, reason="share mint already backs another pool")

        underlying_mint = self._ledger.get_mint(underlying_asset)
        share_mint = self._ledger.get_mint(share_asset)
        if share_mint.decimals != underlying_mint.decimals:
            raise DecimalsMismatch(
                underlying_asset=underlying_asset,
                share_asset=share_asset,
                underlying_decimals=underlying_mint.decimals,
                share_decimals=share_mint.decimals,
            )
        if share_mint.supply != 0:
            raise ShareAssetInUse(share_asset=share_asset, reason=f"share mint has supply {share_mint.supply}")

    def _validate_fees(
        self,
        underlying_asset: AssetId,
        fee_rate_bps: int,
        admin_fee_bps: int,
        admin_account: AccountId | None,
    ) -> None:
        if not 0 <= fee_rate_bps <= BPS_DENOMINATOR:
            raise InvalidFeeConfiguration(reason=f"fee_rate_bps={fee_rate_bps} outside 0..{BPS_DENOMINATOR}")
        if not 0 <= admin_fee_bps <= fee_rate_bps:
            raise InvalidFeeConfiguration(reason=f"admin_fee_bps={admin_fee_bps} outside 0..{fee_rate_bps}")
        if admin_fee_bps > 0:
            if admin_account is None:
                raise InvalidFeeConfiguration(reason="admin_account is required when admin_fee_bps > 0")
            account = self._ledger.get_account(admin_account)
            if account.mint != underlying_asset:
                raise InvalidFeeConfiguration(reason=f"admin_account {admin_account} does not hold {underlying_asset}")


__all__ = ["InMemoryPoolStore", "PoolRegistry", "PoolStore"]
