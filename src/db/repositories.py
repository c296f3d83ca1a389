from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from db import models
from domain.base_types import AccountId, AssetId, AuthorityId
from domain.errors import AlreadyExists, ShareAssetInUse
from domain.pool import PoolAuthority
from domain.registry import PoolStore


class PoolAuthorityRepository(PoolStore):
    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, underlying_asset: AssetId) -> PoolAuthority | None:
        orm_pool = self._session.get(models.PoolAuthorityOrm, underlying_asset)
        if orm_pool is None:
            return None
        return self._to_domain(orm_pool)

    def get_by_share_asset(self, share_asset: AssetId) -> PoolAuthority | None:
        orm_pool = self._session.scalars(
            select(models.PoolAuthorityOrm).where(models.PoolAuthorityOrm.share_asset == share_asset)
        ).one_or_none()
        if orm_pool is None:
            return None
        return self._to_domain(orm_pool)

    def add(self, pool: PoolAuthority) -> PoolAuthority:
        if self.get(pool.underlying_asset) is not None:
            raise AlreadyExists(underlying_asset=pool.underlying_asset)
        if self.get_by_share_asset(pool.share_asset) is not None:
            raise ShareAssetInUse(share_asset=pool.share_asset, reason="share mint already backs another pool")

        orm_pool = models.PoolAuthorityOrm(
            underlying_asset=pool.underlying_asset,
            share_asset=pool.share_asset,
            vault=pool.vault,
            authority=pool.authority,
            seed=pool.seed,
            bump=pool.bump,
            fee_rate_bps=pool.fee_rate_bps,
            admin_fee_bps=pool.admin_fee_bps,
            admin_account=pool.admin_account,
        )
        self._session.add(orm_pool)
        try:
            self._session.commit()
        except IntegrityError as err:
            self._session.rollback()
            raise AlreadyExists(underlying_asset=pool.underlying_asset) from err
        self._session.refresh(orm_pool)
        return self._to_domain(orm_pool)

    def list(self) -> list[PoolAuthority]:
        orm_pools = self._session.scalars(
            select(models.PoolAuthorityOrm).order_by(models.PoolAuthorityOrm.underlying_asset.asc())
        ).all()
        return [self._to_domain(pool) for pool in orm_pools]

    @staticmethod
    def _to_domain(orm_pool: models.PoolAuthorityOrm) -> PoolAuthority:
        admin_account = AccountId(orm_pool.admin_account) if orm_pool.admin_account is not None else None
        return PoolAuthority(
            underlying_asset=AssetId(orm_pool.underlying_asset),
            share_asset=AssetId(orm_pool.share_asset),
            vault=AccountId(orm_pool.vault),
            authority=AuthorityId(orm_pool.authority),
            seed=orm_pool.seed,
            bump=orm_pool.bump,
            fee_rate_bps=orm_pool.fee_rate_bps,
            admin_fee_bps=orm_pool.admin_fee_bps,
            admin_account=admin_account,
        )
