from __future__ import annotations

import hashlib

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .base_types import BPS_DENOMINATOR, AccountId, AssetId, AuthorityId
from .errors import ForbiddenCaller

DERIVED_PREFIX = "pda:"
_DERIVATION_MARKER = b"PoolDerivedAuthority"
_VAULT_SEED = b"vault"


class PoolAuthority(BaseModel):
    """Binding of one underlying mint to its share mint, vault and derived authority."""

    model_config = ConfigDict(frozen=True)

    underlying_asset: AssetId
    share_asset: AssetId
    vault: AccountId
    authority: AuthorityId
    seed: str
    bump: int = Field(ge=0, le=255)
    fee_rate_bps: int = Field(ge=0, le=BPS_DENOMINATOR)
    admin_fee_bps: int = Field(default=0, ge=0, le=BPS_DENOMINATOR)
    admin_account: AccountId | None = None

    @model_validator(mode="after")
    def _validate_fields(self) -> PoolAuthority:
        if self.share_asset == self.underlying_asset:
            raise ValueError("share_asset must differ from underlying_asset")
        if self.admin_fee_bps > self.fee_rate_bps:
            raise ValueError("admin_fee_bps must be <= fee_rate_bps")
        if self.admin_fee_bps > 0 and self.admin_account is None:
            raise ValueError("admin_account is required when admin_fee_bps > 0")
        return self


def _is_derived_digest(digest: bytes) -> bool:
    # Derived identities live in the half of the digest space with the top bit of the last byte clear.
    return digest[-1] & 0x80 == 0


def derive_address(seeds: list[bytes], program_id: str) -> tuple[str, int]:
    """Find the first bump, counting down from 255, whose digest is a derived identity.

    Returns the rendered identity and the bump that produced it.
    """
    for bump in range(255, -1, -1):
        hasher = hashlib.sha256()
        for seed in seeds:
            hasher.update(seed)
        hasher.update(bytes([bump]))
        hasher.update(program_id.encode("utf-8"))
        hasher.update(_DERIVATION_MARKER)
        digest = hasher.digest()
        if _is_derived_digest(digest):
            return f"{DERIVED_PREFIX}{digest.hex()}", bump
    raise ValueError(f"No valid bump for seeds={seeds!r}")


def derive_authority(underlying_asset: AssetId, *, seed: str, program_id: str) -> tuple[AuthorityId, int]:
    address, bump = derive_address([seed.encode("utf-8"), underlying_asset.encode("utf-8")], program_id)
    return AuthorityId(address), bump


def derive_vault(authority: AuthorityId, *, program_id: str) -> AccountId:
    address, _ = derive_address([authority.encode("utf-8"), _VAULT_SEED], program_id)
    return AccountId(address)


def verify_authority(pool: PoolAuthority, authority: str, *, program_id: str) -> bool:
    expected, bump = derive_authority(pool.underlying_asset, seed=pool.seed, program_id=program_id)
    return expected == authority == pool.authority and bump == pool.bump


def is_derived_identity(identity: str) -> bool:
    return identity.startswith(DERIVED_PREFIX)


def require_external_caller(
    pool: PoolAuthority, *, operation: str, signer: str, source: AccountId | None = None
) -> None:
    """Reject callers that sign with a derived authority or spend from the pool vault.

    Only the engines sign for a derived authority.
    """
    if is_derived_identity(signer):
        raise ForbiddenCaller(
            underlying_asset=pool.underlying_asset,
            operation=operation,
            reason=f"signer {signer} is a derived authority",
        )
    if source is not None and source == pool.vault:
        raise ForbiddenCaller(
            underlying_asset=pool.underlying_asset,
            operation=operation,
            reason="source is the pool vault",
        )


__all__ = [
    "DERIVED_PREFIX",
    "PoolAuthority",
    "derive_address",
    "derive_authority",
    "derive_vault",
    "is_derived_identity",
    "require_external_caller",
    "verify_authority",
]
