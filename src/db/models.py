from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class PoolAuthorityOrm(Base):
    __tablename__ = "pool_authorities"

    underlying_asset: Mapped[str] = mapped_column(String, primary_key=True)
    share_asset: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    vault: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    authority: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    seed: Mapped[str] = mapped_column(String, nullable=False)
    bump: Mapped[int] = mapped_column(Integer, nullable=False)
    fee_rate_bps: Mapped[int] = mapped_column(Integer, nullable=False)
    admin_fee_bps: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    admin_account: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )
