from typing import Generator

import pytest
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from config import AppSettings
from db.models import Base
from domain.flash_loan import FlashLoanEngine
from domain.pool import PoolAuthority
from domain.registry import InMemoryPoolStore, PoolRegistry
from domain.share_accounting import ShareAccountingEngine
from domain.token_ledger import InMemoryTokenLedger
from services.pool_service import LendingPoolService, build_service
from tests.constants import SHARE_CREATOR, USDC, USDC_SHARES
from tests.helpers.ledger_setup import build_ledger

engine: Engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
session_factory = sessionmaker(engine)


@pytest.fixture(scope="function")
def test_session() -> Generator[Session, None, None]:
    with session_factory() as session:
        yield session


@pytest.fixture(scope="function", autouse=True)
def reset_db() -> Generator[None, None, None]:
    Base.metadata.create_all(engine)
    yield
    Base.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def settings() -> AppSettings:
    return AppSettings(
        _env_file=None,
        pool_seed="flash_loan",
        program_id="flash-pool-test",
        fee_rate_bps=30,
        admin_fee_bps=0,
        database_url="sqlite:///:memory:",
    )


@pytest.fixture(scope="function")
def ledger() -> InMemoryTokenLedger:
    return build_ledger()


@pytest.fixture(scope="function")
def registry(ledger: InMemoryTokenLedger, settings: AppSettings) -> PoolRegistry:
    return PoolRegistry(
        ledger=ledger,
        store=InMemoryPoolStore(),
        seed=settings.pool_seed,
        program_id=settings.program_id,
        default_fee_rate_bps=settings.fee_rate_bps,
        default_admin_fee_bps=settings.admin_fee_bps,
    )


@pytest.fixture(scope="function")
def service(ledger: InMemoryTokenLedger, settings: AppSettings) -> LendingPoolService:
    return build_service(settings, ledger=ledger, store=InMemoryPoolStore())


@pytest.fixture(scope="function")
def pool(service: LendingPoolService) -> PoolAuthority:
    return service.create_pool(USDC, share_asset=USDC_SHARES, share_asset_authority=SHARE_CREATOR)


@pytest.fixture(scope="function")
def share_engine(ledger: InMemoryTokenLedger) -> ShareAccountingEngine:
    return ShareAccountingEngine(ledger=ledger)


@pytest.fixture(scope="function")
def flash_engine(ledger: InMemoryTokenLedger) -> FlashLoanEngine:
    return FlashLoanEngine(ledger=ledger)
