import pytest
from pydantic import ValidationError

from config import AppSettings, config


def test_defaults() -> None:
    settings = AppSettings(_env_file=None)

    assert settings.pool_seed == "flash_loan"
    assert settings.fee_rate_bps == 30
    assert settings.admin_fee_bps == 0


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FEE_RATE_BPS", "9")
    monkeypatch.setenv("ADMIN_FEE_BPS", "1")
    monkeypatch.setenv("POOL_SEED", "custom")

    settings = AppSettings(_env_file=None)

    assert settings.fee_rate_bps == 9
    assert settings.admin_fee_bps == 1
    assert settings.pool_seed == "custom"


@pytest.mark.parametrize(
    "overrides",
    [
        {"fee_rate_bps": 10_001},
        {"fee_rate_bps": -1},
        {"fee_rate_bps": 10, "admin_fee_bps": 11},
        {"pool_seed": ""},
    ],
)
def test_invalid_settings_rejected(overrides: dict) -> None:
    with pytest.raises(ValidationError):
        AppSettings(_env_file=None, **overrides)


def test_config_is_loaded_once(monkeypatch: pytest.MonkeyPatch) -> None:
    config.cache_clear()
    monkeypatch.setenv("FEE_RATE_BPS", "12")

    first = config()
    monkeypatch.setenv("FEE_RATE_BPS", "50")

    assert first.fee_rate_bps == 12
    assert config() is first
    config.cache_clear()
