from __future__ import annotations

from typing import NewType

AssetId = NewType("AssetId", str)
AccountId = NewType("AccountId", str)
AuthorityId = NewType("AuthorityId", str)
SequenceId = NewType("SequenceId", str)

BPS_DENOMINATOR = 10_000


def mul_div_floor(value: int, numerator: int, denominator: int) -> int:
    """Return floor(value * numerator / denominator) without intermediate overflow or float rounding."""
    if denominator <= 0:
        raise ValueError("denominator must be > 0")
    return (value * numerator) // denominator


def mul_div_ceil(value: int, numerator: int, denominator: int) -> int:
    if denominator <= 0:
        raise ValueError("denominator must be > 0")
    return -((-value * numerator) // denominator)


__all__ = [
    "AccountId",
    "AssetId",
    "AuthorityId",
    "BPS_DENOMINATOR",
    "SequenceId",
    "mul_div_ceil",
    "mul_div_floor",
]
