"""Domain models and engines for single-asset lending pools.

This package holds the pool record and its authority derivation, the
share-accounting and flash-loan engines, the typed operations making up an
atomic sequence, and the in-memory token ledger the engines run against. They
are independent from persistence models so that accounting rules and tests can
evolve without DB coupling.
"""

__all__ = [
    "atomic",
    "base_types",
    "errors",
    "flash_loan",
    "operations",
    "pool",
    "registry",
    "share_accounting",
    "token_ledger",
]
