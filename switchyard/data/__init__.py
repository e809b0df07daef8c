"""Test data isolation, compensating transactions and cleanup."""

from switchyard.data.cleanup import CleanupRegistry, CleanupResult, TrackedEntity
from switchyard.data.isolation import (
    IsolatedData,
    IsolationContext,
    IsolationContextFactory,
    IsolationDecorator,
    TestIdentity,
)
from switchyard.data.manager import (
    DataBackend,
    SeedProfile,
    TestDataConfig,
    TestDataHooks,
    TestDataManager,
)
from switchyard.data.transaction import TransactionLedger

__all__ = [
    "CleanupRegistry",
    "CleanupResult",
    "DataBackend",
    "IsolatedData",
    "IsolationContext",
    "IsolationContextFactory",
    "IsolationDecorator",
    "SeedProfile",
    "TestDataConfig",
    "TestDataHooks",
    "TestDataManager",
    "TestIdentity",
    "TrackedEntity",
    "TransactionLedger",
]
