"""Sync - orchestration of platform syncs and their schedule."""

from sync.results import (
    SyncMode,
    SyncTrigger,
    StoreOutcome,
    SyncTotals,
    StoreError,
    SyncRunResult,
)
from sync.orchestrator import SyncOrchestrator
from sync.scheduler import SyncScheduler

__all__ = [
    "SyncMode",
    "SyncTrigger",
    "StoreOutcome",
    "SyncTotals",
    "StoreError",
    "SyncRunResult",
    "SyncOrchestrator",
    "SyncScheduler",
]
