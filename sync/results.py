"""Sync run result models.

A SyncRunResult is built per invocation and returned to the caller; it is
not persisted.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


class SyncMode(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"


class SyncTrigger(str, Enum):
    SCHEDULED = "scheduled"
    MANUAL = "manual"


ENTITY_KINDS = ("orders", "products", "customers")


class StoreOutcome(BaseModel):
    """What one store contributed to a run."""
    model_config = ConfigDict(populate_by_name=True)

    platform_type: str
    platform_name: str
    orders_synced: int = 0
    products_synced: int = 0
    customers_synced: int = 0
    skipped: Dict[str, int] = Field(default_factory=dict)
    errors: List[str] = Field(default_factory=list)
    duration_ms: Optional[float] = None

    @computed_field
    @property
    def error(self) -> Optional[str]:
        """All phase errors of the store joined, or None when it fully succeeded."""
        return "; ".join(self.errors) if self.errors else None

    @property
    def label(self) -> str:
        return f"{self.platform_type}:{self.platform_name}"

    @property
    def synced_total(self) -> int:
        return self.orders_synced + self.products_synced + self.customers_synced

    def add_synced(self, kind: str, count: int) -> None:
        setattr(self, f"{kind}_synced", getattr(self, f"{kind}_synced") + count)

    def add_skipped(self, kind: str, count: int) -> None:
        if count:
            self.skipped[kind] = self.skipped.get(kind, 0) + count


class SyncTotals(BaseModel):
    orders_synced: int = 0
    products_synced: int = 0
    customers_synced: int = 0
    records_skipped: int = 0


class StoreError(BaseModel):
    platform: str
    error: str


class SyncRunResult(BaseModel):
    """Outcome of one orchestrator pass over every configured store."""
    run_id: str
    mode: SyncMode
    trigger: SyncTrigger = SyncTrigger.MANUAL
    started_at: datetime
    finished_at: Optional[datetime] = None
    stores: List[StoreOutcome] = Field(default_factory=list)

    @computed_field
    @property
    def totals(self) -> SyncTotals:
        return SyncTotals(
            orders_synced=sum(s.orders_synced for s in self.stores),
            products_synced=sum(s.products_synced for s in self.stores),
            customers_synced=sum(s.customers_synced for s in self.stores),
            records_skipped=sum(sum(s.skipped.values()) for s in self.stores),
        )

    @computed_field
    @property
    def errors(self) -> List[StoreError]:
        """One entry per failed store."""
        return [StoreError(platform=s.label, error=s.error) for s in self.stores if s.error]

    @computed_field
    @property
    def success(self) -> bool:
        if not self.stores:
            return False
        if not self.errors:
            return True
        return self.totals.orders_synced + self.totals.products_synced + self.totals.customers_synced > 0
