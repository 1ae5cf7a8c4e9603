"""Sync trigger and status endpoints."""

from typing import Any, Dict

from fastapi import APIRouter, Request
from pydantic import BaseModel

from storage import sync_status
from sync import SyncMode, SyncRunResult


router = APIRouter()


class SyncRequest(BaseModel):
    """Manual sync request."""
    mode: SyncMode = SyncMode.INCREMENTAL


@router.post("", response_model=SyncRunResult)
async def trigger_sync(request: Request, body: SyncRequest = SyncRequest()) -> SyncRunResult:
    """Run a sync now. Responds 409 while another run is in flight."""
    return await request.app.state.scheduler.trigger(body.mode)


@router.get("/status")
def get_sync_status(request: Request) -> Dict[str, Any]:
    """Per-store record counts and last sync times, plus scheduler state."""
    settings = request.app.state.settings
    return {
        "stores": sync_status(settings.db_path, settings.stores),
        "scheduler": request.app.state.scheduler.state(),
    }
