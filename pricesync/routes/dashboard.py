"""
Dashboard counters.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter

from ..db import CamelModel
from ..dependencies import get_db

router = APIRouter(prefix="/api/dashboard")


class DashboardStats(CamelModel):
    total_products: int
    recent_updates: int
    connected_stores: int
    total_stores: int
    last_update_time: Optional[datetime] = None


@router.get("/stats", response_model=DashboardStats, response_model_by_alias=True)
async def stats():
    """Products updated, updates in the last week and store connection counts."""
    return DashboardStats(**await get_db().get_stats())
