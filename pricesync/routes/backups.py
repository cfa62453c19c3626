"""
Backup restore route.
"""

import logging

from fastapi import APIRouter, HTTPException

from ..db import CamelModel
from ..dependencies import get_resolver
from ..opencart import OpenCartClientError, RestoreResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/backups")


class RestoreRequest(CamelModel):
    store_id: int
    backup_name: str


@router.post("/restore", response_model=RestoreResult, response_model_by_alias=True)
async def restore(request: RestoreRequest):
    """Write a backup's saved values back to its store."""
    resolver = get_resolver()

    store = await resolver.get_store(request.store_id)
    if not store:
        raise HTTPException(status_code=404, detail="Store not found")

    try:
        connector = await resolver.get_connector(store)
    except OpenCartClientError as e:
        logger.error(f"Restore of {request.backup_name} to '{store.name}' failed: {e}")
        return RestoreResult(success=False, message=str(e))

    result = await connector.restore(request.backup_name)
    logger.info(f"Restore of {request.backup_name} to '{store.name}': {result.message}")
    return result
