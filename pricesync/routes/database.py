"""
Store database connection test route.
"""

from fastapi import APIRouter

from ..config import settings
from ..db import ConnectionParams
from ..opencart import ConnectionTestResult, check_connection

router = APIRouter(prefix="/api/database")


@router.post("/test-connection", response_model=ConnectionTestResult, response_model_by_alias=True)
async def test_connection(params: ConnectionParams):
    """
    Try the given credentials without saving them.

    Always answers 200; failures are reported in the body.
    """
    return await check_connection(params, settings)
