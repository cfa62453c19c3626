"""
Spreadsheet upload routes: preview with validation, and start an update.
"""

import logging
from typing import List, Optional, Tuple

from fastapi import APIRouter, File, Form, HTTPException, UploadFile
from pydantic import Field, ValidationError

from ..config import settings
from ..db import CamelModel, Store, UpdateOptions
from ..dependencies import get_db, get_orchestrator, get_resolver
from ..processor import ColumnMapping, ParseError, ProductRow, parse_spreadsheet, validate_products

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/spreadsheet")


class UploadOptions(CamelModel):
    """JSON carried in the `options` form field."""
    stores: List[int] = Field(default_factory=list)
    update_options: UpdateOptions = Field(default_factory=UpdateOptions)
    mapping: Optional[ColumnMapping] = None


class PreviewResponse(CamelModel):
    filename: str
    record_count: int
    validation_issues: List[str]
    rows: List[ProductRow]


class ProcessResponse(CamelModel):
    update_id: int


async def _read_upload(
    file: Optional[UploadFile],
    options: Optional[str]
) -> Tuple[str, List[ProductRow], UploadOptions]:
    """Validate the request and parse the uploaded sheet."""
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="No file uploaded")

    if not options:
        raise HTTPException(status_code=400, detail="Missing options")
    try:
        parsed = UploadOptions.model_validate_json(options)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid options: {e.errors()[0]['msg']}")

    if not parsed.stores:
        raise HTTPException(status_code=400, detail="No stores selected")

    content = await file.read()
    if len(content) > settings.max_upload_bytes:
        raise HTTPException(
            status_code=400,
            detail=f"File too large (max {settings.max_upload_bytes // (1024 * 1024)} MB)"
        )

    try:
        rows = parse_spreadsheet(content, file.filename, settings.tier_discounts, parsed.mapping)
    except ParseError as e:
        raise HTTPException(status_code=400, detail=str(e))

    logger.info(f"Parsed {len(rows)} rows from {file.filename}")
    return file.filename, rows, parsed


@router.post("/preview", response_model=PreviewResponse, response_model_by_alias=True)
async def preview(
    file: Optional[UploadFile] = File(None),
    options: Optional[str] = Form(None)
):
    """Parse a sheet and report validation issues without changing anything."""
    filename, rows, parsed = await _read_upload(file, options)

    issues = await validate_products(
        rows,
        parsed.stores,
        settings.tier_discounts,
        get_resolver(),
        sample_size=settings.validation_sample_size,
    )

    return PreviewResponse(
        filename=filename,
        record_count=len(rows),
        validation_issues=issues,
        rows=rows[:settings.preview_row_limit],
    )


@router.post("/process", response_model=ProcessResponse, response_model_by_alias=True)
async def process(
    file: Optional[UploadFile] = File(None),
    options: Optional[str] = Form(None)
):
    """Start an update job in the background and return its id."""
    filename, rows, parsed = await _read_upload(file, options)
    db = get_db()

    found = await db.get_stores_by_ids(parsed.stores)
    unknown = [str(store_id) for store_id in parsed.stores if store_id not in found]
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown store(s): {', '.join(unknown)}")

    # Preserve the requested order, ignoring repeats
    stores: List[Store] = [found[store_id] for store_id in dict.fromkeys(parsed.stores)]

    job = await db.create_update(filename, len(rows), [s.id for s in stores], parsed.update_options)
    get_orchestrator().start(job, rows, stores, parsed.update_options)

    return ProcessResponse(update_id=job.id)
