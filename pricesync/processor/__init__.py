"""
Processor package for spreadsheet parsing, validation and update jobs.
"""

from .pricing import (
    tier_price,
    is_valid_tier_price,
    to_decimal,
    tier_label,
    format_percentage,
)
from .spreadsheet import parse_spreadsheet, ParseError, ProductRow, ColumnMapping
from .validation import validate_products, find_duplicate_skus
from .stores import StoreResolver
from .progress import ProgressTracker, ProgressSnapshot, JobProgress
from .orchestrator import UpdateOrchestrator, determine_status, fields_for

__all__ = [
    "tier_price",
    "is_valid_tier_price",
    "to_decimal",
    "tier_label",
    "format_percentage",
    "parse_spreadsheet",
    "ParseError",
    "ProductRow",
    "ColumnMapping",
    "validate_products",
    "find_duplicate_skus",
    "StoreResolver",
    "ProgressTracker",
    "ProgressSnapshot",
    "JobProgress",
    "UpdateOrchestrator",
    "determine_status",
    "fields_for",
]
