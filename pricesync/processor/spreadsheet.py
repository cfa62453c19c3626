"""
Spreadsheet parser for price sheet uploads.

Reads the first worksheet of an .xlsx workbook (or a .csv file) into
ProductRow records. Rows that cannot be used are skipped rather than
rejected, and supplied tier prices that disagree with the calculated
price are flagged for the operator to review.
"""

import csv
import io
import logging
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence

from openpyxl import load_workbook
from pydantic import ConfigDict, Field

from ..db.models import CamelModel, Price
from .pricing import tier_label, tier_price, to_decimal

logger = logging.getLogger(__name__)

EXCEL_EXTENSIONS = (".xlsx", ".xlsm")
CSV_EXTENSIONS = (".csv",)


class ParseError(Exception):
    """The spreadsheet as a whole cannot be used."""
    pass


class ColumnMapping(CamelModel):
    """Header names for each field in the spreadsheet."""
    sku: str = "SKU"
    name: Optional[str] = "Product Name"
    regular_price: str = "Regular Price"
    # Tier name -> header; tiers left out use "<Tier> Price"
    tier_prices: Dict[str, str] = Field(default_factory=dict)
    quantity: Optional[str] = "Quantity"

    def tier_column(self, tier: str) -> str:
        return self.tier_prices.get(tier) or f"{tier_label(tier)} Price"


class ProductRow(CamelModel):
    """A normalized spreadsheet row."""
    model_config = ConfigDict(frozen=True)

    sku: str
    name: Optional[str] = None
    regular_price: Price
    tier_prices: Dict[str, Price] = Field(default_factory=dict)
    quantity: Optional[int] = None
    source_row_index: int
    tier_mismatch_flags: Dict[str, bool] = Field(default_factory=dict)

    @property
    def has_mismatch(self) -> bool:
        return any(self.tier_mismatch_flags.values())


def parse_spreadsheet(
    content: bytes,
    filename: str,
    tiers: Mapping[str, float],
    mapping: Optional[ColumnMapping] = None
) -> List[ProductRow]:
    """
    Parse an uploaded spreadsheet into product rows.

    Args:
        content: Raw file bytes
        filename: Original file name, used to pick the reader
        tiers: Tier name -> discount percentage
        mapping: Column mapping (defaults to the standard template)

    Returns:
        Product rows in sheet order

    Raises:
        ParseError: If the file is unreadable, has no data rows, or lacks the
                    SKU or Regular Price column
    """
    mapping = mapping or ColumnMapping()
    table = _read_table(content, filename)

    # Ignore completely blank lines (trailing rows, spacer rows)
    numbered = [
        (index, row) for index, row in enumerate(table, start=1)
        if any(not _is_blank(cell) for cell in row)
    ]

    if len(numbered) <= 1:
        raise ParseError("Spreadsheet is empty or contains only headers")

    header_row_number, header = numbered[0]
    columns = _locate_columns(header, mapping, tiers)

    if "sku" not in columns:
        raise ParseError(f"Could not find SKU column ({mapping.sku})")
    if "regular_price" not in columns:
        raise ParseError(f"Could not find Regular Price column ({mapping.regular_price})")

    products: List[ProductRow] = []
    skipped = 0

    for row_number, row in numbered[1:]:
        product = _parse_row(row, row_number, columns, tiers)
        if product is None:
            skipped += 1
            continue
        products.append(product)

    logger.info(
        f"Parsed {len(products)} rows from '{filename}' "
        f"({skipped} skipped, header on row {header_row_number})"
    )
    return products


def _read_table(content: bytes, filename: str) -> List[Sequence[Any]]:
    """Read the first sheet of a workbook (or a CSV file) as a list of rows."""
    lower_name = (filename or "").lower()

    if lower_name.endswith(CSV_EXTENSIONS):
        try:
            text = content.decode("utf-8-sig")
        except UnicodeDecodeError:
            text = content.decode("latin-1")
        return [row for row in csv.reader(io.StringIO(text))]

    if lower_name.endswith(EXCEL_EXTENSIONS):
        try:
            workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
        except Exception as e:
            raise ParseError(f"Failed to parse spreadsheet: {e}") from e

        try:
            worksheet = workbook.worksheets[0]
            return [row for row in worksheet.iter_rows(values_only=True)]
        finally:
            workbook.close()

    raise ParseError(
        f"Unsupported file type: {filename} (expected .xlsx or .csv)"
    )


def _locate_columns(
    header: Sequence[Any],
    mapping: ColumnMapping,
    tiers: Mapping[str, float]
) -> Dict[str, int]:
    """Map field keys ("sku", "tier:depot", ...) to column indices."""
    positions: Dict[str, int] = {}
    for index, cell in enumerate(header):
        if _is_blank(cell):
            continue
        # First occurrence wins for repeated headers
        positions.setdefault(str(cell).strip().lower(), index)

    wanted = {
        "sku": mapping.sku,
        "name": mapping.name,
        "regular_price": mapping.regular_price,
        "quantity": mapping.quantity,
    }
    for tier in tiers:
        wanted[f"tier:{tier}"] = mapping.tier_column(tier)

    columns: Dict[str, int] = {}
    for key, column_name in wanted.items():
        if not column_name:
            continue
        index = positions.get(column_name.strip().lower())
        if index is not None:
            columns[key] = index
    return columns


def _parse_row(
    row: Sequence[Any],
    row_number: int,
    columns: Dict[str, int],
    tiers: Mapping[str, float]
) -> Optional[ProductRow]:
    """Build a ProductRow, or None if the row has no SKU or no usable price."""
    sku = _normalize_sku(_cell(row, columns["sku"]))
    if not sku:
        return None

    regular_price = to_decimal(_cell(row, columns["regular_price"]))
    if regular_price is None or regular_price < 0:
        logger.debug(f"Skipping row {row_number} ({sku}): invalid regular price")
        return None

    name = None
    if "name" in columns:
        raw_name = _cell(row, columns["name"])
        name = "" if _is_blank(raw_name) else str(raw_name).strip()

    quantity = None
    if "quantity" in columns:
        quantity_value = to_decimal(_cell(row, columns["quantity"]))
        if quantity_value is not None and quantity_value >= 0:
            quantity = int(quantity_value)

    tier_prices: Dict[str, Decimal] = {}
    mismatch_flags: Dict[str, bool] = {}

    for tier, discount in tiers.items():
        calculated = tier_price(regular_price, discount)
        supplied = None
        key = f"tier:{tier}"
        if key in columns:
            supplied = to_decimal(_cell(row, columns[key]))

        if supplied is None:
            tier_prices[tier] = calculated
            mismatch_flags[tier] = False
        else:
            # Keep the operator's value; the mismatch is reported, not corrected
            tier_prices[tier] = supplied
            mismatch_flags[tier] = supplied != calculated

    return ProductRow(
        sku=sku,
        name=name,
        regular_price=regular_price,
        tier_prices=tier_prices,
        quantity=quantity,
        source_row_index=row_number,
        tier_mismatch_flags=mismatch_flags,
    )


def _cell(row: Sequence[Any], index: int) -> Any:
    return row[index] if index < len(row) else None


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _normalize_sku(value: Any) -> str:
    """SKUs typed as numbers come back from Excel as floats (1234.0)."""
    if _is_blank(value):
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()
