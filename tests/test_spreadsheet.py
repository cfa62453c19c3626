"""
Tests for spreadsheet parsing.
"""

import io

import pytest
from decimal import Decimal
from openpyxl import Workbook

from pricesync.processor.spreadsheet import (
    ColumnMapping,
    ParseError,
    parse_spreadsheet,
)

TIERS = {"depot": 18, "warehouse": 26}

HEADER = ["SKU", "Product Name", "Regular Price", "Depot Price", "Warehouse Price", "Quantity"]


def make_xlsx(rows):
    """Build an .xlsx file in memory."""
    workbook = Workbook()
    sheet = workbook.active
    for row in rows:
        sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def make_csv(rows):
    lines = [",".join("" if cell is None else str(cell) for cell in row) for row in rows]
    return ("\n".join(lines) + "\n").encode("utf-8")


class TestParseXlsx:
    """Tests for .xlsx uploads."""

    def test_parses_all_fields(self):
        content = make_xlsx([
            HEADER,
            ["ABC-1", "Widget", 1999, 1639, 1479, 12],
        ])

        rows = parse_spreadsheet(content, "prices.xlsx", TIERS)

        assert len(rows) == 1
        row = rows[0]
        assert row.sku == "ABC-1"
        assert row.name == "Widget"
        assert row.regular_price == Decimal("1999")
        assert row.tier_prices == {"depot": Decimal("1639"), "warehouse": Decimal("1479")}
        assert row.quantity == 12
        assert row.source_row_index == 2
        assert row.has_mismatch is False

    def test_missing_tier_columns_are_calculated(self):
        content = make_xlsx([
            ["SKU", "Regular Price"],
            ["A", 150],
        ])

        rows = parse_spreadsheet(content, "prices.xlsx", {"depot": 1})

        assert rows[0].tier_prices == {"depot": Decimal("149")}
        assert rows[0].tier_mismatch_flags == {"depot": False}
        assert rows[0].quantity is None

    def test_supplied_mismatch_is_kept_and_flagged(self):
        content = make_xlsx([
            HEADER,
            ["A", "Widget", 1999, 1600, 1479, 1],
        ])

        row = parse_spreadsheet(content, "prices.xlsx", TIERS)[0]

        assert row.tier_prices["depot"] == Decimal("1600")
        assert row.tier_mismatch_flags == {"depot": True, "warehouse": False}
        assert row.has_mismatch is True

    def test_blank_tier_cell_is_calculated(self):
        content = make_xlsx([
            HEADER,
            ["A", "Widget", 1999, None, "n/a", 1],
        ])

        row = parse_spreadsheet(content, "prices.xlsx", TIERS)[0]

        assert row.tier_prices == {"depot": Decimal("1639"), "warehouse": Decimal("1479")}
        assert row.has_mismatch is False

    def test_numeric_sku_loses_float_suffix(self):
        content = make_xlsx([
            ["SKU", "Regular Price"],
            [1234.0, 10],
        ])

        rows = parse_spreadsheet(content, "prices.xlsx", TIERS)

        assert rows[0].sku == "1234"

    def test_skips_unusable_rows(self):
        content = make_xlsx([
            HEADER,
            ["A", "Good", 100, None, None, 1],
            [None, "No SKU", 100, None, None, 1],
            ["B", "Bad price", "abc", None, None, 1],
            ["C", "Negative", -5, None, None, 1],
            ["D", "Also good", 200, None, None, None],
        ])

        rows = parse_spreadsheet(content, "prices.xlsx", TIERS)

        assert [r.sku for r in rows] == ["A", "D"]
        assert [r.source_row_index for r in rows] == [2, 6]

    def test_negative_quantity_is_ignored(self):
        content = make_xlsx([
            HEADER,
            ["A", "Widget", 100, None, None, -3],
        ])

        assert parse_spreadsheet(content, "prices.xlsx", TIERS)[0].quantity is None

    def test_headers_are_case_insensitive(self):
        content = make_xlsx([
            ["sku", " regular price "],
            ["A", 100],
        ])

        assert parse_spreadsheet(content, "prices.xlsx", TIERS)[0].sku == "A"

    def test_custom_mapping(self):
        content = make_xlsx([
            ["Code", "Price", "Trade"],
            ["A", 1999, 1639],
        ])
        mapping = ColumnMapping(sku="Code", regular_price="Price", tier_prices={"depot": "Trade"})

        row = parse_spreadsheet(content, "prices.xlsx", {"depot": 18}, mapping)[0]

        assert row.sku == "A"
        assert row.tier_prices == {"depot": Decimal("1639")}
        assert row.tier_mismatch_flags == {"depot": False}

    def test_parsing_is_repeatable(self):
        content = make_xlsx([
            HEADER,
            ["A", "Widget", 1999, 1600, None, 3],
            ["B", "Gadget", 25, None, None, 0],
        ])

        first = parse_spreadsheet(content, "prices.xlsx", TIERS)
        second = parse_spreadsheet(content, "prices.xlsx", TIERS)

        assert first == second


class TestParseCsv:
    """Tests for .csv uploads."""

    def test_csv_matches_xlsx(self):
        rows = [
            HEADER,
            ["A", "Widget", 1999, 1600, None, 3],
            ["B", "Gadget", "19.99", None, None, 0],
        ]

        from_xlsx = parse_spreadsheet(make_xlsx(rows), "prices.xlsx", TIERS)
        from_csv = parse_spreadsheet(make_csv(rows), "prices.csv", TIERS)

        assert from_csv == from_xlsx

    def test_csv_with_bom(self):
        content = b"\xef\xbb\xbf" + make_csv([["SKU", "Regular Price"], ["A", 10]])

        assert parse_spreadsheet(content, "prices.csv", TIERS)[0].sku == "A"


class TestParseErrors:
    """Tests for sheets that cannot be used at all."""

    def test_headers_only(self):
        with pytest.raises(ParseError, match="empty or contains only headers"):
            parse_spreadsheet(make_xlsx([HEADER]), "prices.xlsx", TIERS)

    def test_empty_sheet(self):
        with pytest.raises(ParseError, match="empty or contains only headers"):
            parse_spreadsheet(make_xlsx([]), "prices.xlsx", TIERS)

    def test_missing_sku_column(self):
        content = make_xlsx([["Name", "Regular Price"], ["x", 1]])
        with pytest.raises(ParseError, match="Could not find SKU column"):
            parse_spreadsheet(content, "prices.xlsx", TIERS)

    def test_missing_price_column(self):
        content = make_xlsx([["SKU", "Cost"], ["A", 1]])
        with pytest.raises(ParseError, match="Could not find Regular Price column"):
            parse_spreadsheet(content, "prices.xlsx", TIERS)

    def test_unsupported_extension(self):
        with pytest.raises(ParseError, match="Unsupported file type"):
            parse_spreadsheet(b"data", "prices.pdf", TIERS)

    def test_corrupt_workbook(self):
        with pytest.raises(ParseError, match="Failed to parse spreadsheet"):
            parse_spreadsheet(b"not a zip file", "prices.xlsx", TIERS)
