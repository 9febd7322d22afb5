"""
tests/test_csv_processor.py: parsing, structural checks, row transformation
and row validation.
"""

import pytest

from pledgeflow.errors import AllRowsInvalidError, ParseError, StructuralError
from pledgeflow.ingestion.csv_processor import (
    CSVProcessor,
    parse_csv_text,
    split_csv_line,
    transform_products,
    transform_row,
    validate_chunk,
)
from pledgeflow.ingestion.models import MAX_QUANTITY, Platform, extract_number
from pledgeflow.ingestion.platform import map_columns

HEADERS = [
    "Reward ID", "Reward Title", "Pledged Status", "Backing Minimum",
    "Shipping Country", "Backer Name", "Email",
]


def backer_row(email="jane@x.com", price="25", name="Jane Doe"):
    return ["1", "TierA", "paid", price, "US", name, email]


class TestParseCsvText:

    def test_splits_lines_and_trims_cells(self):
        grid = parse_csv_text("a , b,c\n 1,2 , 3 ")
        assert grid == [["a", "b", "c"], ["1", "2", "3"]]

    def test_skips_blank_lines_and_handles_crlf(self):
        grid = parse_csv_text("a,b\r\n\r\n1,2\r\n   \n3,4\n")
        assert grid == [["a", "b"], ["1", "2"], ["3", "4"]]

    def test_quoted_comma_and_escaped_quote(self):
        grid = parse_csv_text('name,note\n"Doe, Jane","said ""hi"""')
        assert grid[1] == ["Doe, Jane", 'said "hi"']

    def test_quote_inside_field_keeps_comma(self):
        assert parse_csv_text('1,Tier "Gold, Deluxe",paid') == [["1", "Tier Gold, Deluxe", "paid"]]

    def test_split_csv_line_quote_rules(self):
        assert split_csv_line('a,"b""c",d') == ["a", 'b"c', "d"]
        assert split_csv_line(' x "y,z" , w') == ["x y,z", "w"]
        assert split_csv_line("a,,b,") == ["a", "", "b", ""]

    def test_strips_byte_order_mark(self):
        grid = parse_csv_text("\ufeffReward ID,Email\n1,a@b.co")
        assert grid[0][0] == "Reward ID"

    def test_decodes_utf8_bytes(self):
        grid = parse_csv_text("name\nJosé".encode("utf-8"))
        assert grid == [["name"], ["José"]]

    def test_invalid_utf8_raises_parse_error(self):
        with pytest.raises(ParseError):
            parse_csv_text(b"name\n\xff\xfe\xfa")

    def test_empty_text_yields_no_rows(self):
        assert parse_csv_text("") == []
        assert parse_csv_text("\n\n") == []


class TestValidateChunk:

    def test_header_only_grid_is_rejected(self):
        result = validate_chunk([HEADERS])
        assert not result.is_valid
        assert result.errors[0].line == 0
        assert result.errors[0].details == {"general": ["CSV must have headers and at least one data row"]}

    def test_missing_required_columns_are_listed(self):
        result = validate_chunk([["Reward ID", "Email"], ["1", "a@b.co"]])
        assert not result.is_valid
        message = result.errors[0].details["headers"][0]
        assert message.startswith("Missing required columns: ")
        for field_name in ("survey_status", "country", "pledge_name", "price", "backer_name"):
            assert field_name in message
        assert "reward_id" not in message

    def test_short_rows_are_reported_with_line_numbers(self):
        grid = [HEADERS, backer_row(), ["1", "TierA"], backer_row(), ["2"]]
        result = validate_chunk(grid)
        assert not result.is_valid
        assert [error.line for error in result.errors] == [3, 5]
        assert result.errors[0].details == {"general": ["Row has fewer columns than headers"]}

    def test_longer_rows_are_accepted(self):
        result = validate_chunk([HEADERS, backer_row() + ["extra", "cells"]])
        assert result.is_valid
        assert result.platform == Platform.KICKSTARTER

    def test_raise_for_errors_carries_structured_errors(self):
        result = validate_chunk([HEADERS])
        with pytest.raises(StructuralError) as exc_info:
            result.raise_for_errors()
        assert exc_info.value.errors == [
            {"line": 0, "details": {"general": ["CSV must have headers and at least one data row"]}}
        ]


class TestTransformProducts:

    def test_name_and_bare_quantity_pair(self):
        assert transform_products(["WidgetA", "3"], [0, 1]) == [{"name": "WidgetA", "qty": 3}]

    def test_quantity_in_same_cell(self):
        products = transform_products(["Sticker Pack x2", "Poster x1"], [0, 1])
        assert products == [
            {"name": "Sticker Pack x2", "qty": 2},
            {"name": "Poster x1", "qty": 1},
        ]

    def test_zero_or_unparsable_quantity_yields_nothing(self):
        assert transform_products(["WidgetA", "0"], [0, 1]) == []
        assert transform_products(["WidgetA", "lots"], [0, 1]) == []
        assert transform_products(["WidgetA"], [0]) == []

    def test_empty_cells_and_missing_columns_are_skipped(self):
        assert transform_products(["", ""], [0, 1, 5]) == []

    def test_overflowing_quantity_yields_nothing(self):
        assert extract_number("9" * 400) == 0.0
        assert transform_products(["Pin", "9" * 400], [0, 1]) == []
        assert transform_products(["Pin x" + "9" * 400], [0]) == []

    def test_large_finite_quantity_is_kept_whole(self):
        products = transform_products(["Pin", "9" * 20], [0, 1])
        assert products == [{"name": "Pin", "qty": int("9" * 20)}]


class TestTransformRow:

    def test_maps_fields_by_header_position(self):
        headers = ["Email", "Backer Name"] + HEADERS[:5] + ["Notes", "Add-on 1", "Add-on 2"]
        row = ["jane@x.com", "Jane Doe", "1", "TierA", "paid", "$25.00", "US", "", "WidgetA", "3"]
        record = transform_row(row, map_columns(headers))

        assert record["backer_email"] == "jane@x.com"
        assert record["backer_name"] == "Jane Doe"
        assert record["reward_id"] == "1"
        assert record["price"] == "$25.00"
        assert record["bonus_support"] == "0"
        assert record["products"] == [{"name": "WidgetA", "qty": 3}]


class TestCSVProcessor:

    def test_partial_rejection_keeps_valid_rows(self):
        rows = [
            backer_row(email="a@x.com"),
            backer_row(email="not-an-email"),
            backer_row(email="c@x.com"),
            backer_row(email="d@x.com", price="0"),
            backer_row(email="e@x.com"),
        ]
        platform, valid_rows, errors = CSVProcessor().process_chunk_data(HEADERS, rows)

        assert platform == Platform.KICKSTARTER
        assert [row.backer_email for row in valid_rows] == ["a@x.com", "c@x.com", "e@x.com"]
        assert len(errors) == 2
        assert errors[0].startswith("Row 3: backer_email")
        assert errors[1].startswith("Row 5: price")

    def test_line_numbers_follow_first_line(self):
        rows = [backer_row(), backer_row(email="bad")]
        _, _, errors = CSVProcessor().process_chunk_data(HEADERS, rows, first_line=102)
        assert errors == ["Row 103: backer_email: Invalid email address"]

    def test_all_rows_invalid_raises(self):
        rows = [backer_row(email="bad"), backer_row(name="")]
        with pytest.raises(AllRowsInvalidError) as exc_info:
            CSVProcessor().process_chunk_data(HEADERS, rows)

        assert len(exc_info.value.messages) == 2
        assert str(exc_info.value).startswith("All rows failed validation: Row 2:")

    def test_collected_status_and_amounts(self):
        _, valid_rows, _ = CSVProcessor().process_chunk_data(HEADERS, [backer_row(price="$1,250.00")])
        row = valid_rows[0]
        assert row.status.value == "COLLECTED"
        assert row.price_amount == 1250.0
        assert row.bonus_support_amount == 0.0

    def test_out_of_range_numbers_reject_only_their_row(self):
        headers = HEADERS + ["Notes", "Add-on 1", "Add-on 2"]
        rows = [
            backer_row(email="a@x.com") + ["", "Pin", "2"],
            backer_row(email="b@x.com") + ["", "Pin", "9" * 20],
            backer_row(email="c@x.com", price="99999999999") + ["", "", ""],
            backer_row(email="d@x.com") + ["", "Pin", "9" * 400],
        ]
        _, valid_rows, errors = CSVProcessor().process_chunk_data(headers, rows)

        assert [row.backer_email for row in valid_rows] == ["a@x.com", "d@x.com"]
        assert valid_rows[1].products == []
        assert errors == [
            f"Row 3: products.0.qty: Quantity cannot exceed {MAX_QUANTITY}",
            "Row 4: price: Amount is too large",
        ]
