"""
CSV processor for parsing and validating crowdfunding backer exports.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from pydantic import ValidationError

from pledgeflow.errors import AllRowsInvalidError, ParseError, RowValidationError, StructuralError
from pledgeflow.ingestion.models import BackerRow, Platform, extract_number
from pledgeflow.ingestion.platform import ColumnMapping, detect_platform, map_columns

logger = logging.getLogger(__name__)

BYTE_ORDER_MARK = '\ufeff'


def split_csv_line(line: str) -> List[str]:
    """Split one line into trimmed cells.

    A double quote opens or closes a quoted span wherever it appears, and
    ``""`` inside a span is a literal quote. Commas split cells only outside
    quoted spans.
    """
    cells = []
    current = []
    in_quotes = False
    position = 0

    while position < len(line):
        char = line[position]
        if char == '"':
            if in_quotes and line[position + 1:position + 2] == '"':
                current.append('"')
                position += 1
            else:
                in_quotes = not in_quotes
        elif char == ',' and not in_quotes:
            cells.append(''.join(current).strip())
            current = []
        else:
            current.append(char)
        position += 1

    cells.append(''.join(current).strip())
    return cells


def parse_csv_text(raw_text: Union[str, bytes]) -> List[List[str]]:
    """Parse raw CSV text into rows of trimmed cells, one row per non-blank line."""
    if isinstance(raw_text, bytes):
        try:
            raw_text = raw_text.decode('utf-8')
        except UnicodeDecodeError as e:
            raise ParseError(f"CSV file is not valid UTF-8: {e}") from e

    if not isinstance(raw_text, str):
        return []

    if raw_text.startswith(BYTE_ORDER_MARK):
        raw_text = raw_text[len(BYTE_ORDER_MARK):]

    return [
        split_csv_line(line.rstrip('\r'))
        for line in raw_text.split('\n')
        if line.strip()
    ]


@dataclass
class ChunkError:
    """A structural problem found at one line (0 for header-level problems)."""

    line: int
    details: Dict[str, List[str]]

    def to_dict(self) -> Dict[str, Any]:
        return {'line': self.line, 'details': self.details}


@dataclass
class ChunkValidationResult:
    is_valid: bool
    errors: List[ChunkError] = field(default_factory=list)
    platform: Optional[Platform] = None

    def raise_for_errors(self) -> None:
        if not self.is_valid:
            raise StructuralError(
                "CSV validation failed",
                [error.to_dict() for error in self.errors],
            )


def validate_chunk(grid: Sequence[Sequence[str]]) -> ChunkValidationResult:
    """Structural pre-check of a parsed grid before any row is interpreted."""
    if len(grid) < 2:
        return ChunkValidationResult(
            is_valid=False,
            errors=[ChunkError(0, {'general': ["CSV must have headers and at least one data row"]})],
        )

    headers = grid[0]
    mapping = map_columns(headers)
    missing_fields = mapping.missing()

    if missing_fields:
        return ChunkValidationResult(
            is_valid=False,
            errors=[ChunkError(0, {'headers': [f"Missing required columns: {', '.join(missing_fields)}"]})],
        )

    errors = []
    for offset, row in enumerate(grid[1:]):
        # +2: header row plus 1-based numbering
        if len(row) < len(headers):
            errors.append(ChunkError(offset + 2, {'general': ["Row has fewer columns than headers"]}))

    return ChunkValidationResult(
        is_valid=not errors,
        errors=errors,
        platform=detect_platform(headers),
    )


def _cell(row: Sequence[str], index: Optional[int], default: str = "") -> str:
    if index is None or index >= len(row):
        return default
    return (row[index] or "").strip()


def _is_bare_number(value: str) -> bool:
    try:
        return math.isfinite(float(value))
    except ValueError:
        return False


def _quantity(value: float) -> Union[int, float]:
    if math.isfinite(value) and value == int(value):
        return int(value)
    return value


def transform_products(row: Sequence[str], product_columns: Sequence[int]) -> List[Dict[str, Any]]:
    """Read product name/quantity entries from a row's product columns.

    Name and quantity share a cell; a name cell without a quantity takes
    the quantity from the next product cell when that cell is a bare number.
    """
    products = []
    cells = [_cell(row, index) for index in product_columns]
    position = 0

    while position < len(cells):
        name = cells[position]
        qty = extract_number(name)
        position += 1

        if name and qty <= 0 and position < len(cells) and _is_bare_number(cells[position]):
            qty = extract_number(cells[position])
            position += 1

        if name and qty > 0:
            products.append({'name': name, 'qty': _quantity(qty)})

    return products


def transform_row(row: Sequence[str], mapping: ColumnMapping) -> Dict[str, Any]:
    """Map a raw row onto the canonical backer row fields."""
    fields = mapping.fields
    return {
        'reward_id': _cell(row, fields.get('reward_id')),
        'pledge_name': _cell(row, fields.get('pledge_name')),
        'survey_status': _cell(row, fields.get('survey_status')),
        'bonus_support': _cell(row, fields.get('bonus_support'), "0") or "0",
        'price': _cell(row, fields.get('price'), "0"),
        'country': _cell(row, fields.get('country')),
        'backer_name': _cell(row, fields.get('backer_name')),
        'backer_email': _cell(row, fields.get('backer_email')),
        'products': transform_products(row, mapping.products),
    }


def format_validation_error(error: ValidationError) -> str:
    """Render pydantic errors as ``field: message`` pairs."""
    parts = []
    for issue in error.errors():
        location = '.'.join(str(part) for part in issue['loc'])
        message = issue['msg'].removeprefix('Value error, ')
        parts.append(f"{location}: {message}")
    return ', '.join(parts)


class CSVProcessor:
    """Turns a stored chunk into validated backer rows."""

    def __init__(self):
        self.validation_errors: List[str] = []

    def transform_rows(self, rows: Sequence[Sequence[str]], mapping: ColumnMapping) -> List[Dict[str, Any]]:
        return [transform_row(row, mapping) for row in rows]

    def validate_rows(self, records: Sequence[Dict[str, Any]], first_line: int = 2) -> Tuple[List[BackerRow], List[str]]:
        """Validate transformed records, keeping the valid ones.

        ``first_line`` is the CSV line number of the first record (header is
        line 1), so messages point at the uploaded file.
        Raises AllRowsInvalidError when no record survives.
        """
        self.validation_errors = []
        valid_rows = []

        for offset, record in enumerate(records):
            row_number = first_line + offset
            try:
                valid_rows.append(BackerRow(**record))
            except ValidationError as e:
                row_error = RowValidationError(row_number, format_validation_error(e))
                self.validation_errors.append(str(row_error))

        if self.validation_errors:
            logger.warning(f"{len(self.validation_errors)} of {len(records)} rows failed validation")

        if records and not valid_rows:
            raise AllRowsInvalidError(self.validation_errors)

        return valid_rows, self.validation_errors

    def process_chunk_data(self, headers: Sequence[str], rows: Sequence[Sequence[str]], first_line: int = 2) -> Tuple[Platform, List[BackerRow], List[str]]:
        """Detect the platform, map columns, transform and validate rows."""
        platform = detect_platform(headers)
        mapping = map_columns(headers)
        records = self.transform_rows(rows, mapping)
        valid_rows, errors = self.validate_rows(records, first_line)

        logger.info(f"Validated {len(valid_rows)} of {len(records)} rows ({platform.value})")
        return platform, valid_rows, errors
