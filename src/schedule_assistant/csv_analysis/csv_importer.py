"""CSV ingestion for Vietnamese schedule imports."""

import csv
import io
import logging
from dataclasses import dataclass, field

from .exceptions import ImportValidationError
from .models import ENTRY_COLUMNS
from .vietnamese_parser import normalize_header

logger = logging.getLogger(__name__)


@dataclass
class ImportedRow:
    """One non-empty CSV data row."""

    row_number: int
    raw_text: str
    original_data: dict[str, str] = field(default_factory=dict)


def _sniff_delimiter(sample: str) -> str:
    try:
        return csv.Sniffer().sniff(sample, delimiters=",;\t").delimiter
    except csv.Error:
        return ","


def read_schedule_csv(content: str | bytes) -> list[ImportedRow]:
    """
    Read a schedule CSV into rows keyed by canonical column names.

    Headers are matched with or without Vietnamese diacritics; unknown
    columns are kept in raw_text only.

    Args:
        content: CSV text (or UTF-8 bytes, optionally with a BOM)

    Returns:
        Non-empty data rows in file order, numbered from 1

    Raises:
        ImportValidationError: If the file has no header or no data rows
    """
    if isinstance(content, bytes):
        try:
            content = content.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise ImportValidationError(f"CSV is not valid UTF-8: {e}") from e
    content = content.lstrip("\ufeff")

    if not content.strip():
        raise ImportValidationError("CSV content is empty")

    reader = csv.reader(io.StringIO(content), delimiter=_sniff_delimiter(content[:2048]))
    try:
        header = next(reader)
    except StopIteration as e:
        raise ImportValidationError("CSV has no header row") from e
    except csv.Error as e:
        raise ImportValidationError(f"Malformed CSV: {e}") from e

    columns = [normalize_header(name) for name in header]
    if not any(columns):
        logger.warning(f"No known schedule columns in header: {header}")

    rows: list[ImportedRow] = []
    try:
        for values in reader:
            cells = [value.strip() for value in values]
            if not any(cells):
                continue

            original_data: dict[str, str] = {}
            for key, value in zip(columns, cells):
                if key in ENTRY_COLUMNS and value:
                    original_data[key] = value

            rows.append(
                ImportedRow(
                    row_number=len(rows) + 1,
                    raw_text=", ".join(cell for cell in cells if cell),
                    original_data=original_data,
                )
            )
    except csv.Error as e:
        raise ImportValidationError(f"Malformed CSV at line {reader.line_num}: {e}") from e

    if not rows:
        raise ImportValidationError("CSV has no data rows")

    logger.info(f"Read {len(rows)} schedule rows from CSV")
    return rows
