"""
CSV parsing and writing for instrument dumps.

The same format is used by the upstream ``/instruments/{exchange}`` endpoint
and by the on-disk cache, so one codec serves both.
"""

import csv
import io
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, TextIO, Union

from core.logging import get_logger
from core.utils.exceptions import ParseError
from .instrument import INSTRUMENT_FIELDS, Instrument

logger = get_logger(__name__, component="instrument_data")


def _parse_int(value: str) -> int:
    return int(value.strip())


def _parse_float(value: str) -> float:
    return float(value.strip())


def _parse_optional_float(value: str) -> Optional[float]:
    value = value.strip()
    return float(value) if value else None


# Text cells are kept verbatim; only numeric cells are stripped before conversion
def _parse_optional_str(value: str) -> Optional[str]:
    return value or None


def _parse_str(value: str) -> str:
    return value


def _parse_required_str(value: str) -> str:
    if not value.strip():
        raise ValueError("value is required")
    return value


FIELD_PARSERS: Dict[str, Callable[[str], Any]] = {
    "instrument_token": _parse_int,
    "exchange_token": _parse_int,
    "tradingsymbol": _parse_required_str,
    "name": _parse_str,
    "last_price": _parse_optional_float,
    "expiry": _parse_optional_str,
    "strike": _parse_optional_float,
    "tick_size": _parse_float,
    "lot_size": _parse_int,
    "instrument_type": _parse_str,
    "segment": _parse_str,
    "exchange": _parse_required_str,
}


class InstrumentCSVLoader:
    """
    Strict parser for instrument CSV text.

    A malformed row fails the whole parse with a ParseError naming the 1-based
    data row (the header is not counted); partial results are never returned.
    """

    def __init__(self, source: str = "<memory>"):
        """
        Args:
            source: Label used in error messages (file path or endpoint)
        """
        self.source = source

    @classmethod
    def from_path(cls, csv_file_path: Union[str, Path]) -> "InstrumentCSVLoader":
        return cls(source=str(csv_file_path))

    def load_file(self, csv_file_path: Union[str, Path]) -> List[Instrument]:
        """
        Load all instruments from a CSV file.

        Raises:
            FileNotFoundError: If the file doesn't exist
            ParseError: If the header or any row is invalid
        """
        with open(csv_file_path, "r", encoding="utf-8", newline="") as file:
            return self.load_stream(file)

    def load_text(self, text: str) -> List[Instrument]:
        """Parse CSV text as returned by the instruments endpoint."""
        return self.load_stream(io.StringIO(text, newline=""))

    def load_stream(self, stream: TextIO) -> List[Instrument]:
        reader = csv.DictReader(stream)
        self._validate_header(reader.fieldnames)

        instruments = []
        for row_num, row in enumerate(reader, start=1):
            instruments.append(self._parse_row(row, row_num))

        logger.debug("Parsed instruments", source=self.source, count=len(instruments))
        return instruments

    def _validate_header(self, fieldnames: Optional[List[str]]) -> None:
        if not fieldnames:
            raise ParseError(f"{self.source}: missing CSV header", row=0)
        present = {name.strip().lower() for name in fieldnames}
        missing = [name for name in INSTRUMENT_FIELDS if name not in present]
        if missing:
            raise ParseError(
                f"{self.source}: CSV header missing columns: {', '.join(missing)}",
                row=0,
                details={"missing": missing},
            )

    def _parse_row(self, row: Dict[Optional[str], Any], row_num: int) -> Instrument:
        if None in row:
            raise ParseError(f"{self.source}: row {row_num} has too many fields", row=row_num)

        normalized = {key.strip().lower(): value for key, value in row.items()}
        values = {}
        for field, parser in FIELD_PARSERS.items():
            raw = normalized.get(field)
            if raw is None:
                raise ParseError(
                    f"{self.source}: row {row_num} is missing field '{field}'",
                    row=row_num,
                    details={"field": field},
                )
            try:
                values[field] = parser(raw)
            except ValueError as exc:
                raise ParseError(
                    f"{self.source}: row {row_num} has invalid {field} {raw!r}",
                    row=row_num,
                    details={"field": field, "value": raw},
                ) from exc
        return Instrument(**values)


def write_instruments(stream: TextIO, instruments: Iterable[Instrument]) -> int:
    """Write instruments as CSV with the canonical header. Returns the row count."""
    writer = csv.DictWriter(stream, fieldnames=list(INSTRUMENT_FIELDS), lineterminator="\n")
    writer.writeheader()
    count = 0
    for instrument in instruments:
        writer.writerow(instrument.to_row())
        count += 1
    return count
