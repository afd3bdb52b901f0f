"""Parse options for the ingestion pipeline.

Plain frozen dataclass so the library carries no environment coupling. The
API layer builds one from its pydantic Settings.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Mapping, Optional, Union

HEADER_SCAN_ROWS = 20
SNIFF_SAMPLE_ROWS = 50
SNIFF_THRESHOLD = 0.8


@dataclass(frozen=True)
class ParseOptions:
    """Options for a single parse call."""

    # Spreadsheet sheet to read (name or 0-based index); None = auto-select
    sheet: Optional[Union[str, int]] = None
    password: Optional[str] = None
    header_scan_rows: int = HEADER_SCAN_ROWS
    sniff_sample_rows: int = SNIFF_SAMPLE_ROWS
    sniff_threshold: float = SNIFF_THRESHOLD
    # Used only when no date value disambiguates day/month order
    default_day_first: bool = True
    reporting_currency: Optional[str] = None
    # Static conversion rates: native currency code -> reporting currency units
    rates: Mapping[str, Decimal] = field(default_factory=dict)

    def rate_for(self, currency: str) -> Optional[Decimal]:
        rates = {str(k).strip().upper(): v for k, v in self.rates.items()}
        rate = rates.get(currency.strip().upper())
        return Decimal(str(rate)) if rate is not None else None
