"""
Instrument value object as published in the exchange instrument dumps.
"""

from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class Instrument:
    """Exchange-qualified tradable symbol, copied verbatim between API and cache."""
    instrument_token: int
    exchange_token: int
    tradingsymbol: str
    name: str
    last_price: Optional[float]
    expiry: Optional[str]
    strike: Optional[float]
    tick_size: float
    lot_size: int
    instrument_type: str
    segment: str
    exchange: str

    def __post_init__(self):
        # An empty expiry cell and a missing expiry are the same thing
        if self.expiry == "":
            object.__setattr__(self, "expiry", None)

    @property
    def key(self) -> str:
        """``EXCHANGE:TRADINGSYMBOL`` as used by the quote endpoints."""
        return f"{self.exchange}:{self.tradingsymbol}"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_row(self) -> Dict[str, str]:
        """Serialize to CSV cell text; ``None`` becomes an empty cell."""
        row = {}
        for key, value in self.to_dict().items():
            if value is None:
                row[key] = ""
            elif isinstance(value, float):
                row[key] = repr(value)
            else:
                row[key] = str(value)
        return row


# Column order of the upstream dump and of cache files
INSTRUMENT_FIELDS = tuple(f.name for f in fields(Instrument))
