"""
On-disk instrument cache keyed by (exchange, calendar day).

Each entry is one CSV file, ``{exchange}_{YYYY-MM-DD}.csv``. An entry is fresh
while its modification time is less than the TTL old. Writes go to a temp
file in the same directory and are renamed into place, so readers only ever
see complete files.
"""

import os
import re
import tempfile
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, List, Optional, Protocol, Sequence

from core.config.settings import CacheSettings
from core.logging import get_logger
from core.utils.exceptions import CacheError, ValidationError
from .csv_loader import InstrumentCSVLoader, write_instruments
from .instrument import Instrument

logger = get_logger(__name__, component="instrument_cache")

CACHE_SUFFIX = ".csv"

# Exchange codes become part of a file name
EXCHANGE_PATTERN = re.compile(r"[A-Za-z0-9_]+")


class InstrumentSource(Protocol):
    """Anything that can fetch the raw CSV dump for one exchange."""

    async def instruments_csv(self, exchange: str) -> str:
        ...


@dataclass
class CacheFile:
    """A single cached CSV file."""
    path: Path
    exchange: str
    day: Optional[date]
    size: int
    modified: datetime


@dataclass
class CacheInfo:
    """Cache directory summary."""
    cache_dir: Path
    files: List[CacheFile] = field(default_factory=list)

    @property
    def total_size(self) -> int:
        return sum(f.size for f in self.files)


class InstrumentCache:
    """Stores and retrieves exchange instrument lists with a time-to-live."""

    def __init__(
        self,
        cache_dir: Path,
        source: Optional[InstrumentSource] = None,
        ttl: timedelta = timedelta(hours=24),
        clock: Callable[[], float] = time.time,
    ):
        self.cache_dir = Path(cache_dir)
        self.source = source
        self.ttl = ttl
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: CacheSettings, source: Optional[InstrumentSource] = None,
                      **kwargs) -> "InstrumentCache":
        return cls(
            cache_dir=settings.instruments_dir,
            source=source,
            ttl=timedelta(hours=settings.ttl_hours),
            **kwargs,
        )

    # ---- keys and paths ----

    def today(self) -> date:
        return datetime.fromtimestamp(self._clock()).date()

    def cache_file(self, exchange: str, day: Optional[date] = None) -> Path:
        if not EXCHANGE_PATTERN.fullmatch(exchange):
            raise ValidationError(f"Invalid exchange code: {exchange!r}", details={"exchange": exchange})
        day = day or self.today()
        return self.cache_dir / f"{exchange.lower()}_{day.isoformat()}{CACHE_SUFFIX}"

    def age(self, exchange: str) -> Optional[timedelta]:
        """Age of today's entry, or ``None`` if there is none."""
        path = self.cache_file(exchange)
        try:
            mtime = path.stat().st_mtime
        except FileNotFoundError:
            return None
        return timedelta(seconds=self._clock() - mtime)

    # ---- operations ----

    def is_valid(self, exchange: str) -> bool:
        """True iff today's entry exists and is younger than the TTL."""
        age = self.age(exchange)
        return age is not None and age < self.ttl

    def load(self, exchange: str) -> List[Instrument]:
        """Read today's entry.

        Raises:
            CacheError: no entry for ``(exchange, today)``.
            ParseError: a row is malformed; nothing is returned.
        """
        path = self.cache_file(exchange)
        if not path.exists():
            raise CacheError(f"Cache file not found for exchange: {exchange}")
        instruments = InstrumentCSVLoader.from_path(path).load_file(path)
        logger.debug("Loaded instruments from cache", exchange=exchange, count=len(instruments))
        return instruments

    def save(self, exchange: str, instruments: Sequence[Instrument]) -> Path:
        """Atomically replace today's entry for ``exchange``."""
        path = self.cache_file(exchange)
        self.cache_dir.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{path.stem}.", suffix=".tmp", dir=str(self.cache_dir)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as tmp:
                count = write_instruments(tmp, instruments)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise

        logger.info("Instrument cache updated", exchange=exchange, count=count, path=str(path))
        return path

    async def refresh(self, exchange: str) -> List[Instrument]:
        """Fetch, parse and save; on any failure the previous entry stays as it was."""
        if self.source is None:
            raise CacheError("Instrument cache has no source to refresh from")
        self.cache_file(exchange)

        logger.info("Fetching instruments", exchange=exchange)
        text = await self.source.instruments_csv(exchange)
        instruments = InstrumentCSVLoader(source=f"instruments/{exchange}").load_text(text)
        self.save(exchange, instruments)
        return instruments

    async def list_or_fetch(self, exchange: str, force_refresh: bool = False) -> List[Instrument]:
        if not force_refresh and self.is_valid(exchange):
            return self.load(exchange)
        logger.info("Instrument cache stale or refresh requested",
                    exchange=exchange, force_refresh=force_refresh)
        return await self.refresh(exchange)

    async def find(self, exchange: str, tradingsymbol: str,
                   force_refresh: bool = False) -> Optional[Instrument]:
        """Case-insensitive lookup of one symbol on ``exchange``."""
        wanted = tradingsymbol.upper()
        for instrument in await self.list_or_fetch(exchange, force_refresh):
            if instrument.tradingsymbol.upper() == wanted:
                return instrument
        return None

    # ---- housekeeping ----

    def _iter_files(self):
        if not self.cache_dir.exists():
            return
        for path in sorted(self.cache_dir.iterdir()):
            if path.is_file() and path.suffix == CACHE_SUFFIX and not path.name.startswith("."):
                yield path

    def clear_all(self) -> int:
        """Delete every cached CSV. Returns the number of files removed."""
        removed = 0
        for path in self._iter_files():
            path.unlink()
            removed += 1
        logger.info("Instrument cache cleared", removed=removed, cache_dir=str(self.cache_dir))
        return removed

    def info(self) -> CacheInfo:
        info = CacheInfo(cache_dir=self.cache_dir)
        for path in self._iter_files():
            stat = path.stat()
            exchange, _, day_text = path.stem.rpartition("_")
            try:
                day = date.fromisoformat(day_text)
            except ValueError:
                exchange, day = path.stem, None
            info.files.append(CacheFile(
                path=path,
                exchange=exchange.upper(),
                day=day,
                size=stat.st_size,
                modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            ))
        return info
