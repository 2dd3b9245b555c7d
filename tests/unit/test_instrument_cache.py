import os
import time
from datetime import datetime, timedelta

import pytest

from core.utils.exceptions import CacheError, NetworkError, ParseError, ValidationError
from services.instrument_data.cache import InstrumentCache
from services.instrument_data.csv_loader import InstrumentCSVLoader
from services.instrument_data.instrument import Instrument
from tests.mocks.mock_kite_api import INSTRUMENTS_HEADER, instruments_csv

# 2024-01-15 12:00 local time
T0 = time.mktime(datetime(2024, 1, 15, 12, 0).timetuple())


class Clock:
    def __init__(self, now: float):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeSource:
    def __init__(self, text: str = None, error: Exception = None):
        self.text = text
        self.error = error
        self.calls = []

    async def instruments_csv(self, exchange: str) -> str:
        self.calls.append(exchange)
        if self.error:
            raise self.error
        return self.text


@pytest.fixture
def clock():
    return Clock(T0)


@pytest.fixture
def cache(tmp_path, clock):
    return InstrumentCache(tmp_path / "instruments", clock=clock)


def write_entry(cache: InstrumentCache, exchange: str, text: str, mtime: float) -> None:
    path = cache.cache_file(exchange)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    os.utime(path, (mtime, mtime))


def test_cache_file_is_keyed_by_exchange_and_day(cache):
    assert cache.cache_file("NSE").name == "nse_2024-01-15.csv"


def test_missing_entry_is_invalid_and_load_raises(cache):
    assert not cache.is_valid("NSE")
    with pytest.raises(CacheError):
        cache.load("NSE")


def test_entry_younger_than_ttl_is_valid(cache, clock):
    write_entry(cache, "NSE", instruments_csv(), mtime=T0 - 3600)
    assert cache.is_valid("NSE")


def test_entry_exactly_ttl_old_is_stale(cache, clock):
    clock.now = T0 + timedelta(hours=24).total_seconds()
    write_entry(cache, "NSE", instruments_csv(), mtime=T0)

    assert cache.age("NSE") == timedelta(hours=24)
    assert not cache.is_valid("NSE")

    clock.now -= 1
    assert cache.is_valid("NSE")


def test_load_parses_rows(cache):
    write_entry(cache, "NSE", instruments_csv(3), mtime=T0)

    instruments = cache.load("NSE")

    assert [i.tradingsymbol for i in instruments] == ["SYM1", "SYM2", "SYM3"]
    first = instruments[0]
    assert first.instrument_token == 1001
    assert first.expiry is None
    assert first.tick_size == 0.05
    assert first.key == "NSE:SYM1"


def test_malformed_row_reports_data_row_and_returns_nothing(cache):
    write_entry(cache, "NSE", instruments_csv(10, bad_row=7), mtime=T0)

    with pytest.raises(ParseError) as exc_info:
        cache.load("NSE")

    assert exc_info.value.row == 7
    assert exc_info.value.details["field"] == "lot_size"
    assert "row 7" in exc_info.value.message


def test_bad_header_is_parse_error_on_row_zero():
    with pytest.raises(ParseError) as exc_info:
        InstrumentCSVLoader().load_text("instrument_token,tradingsymbol\n1,ABC\n")
    assert exc_info.value.row == 0
    assert "exchange" in exc_info.value.details["missing"]


def test_too_many_fields_is_parse_error():
    text = INSTRUMENTS_HEADER + "\n1,1,A,N,0,,0,0.05,1,EQ,NSE,NSE,extra\n"
    with pytest.raises(ParseError) as exc_info:
        InstrumentCSVLoader().load_text(text)
    assert exc_info.value.row == 1


def test_save_then_load_preserves_instruments(cache):
    instruments = InstrumentCSVLoader().load_text(instruments_csv(5))

    path = cache.save("NSE", instruments)

    assert path == cache.cache_file("NSE")
    assert cache.load("NSE") == instruments


def test_save_then_load_keeps_values_verbatim(cache):
    equity = Instrument(
        instrument_token=408065, exchange_token=1594, tradingsymbol="INFY",
        name=" Infosys Ltd ", last_price=1500.25, expiry="", strike=None,
        tick_size=0.05, lot_size=1, instrument_type="EQ", segment="NSE", exchange="NSE",
    )
    future = Instrument(
        instrument_token=13238786, exchange_token=51714, tradingsymbol="NIFTY24JANFUT",
        name="NIFTY, \"50\"", last_price=None, expiry="2024-01-25", strike=0.1 + 0.2,
        tick_size=0.05, lot_size=50, instrument_type="FUT", segment="NFO-FUT", exchange="NFO",
    )

    cache.save("NSE", [equity, future])

    assert equity.expiry is None
    assert cache.load("NSE") == [equity, future]


def test_text_cells_are_not_stripped():
    text = INSTRUMENTS_HEADER + "\n1, 2 ,ABC , A Co ,,,,0.05,1,EQ,NSE,NSE\n"

    (instrument,) = InstrumentCSVLoader().load_text(text)

    assert instrument.exchange_token == 2
    assert instrument.tradingsymbol == "ABC "
    assert instrument.name == " A Co "
    assert instrument.expiry is None


@pytest.mark.parametrize("exchange", ["../x", "NSE/..", "", "NSE\n", "nse.csv"])
def test_exchange_outside_cache_dir_is_rejected(cache, exchange):
    with pytest.raises(ValidationError):
        cache.cache_file(exchange)
    with pytest.raises(ValidationError):
        cache.save(exchange, [])
    assert not cache.cache_dir.exists()


@pytest.mark.asyncio
async def test_refresh_rejects_bad_exchange_before_fetching(tmp_path, clock):
    source = FakeSource(instruments_csv(1))
    cache = InstrumentCache(tmp_path, source=source, clock=clock)

    with pytest.raises(ValidationError):
        await cache.refresh("../NSE")

    assert source.calls == []


def test_save_leaves_no_temp_files(cache):
    cache.save("NSE", InstrumentCSVLoader().load_text(instruments_csv(2)))
    assert [p.name for p in cache.cache_dir.iterdir()] == ["nse_2024-01-15.csv"]


@pytest.mark.asyncio
async def test_refresh_fetches_parses_and_saves(tmp_path, clock):
    source = FakeSource(instruments_csv(4))
    cache = InstrumentCache(tmp_path, source=source, clock=clock)

    instruments = await cache.refresh("NSE")

    assert len(instruments) == 4
    assert source.calls == ["NSE"]
    assert cache.load("NSE") == instruments


@pytest.mark.asyncio
@pytest.mark.parametrize("source", [
    FakeSource(error=NetworkError("offline")),
    FakeSource(text=instruments_csv(5, bad_row=2)),
])
async def test_failed_refresh_keeps_previous_entry(tmp_path, clock, source):
    cache = InstrumentCache(tmp_path, source=source, clock=clock)
    write_entry(cache, "NSE", instruments_csv(3), mtime=T0 - 60)
    before = cache.cache_file("NSE").read_bytes()

    with pytest.raises((NetworkError, ParseError)):
        await cache.refresh("NSE")

    assert cache.cache_file("NSE").read_bytes() == before
    assert len(cache.load("NSE")) == 3


@pytest.mark.asyncio
async def test_list_or_fetch_uses_fresh_cache(tmp_path, clock):
    source = FakeSource(instruments_csv(4))
    cache = InstrumentCache(tmp_path, source=source, clock=clock)
    write_entry(cache, "NSE", instruments_csv(2), mtime=T0 - 60)

    assert len(await cache.list_or_fetch("NSE")) == 2
    assert source.calls == []

    assert len(await cache.list_or_fetch("NSE", force_refresh=True)) == 4
    assert source.calls == ["NSE"]


@pytest.mark.asyncio
async def test_find_is_case_insensitive(tmp_path, clock):
    cache = InstrumentCache(tmp_path, source=FakeSource(instruments_csv(3)), clock=clock)

    found = await cache.find("nse", "sym2")

    assert found is not None
    assert found.instrument_token == 1002
    assert await cache.find("nse", "missing") is None


@pytest.mark.asyncio
async def test_refresh_without_source_is_cache_error(cache):
    with pytest.raises(CacheError):
        await cache.refresh("NSE")


def test_info_and_clear_all(cache):
    write_entry(cache, "NSE", instruments_csv(2), mtime=T0)
    write_entry(cache, "BSE", instruments_csv(1), mtime=T0)

    info = cache.info()
    assert sorted(f.exchange for f in info.files) == ["BSE", "NSE"]
    assert info.total_size == sum(f.size for f in info.files) > 0

    assert cache.clear_all() == 2
    assert cache.info().files == []
