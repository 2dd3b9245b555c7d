"""
Instrument Data Service

Provides the instrument value type, the CSV codec and the on-disk daily cache.
"""

from .instrument import INSTRUMENT_FIELDS, Instrument
from .csv_loader import InstrumentCSVLoader, write_instruments
from .cache import CacheFile, CacheInfo, InstrumentCache, InstrumentSource

__all__ = [
    'Instrument',
    'INSTRUMENT_FIELDS',
    'InstrumentCSVLoader',
    'write_instruments',
    'InstrumentCache',
    'InstrumentSource',
    'CacheFile',
    'CacheInfo',
]
