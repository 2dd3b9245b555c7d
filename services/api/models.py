"""Request descriptors and typed response models for the Kite Connect API."""

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field


IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "DELETE"})


@dataclass(frozen=True)
class RequestDescriptor:
    """One API call, built per invocation and never persisted."""
    method: str
    path: str
    query: Optional[Mapping[str, Any]] = None
    body: Optional[Mapping[str, Any]] = None
    requires_auth: bool = True
    # Response is plain text (instrument dumps are CSV, not a JSON envelope)
    raw: bool = False

    def __post_init__(self):
        object.__setattr__(self, "method", self.method.upper())
        if not self.path.startswith("/"):
            raise ValueError(f"path must be absolute: {self.path!r}")

    @property
    def idempotent(self) -> bool:
        return self.method in IDEMPOTENT_METHODS


class KiteModel(BaseModel):
    """Base for upstream payloads; unknown fields are kept, not rejected."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)


# ==================== SESSION / USER ====================

class SessionResponse(KiteModel):
    user_id: str
    access_token: str
    user_name: Optional[str] = None
    user_type: Optional[str] = None
    email: Optional[str] = None
    broker: Optional[str] = None
    login_time: Optional[str] = None
    public_token: Optional[str] = None
    refresh_token: Optional[str] = None
    exchanges: List[str] = []
    products: List[str] = []
    order_types: List[str] = []


class Profile(KiteModel):
    user_id: str
    user_name: Optional[str] = None
    user_shortname: Optional[str] = None
    email: Optional[str] = None
    user_type: Optional[str] = None
    broker: Optional[str] = None
    exchanges: List[str] = []
    products: List[str] = []
    order_types: List[str] = []


# ==================== QUOTES ====================

class OHLC(KiteModel):
    open: float
    high: float
    low: float
    close: float


class DepthEntry(KiteModel):
    price: float
    quantity: int
    orders: int


class Depth(KiteModel):
    buy: List[DepthEntry] = []
    sell: List[DepthEntry] = []


class Quote(KiteModel):
    instrument_token: int
    last_price: float
    ohlc: Optional[OHLC] = None
    depth: Optional[Depth] = None
    volume: Optional[int] = None
    net_change: Optional[float] = None
    oi: Optional[float] = None
    oi_day_high: Optional[float] = None
    oi_day_low: Optional[float] = None
    timestamp: Optional[str] = None
    last_trade_time: Optional[str] = None


class OHLCQuote(KiteModel):
    instrument_token: int
    last_price: float
    ohlc: OHLC


class LTPQuote(KiteModel):
    instrument_token: int
    last_price: float


# ==================== ORDERS ====================

class Order(KiteModel):
    order_id: str
    status: str
    tradingsymbol: str
    exchange: str
    transaction_type: str
    order_type: str
    product: str
    quantity: int
    variety: Optional[str] = None
    validity: Optional[str] = None
    exchange_order_id: Optional[str] = None
    parent_order_id: Optional[str] = None
    status_message: Optional[str] = None
    price: float = 0.0
    trigger_price: Optional[float] = None
    average_price: Optional[float] = None
    disclosed_quantity: Optional[int] = None
    pending_quantity: int = 0
    filled_quantity: int = 0
    cancelled_quantity: int = 0
    placed_by: Optional[str] = None
    order_timestamp: Optional[str] = None
    exchange_timestamp: Optional[str] = None
    tag: Optional[str] = None


class OrderResult(KiteModel):
    order_id: str


class Trade(KiteModel):
    trade_id: str
    order_id: str
    tradingsymbol: str
    exchange: str
    transaction_type: str
    product: str
    average_price: float
    quantity: int
    exchange_order_id: Optional[str] = None
    fill_timestamp: Optional[str] = None


# ==================== PORTFOLIO ====================

class Holding(KiteModel):
    tradingsymbol: str
    exchange: str
    instrument_token: int
    quantity: int
    average_price: float
    last_price: float
    isin: Optional[str] = None
    t1_quantity: int = 0
    authorised_quantity: int = 0
    close_price: Optional[float] = None
    pnl: float = 0.0
    day_change: float = 0.0
    day_change_percentage: float = 0.0


class Position(KiteModel):
    tradingsymbol: str
    exchange: str
    instrument_token: int
    product: str
    quantity: int
    average_price: float
    last_price: float
    overnight_quantity: int = 0
    multiplier: float = 1.0
    close_price: Optional[float] = None
    pnl: float = 0.0
    m2m: float = 0.0
    unrealised: float = 0.0
    realised: float = 0.0
    buy_quantity: int = 0
    buy_price: float = 0.0
    sell_quantity: int = 0
    sell_price: float = 0.0


class Positions(KiteModel):
    net: List[Position] = []
    day: List[Position] = []


# ==================== MARGINS ====================

class MarginAvailable(KiteModel):
    cash: float = 0.0
    opening_balance: float = 0.0
    live_balance: float = 0.0
    collateral: float = 0.0
    intraday_payin: float = 0.0


class MarginUtilised(KiteModel):
    debits: float = 0.0
    exposure: float = 0.0
    option_premium: float = 0.0
    payout: float = 0.0
    span: float = 0.0
    holding_sales: float = 0.0
    turnover: float = 0.0
    m2m_unrealised: float = 0.0
    m2m_realised: float = 0.0


class Margin(KiteModel):
    enabled: bool
    net: float
    available: MarginAvailable = Field(default_factory=MarginAvailable)
    utilised: MarginUtilised = Field(default_factory=MarginUtilised)


# ==================== GTT ====================

class GTTCondition(KiteModel):
    exchange: str
    tradingsymbol: str
    trigger_values: List[float]
    last_price: float
    instrument_token: Optional[int] = None


class GTTOrder(KiteModel):
    exchange: str
    tradingsymbol: str
    transaction_type: str
    quantity: int
    order_type: str
    product: str
    price: float
    result: Optional[Dict[str, Any]] = None


class GTTTrigger(KiteModel):
    id: int
    type: str
    status: str
    condition: GTTCondition
    orders: List[GTTOrder] = []
    user_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    expires_at: Optional[str] = None


class GTTResult(KiteModel):
    trigger_id: int
