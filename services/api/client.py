"""
Kite Connect API client.

``KiteApiClient.request`` is the one path every call takes: resolve the auth
header, hand the descriptor to the HttpExecutor (which throttles, sends and
unwraps the envelope), then validate ``data`` into the expected type.
"""

from functools import lru_cache
from typing import Any, Dict, List, Optional, Sequence

import httpx
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from core.config.settings import Settings
from core.logging import get_logger
from core.utils.exceptions import ParseError
from services.auth.auth_manager import AuthManager
from services.auth.config_store import JsonFileConfigStore
from services.auth.interfaces import ConfigStore
from services.auth.session_manager import SessionManager
from .http_executor import HttpExecutor
from .models import (
    GTTResult,
    GTTTrigger,
    LTPQuote,
    Margin,
    OHLCQuote,
    Order,
    OrderResult,
    Holding,
    Positions,
    Profile,
    Quote,
    RequestDescriptor,
    Trade,
)
from .rate_limiter import RateLimiter

logger = get_logger(__name__, component="api_client")

# Order varieties accepted by /orders/{variety}
VARIETY_REGULAR = "regular"
VARIETY_AMO = "amo"
VARIETY_CO = "co"
VARIETY_ICEBERG = "iceberg"
VARIETY_AUCTION = "auction"
ORDER_VARIETIES = (VARIETY_REGULAR, VARIETY_AMO, VARIETY_CO, VARIETY_ICEBERG, VARIETY_AUCTION)

MARGIN_SEGMENTS = ("equity", "commodity")

GTT_TYPE_SINGLE = "single"
GTT_TYPE_OCO = "two-leg"


@lru_cache(maxsize=None)
def _adapter(response_type: Any) -> TypeAdapter:
    return TypeAdapter(response_type)


def _order_path(variety: str, order_id: Optional[str] = None) -> str:
    if variety not in ORDER_VARIETIES:
        raise ValueError(f"variety must be one of {', '.join(ORDER_VARIETIES)}")
    return f"/orders/{variety}/{order_id}" if order_id else f"/orders/{variety}"


def _instrument_query(instruments: Sequence[str]) -> Dict[str, List[str]]:
    if isinstance(instruments, str):
        instruments = [instruments]
    keys = [i.strip() for i in instruments if i and i.strip()]
    if not keys:
        raise ValueError("at least one EXCHANGE:TRADINGSYMBOL is required")
    return {"i": keys}


class KiteApiClient:
    """Typed facade over the Kite Connect REST endpoints."""

    def __init__(self, executor: HttpExecutor, auth: AuthManager):
        self.executor = executor
        self.auth = auth

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: Optional[ConfigStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ) -> "KiteApiClient":
        """Wire limiter, executor, session and auth from settings."""
        limiter = rate_limiter or RateLimiter.from_settings(settings.rate_limit)
        executor = HttpExecutor(
            settings.kite,
            limiter,
            acquire_timeout=settings.rate_limit.acquire_timeout_seconds,
            transport=transport,
        )
        session_manager = SessionManager(store or JsonFileConfigStore(settings))
        auth = AuthManager(settings, executor, session_manager)
        return cls(executor, auth)

    async def __aenter__(self) -> "KiteApiClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.executor.aclose()

    async def request(
        self,
        descriptor: RequestDescriptor,
        response_type: Any = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Execute one API call.

        Args:
            descriptor: Method, path, query and body.
            response_type: Type to validate ``data`` into; ``None`` returns it as is.
            timeout: Overall deadline in seconds.

        Raises:
            AuthError: ``requires_auth`` and no valid session (nothing is sent).
            ParseError: ``data`` does not match ``response_type``.
            plus anything ``HttpExecutor.request`` raises.
        """
        auth_header = None
        if descriptor.requires_auth:
            auth_header = await self.auth.current_auth_header()

        data = await self.executor.request(descriptor, auth_header=auth_header, timeout=timeout)
        if response_type is None:
            return data

        try:
            return _adapter(response_type).validate_python(data)
        except PydanticValidationError as exc:
            logger.warning("Response did not match expected shape",
                           method=descriptor.method, path=descriptor.path,
                           errors=exc.error_count())
            raise ParseError(
                f"Unexpected response shape for {descriptor.method} {descriptor.path}",
                details={"errors": exc.errors(include_url=False)},
            ) from exc

    # ==================== USER ====================

    async def profile(self) -> Profile:
        return await self.request(RequestDescriptor("GET", "/user/profile"), Profile)

    async def margins(self, segment: Optional[str] = None) -> Any:
        """All segments as ``{segment: Margin}``, or one segment's ``Margin``."""
        if segment is None:
            return await self.request(RequestDescriptor("GET", "/user/margins"), Dict[str, Margin])
        segment = segment.lower()
        if segment not in MARGIN_SEGMENTS:
            raise ValueError(f"segment must be one of {', '.join(MARGIN_SEGMENTS)}")
        return await self.request(RequestDescriptor("GET", f"/user/margins/{segment}"), Margin)

    # ==================== QUOTES ====================

    async def quote(self, instruments: Sequence[str]) -> Dict[str, Quote]:
        return await self.request(
            RequestDescriptor("GET", "/quote", query=_instrument_query(instruments)),
            Dict[str, Quote],
        )

    async def ohlc(self, instruments: Sequence[str]) -> Dict[str, OHLCQuote]:
        return await self.request(
            RequestDescriptor("GET", "/quote/ohlc", query=_instrument_query(instruments)),
            Dict[str, OHLCQuote],
        )

    async def ltp(self, instruments: Sequence[str]) -> Dict[str, LTPQuote]:
        return await self.request(
            RequestDescriptor("GET", "/quote/ltp", query=_instrument_query(instruments)),
            Dict[str, LTPQuote],
        )

    # ==================== ORDERS ====================

    async def orders(self) -> List[Order]:
        return await self.request(RequestDescriptor("GET", "/orders"), List[Order])

    async def order_history(self, order_id: str) -> List[Order]:
        """Every state the order has passed through, oldest first."""
        return await self.request(RequestDescriptor("GET", f"/orders/{order_id}"), List[Order])

    async def place_order(
        self,
        variety: str,
        exchange: str,
        tradingsymbol: str,
        transaction_type: str,
        quantity: int,
        product: str,
        order_type: str,
        price: Optional[float] = None,
        trigger_price: Optional[float] = None,
        validity: Optional[str] = None,
        disclosed_quantity: Optional[int] = None,
        validity_ttl: Optional[int] = None,
        iceberg_legs: Optional[int] = None,
        iceberg_quantity: Optional[int] = None,
        tag: Optional[str] = None,
    ) -> OrderResult:
        body = {
            "exchange": exchange,
            "tradingsymbol": tradingsymbol,
            "transaction_type": transaction_type,
            "quantity": quantity,
            "product": product,
            "order_type": order_type,
            "price": price,
            "trigger_price": trigger_price,
            "validity": validity,
            "disclosed_quantity": disclosed_quantity,
            "validity_ttl": validity_ttl,
            "iceberg_legs": iceberg_legs,
            "iceberg_quantity": iceberg_quantity,
            "tag": tag,
        }
        result = await self.request(RequestDescriptor("POST", _order_path(variety), body=body), OrderResult)
        logger.info("Order placed", order_id=result.order_id, variety=variety,
                    tradingsymbol=tradingsymbol, transaction_type=transaction_type)
        return result

    async def modify_order(
        self,
        variety: str,
        order_id: str,
        quantity: Optional[int] = None,
        price: Optional[float] = None,
        order_type: Optional[str] = None,
        trigger_price: Optional[float] = None,
        validity: Optional[str] = None,
        disclosed_quantity: Optional[int] = None,
    ) -> OrderResult:
        body = {
            "quantity": quantity,
            "price": price,
            "order_type": order_type,
            "trigger_price": trigger_price,
            "validity": validity,
            "disclosed_quantity": disclosed_quantity,
        }
        return await self.request(
            RequestDescriptor("PUT", _order_path(variety, order_id), body=body), OrderResult
        )

    async def cancel_order(self, variety: str, order_id: str,
                           parent_order_id: Optional[str] = None) -> OrderResult:
        query = {"parent_order_id": parent_order_id} if parent_order_id else None
        return await self.request(
            RequestDescriptor("DELETE", _order_path(variety, order_id), query=query), OrderResult
        )

    async def trades(self) -> List[Trade]:
        return await self.request(RequestDescriptor("GET", "/trades"), List[Trade])

    async def order_trades(self, order_id: str) -> List[Trade]:
        return await self.request(RequestDescriptor("GET", f"/orders/{order_id}/trades"), List[Trade])

    # ==================== PORTFOLIO ====================

    async def holdings(self) -> List[Holding]:
        return await self.request(RequestDescriptor("GET", "/portfolio/holdings"), List[Holding])

    async def positions(self) -> Positions:
        return await self.request(RequestDescriptor("GET", "/portfolio/positions"), Positions)

    async def convert_position(
        self,
        exchange: str,
        tradingsymbol: str,
        transaction_type: str,
        position_type: str,
        quantity: int,
        old_product: str,
        new_product: str,
    ) -> bool:
        body = {
            "exchange": exchange,
            "tradingsymbol": tradingsymbol,
            "transaction_type": transaction_type,
            "position_type": position_type,
            "quantity": quantity,
            "old_product": old_product,
            "new_product": new_product,
        }
        return await self.request(RequestDescriptor("PUT", "/portfolio/positions", body=body), bool)

    # ==================== GTT ====================

    async def gtt_triggers(self) -> List[GTTTrigger]:
        return await self.request(RequestDescriptor("GET", "/gtt/triggers"), List[GTTTrigger])

    async def gtt_trigger(self, trigger_id: int) -> GTTTrigger:
        return await self.request(RequestDescriptor("GET", f"/gtt/triggers/{trigger_id}"), GTTTrigger)

    @staticmethod
    def _gtt_body(trigger_type: str, exchange: str, tradingsymbol: str,
                  trigger_values: Sequence[float], last_price: float,
                  orders: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
        if trigger_type not in (GTT_TYPE_SINGLE, GTT_TYPE_OCO):
            raise ValueError(f"unknown GTT type: {trigger_type}")
        expected = 1 if trigger_type == GTT_TYPE_SINGLE else 2
        if len(trigger_values) != expected:
            raise ValueError(f"{trigger_type} GTT takes {expected} trigger value(s)")

        legs = []
        for order in orders:
            legs.append({
                "exchange": exchange,
                "tradingsymbol": tradingsymbol,
                "transaction_type": order["transaction_type"],
                "quantity": int(order["quantity"]),
                "order_type": order["order_type"],
                "product": order["product"],
                "price": float(order["price"]),
            })
        return {
            "type": trigger_type,
            "condition": {
                "exchange": exchange,
                "tradingsymbol": tradingsymbol,
                "trigger_values": [float(v) for v in trigger_values],
                "last_price": float(last_price),
            },
            "orders": legs,
        }

    async def create_gtt(self, trigger_type: str, exchange: str, tradingsymbol: str,
                         trigger_values: Sequence[float], last_price: float,
                         orders: Sequence[Dict[str, Any]]) -> GTTResult:
        body = self._gtt_body(trigger_type, exchange, tradingsymbol, trigger_values, last_price, orders)
        return await self.request(RequestDescriptor("POST", "/gtt/triggers", body=body), GTTResult)

    async def modify_gtt(self, trigger_id: int, trigger_type: str, exchange: str, tradingsymbol: str,
                         trigger_values: Sequence[float], last_price: float,
                         orders: Sequence[Dict[str, Any]]) -> GTTResult:
        body = self._gtt_body(trigger_type, exchange, tradingsymbol, trigger_values, last_price, orders)
        return await self.request(
            RequestDescriptor("PUT", f"/gtt/triggers/{trigger_id}", body=body), GTTResult
        )

    async def delete_gtt(self, trigger_id: int) -> GTTResult:
        return await self.request(RequestDescriptor("DELETE", f"/gtt/triggers/{trigger_id}"), GTTResult)

    # ==================== INSTRUMENTS ====================

    async def instruments_csv(self, exchange: str) -> str:
        """Raw CSV dump for one exchange (no JSON envelope)."""
        return await self.request(
            RequestDescriptor("GET", f"/instruments/{exchange.upper()}", raw=True)
        )
