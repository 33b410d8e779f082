import time
import hmac
import hashlib
import logging
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import requests

from .errors import ApiError, IpBanned, MalformedResponse, NetworkError, RateLimitExceeded
from .exchange import ExchangeClient, normalize_side
from .models import ORDER_TYPE_LIMIT, ORDER_TYPE_MARKET, Balance, BookLevel, Fill, SymbolInfo, Ticker
from .utils import floor_to_step, format_number, step_precision

# Orders that may carry executed quantity; NEW orders are still resting.
HISTORY_STATUSES = {"FILLED", "PARTIALLY_FILLED", "CANCELED", "EXPIRED"}
DEFAULT_MIN_VALUE = 10.0


class BinanceClient(ExchangeClient):
    """Minimal REST client for Binance spot trading."""

    name = "binance"

    def __init__(self, api_key: str, api_secret: str, base_url: str = "https://api.binance.com",
                 timeout: float = 10.0, recv_window: int = 5000):
        if not api_key or not api_secret:
            raise ValueError("API key and secret must be provided for live trading")
        self.api_key = api_key
        self.api_secret = api_secret.encode()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.recv_window = recv_window
        self._session = requests.Session()
        self._session.headers.update({"X-MBX-APIKEY": api_key})
        self._symbol_cache: Dict[str, Dict[str, Any]] = {}

    def _sign(self, params: Dict[str, Any]) -> Dict[str, Any]:
        payload = urlencode(params, doseq=True)
        signature = hmac.new(self.api_secret, payload.encode(), hashlib.sha256).hexdigest()
        params["signature"] = signature
        return params

    def _request(self, method: str, path: str, *, params: Optional[Dict[str, Any]] = None, signed: bool = False) -> Any:
        params = params.copy() if params else {}
        if signed:
            params.setdefault("recvWindow", self.recv_window)
            params.setdefault("timestamp", int(time.time() * 1000))
            params = self._sign(params)
        url = f"{self.base_url}{path}"
        try:
            resp = self._session.request(method, url, params=params if method == "GET" else None,
                                         data=params if method != "GET" else None, timeout=self.timeout)
        except requests.RequestException as exc:
            raise NetworkError(f"{method} {path} failed: {exc}", exchange=self.name) from exc
        if resp.status_code == 429:
            raise RateLimitExceeded("rate limit exceeded: 429", exchange=self.name, status_code=429)
        if resp.status_code == 418:
            raise IpBanned("ip banned: 418", exchange=self.name, status_code=418)
        if resp.status_code >= 400:
            logging.error("Binance error %s: %s", resp.status_code, resp.text)
            raise ApiError(f"{method} {path}: {resp.status_code} {resp.text}", exchange=self.name,
                           status_code=resp.status_code)
        try:
            return resp.json()
        except ValueError as exc:
            raise MalformedResponse(f"{method} {path} returned invalid JSON", exchange=self.name) from exc

    @staticmethod
    def _filters(raw: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
        return {f.get("filterType"): f for f in raw.get("filters", [])}

    def _symbol_from_raw(self, raw: Dict[str, Any]) -> SymbolInfo:
        filters = self._filters(raw)
        price_filter = filters.get("PRICE_FILTER") or {}
        lot = filters.get("LOT_SIZE") or {}
        notional = filters.get("MIN_NOTIONAL") or filters.get("NOTIONAL") or {}
        if price_filter.get("tickSize"):
            price_precision = step_precision(price_filter["tickSize"])
        else:
            price_precision = int(raw.get("quotePrecision", 8))
        if lot.get("stepSize"):
            amount_precision = step_precision(lot["stepSize"])
        else:
            amount_precision = int(raw.get("baseAssetPrecision", 8))
        return SymbolInfo(
            base=str(raw["baseAsset"]),
            quote=str(raw["quoteAsset"]),
            symbol=str(raw["symbol"]),
            price_precision=price_precision,
            amount_precision=amount_precision,
            min_amount=float(lot.get("minQty") or 0.0),
            min_value=float(notional.get("minNotional") or notional.get("notional") or DEFAULT_MIN_VALUE),
        )

    def get_exchange_info(self) -> Dict[str, Any]:
        return self._request("GET", "/api/v3/exchangeInfo")

    def get_symbols(self) -> List[SymbolInfo]:
        info = self.get_exchange_info()
        symbols: List[SymbolInfo] = []
        for raw in info.get("symbols", []):
            if not isinstance(raw, dict):
                raise MalformedResponse(f"Bad symbol entry {raw!r}", exchange=self.name)
            if raw.get("status", "TRADING") != "TRADING":
                continue
            try:
                symbols.append(self._symbol_from_raw(raw))
            except (KeyError, TypeError, ValueError) as exc:
                raise MalformedResponse(f"Bad symbol entry {raw.get('symbol')!r}: {exc}", exchange=self.name) from exc
            self._symbol_cache[str(raw["symbol"]).upper()] = raw
        return symbols

    def get_symbol_info(self, symbol: str) -> Dict[str, Any]:
        symbol = symbol.upper()
        if symbol not in self._symbol_cache:
            info = self.get_exchange_info()
            symbols = {s["symbol"]: s for s in info.get("symbols", [])}
            if symbol not in symbols:
                raise ApiError(f"Symbol {symbol} not found in exchange info", exchange=self.name)
            self._symbol_cache[symbol] = symbols[symbol]
        return self._symbol_cache[symbol]

    def _lot_filters(self, symbol: str, filter_type: str = "LOT_SIZE") -> Tuple[Optional[float], Optional[float]]:
        """Get lot size filters (minQty, stepSize) for a symbol.

        ``MARKET_LOT_SIZE`` falls back to ``LOT_SIZE`` when the symbol does not
        define a dedicated market filter.
        """
        filters = self._filters(self.get_symbol_info(symbol))
        f = filters.get(filter_type)
        if f is None and filter_type == "MARKET_LOT_SIZE":
            f = filters.get("LOT_SIZE")
        if f is None:
            return None, None
        try:
            step = float(f["stepSize"])
            min_qty = float(f["minQty"])
        except (TypeError, ValueError, KeyError):
            return None, None
        # MARKET_LOT_SIZE often reports stepSize 0, meaning "use LOT_SIZE"
        if step <= 0 and filter_type == "MARKET_LOT_SIZE":
            return self._lot_filters(symbol, "LOT_SIZE")
        return min_qty, step

    def _price_precision(self, symbol: str) -> int:
        tick = self._filters(self.get_symbol_info(symbol)).get("PRICE_FILTER", {}).get("tickSize")
        return step_precision(tick) if tick else 8

    def get_all_balances(self) -> List[Balance]:
        account = self._request("GET", "/api/v3/account", signed=True)
        raw_balances = account.get("balances") if isinstance(account, dict) else None
        if raw_balances is None:
            raise MalformedResponse("account payload has no balances", exchange=self.name)
        try:
            return [
                Balance(
                    asset=str(bal["asset"]).upper(),
                    free=float(bal.get("free") or 0.0),
                    locked=float(bal.get("locked") or 0.0),
                )
                for bal in raw_balances
            ]
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise MalformedResponse(f"Bad balance entry: {exc}", exchange=self.name) from exc

    def get_ticker(self, symbol: str) -> Ticker:
        data = self._request("GET", "/api/v3/ticker/bookTicker", params={"symbol": symbol.upper()})
        try:
            return Ticker(
                symbol=symbol,
                bid=BookLevel(price=float(data["bidPrice"]), amount=float(data.get("bidQty") or 0.0)),
                ask=BookLevel(price=float(data["askPrice"]), amount=float(data.get("askQty") or 0.0)),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise MalformedResponse(f"Bad ticker for {symbol}: {exc}", exchange=self.name) from exc

    def get_history_orders(self, symbol: str) -> List[Fill]:
        data = self._request("GET", "/api/v3/allOrders", params={"symbol": symbol.upper()}, signed=True)
        if not isinstance(data, list):
            raise MalformedResponse(f"allOrders for {symbol} is not a list", exchange=self.name)
        fills: List[Fill] = []
        for raw in data:
            if not isinstance(raw, dict):
                raise MalformedResponse(f"Bad history order for {symbol}: {raw!r}", exchange=self.name)
            if raw.get("status") not in HISTORY_STATUSES:
                continue
            try:
                executed = float(raw.get("executedQty") or 0.0)
                if executed <= 0:
                    continue
                price = float(raw.get("price") or 0.0)
                if price <= 0:
                    # MARKET orders report price 0; derive it from the quote spent
                    price = float(raw.get("cummulativeQuoteQty") or 0.0) / executed
                fills.append(
                    Fill(
                        symbol=str(raw.get("symbol") or symbol),
                        side=normalize_side(raw.get("side")),
                        order_amount=float(raw.get("origQty") or executed),
                        filled_amount=executed,
                        price=price,
                        timestamp=int(raw.get("time") or 0),
                    )
                )
            except (TypeError, ValueError) as exc:
                raise MalformedResponse(f"Bad history order for {symbol}: {exc}", exchange=self.name) from exc
        fills.sort(key=lambda f: f.timestamp, reverse=True)
        return fills

    def _apply_lot_step(self, symbol: str, quantity: float, filter_type: str = "LOT_SIZE") -> float:
        min_qty, step = self._lot_filters(symbol, filter_type)
        return floor_to_step(quantity, step, min_qty)

    def create_order(self, symbol: str, price: float, amount: float, side: str, order_type: str) -> str:
        order_type = order_type.upper()
        filter_type = "MARKET_LOT_SIZE" if order_type == ORDER_TYPE_MARKET else "LOT_SIZE"
        adj_qty = self._apply_lot_step(symbol, amount, filter_type)
        if adj_qty <= 0:
            raise ValueError("Quantity below minimum lot size")
        params: Dict[str, Any] = {
            "symbol": symbol.upper(),
            "side": side.upper(),
            "type": order_type,
            "quantity": format_number(adj_qty, 8),
        }
        if order_type == ORDER_TYPE_LIMIT:
            params["timeInForce"] = "GTC"
            params["price"] = format_number(price, self._price_precision(symbol))
        logging.info("Submitting %s %s for %s qty %s @ %s", order_type, params["side"], symbol,
                     params["quantity"], params.get("price", "MKT"))
        data = self._request("POST", "/api/v3/order", params=params, signed=True)
        try:
            return str(data["orderId"])
        except (KeyError, TypeError) as exc:
            raise MalformedResponse(f"Order response without orderId: {data}", exchange=self.name) from exc

    def cancel_all(self, symbol: str) -> bool:
        logging.info("Cancelling open orders for %s", symbol)
        self._request("DELETE", "/api/v3/openOrders", params={"symbol": symbol.upper()}, signed=True)
        return True
