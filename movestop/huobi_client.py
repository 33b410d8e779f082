import base64
import hashlib
import hmac
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode, urlparse

import requests

from .errors import ApiError, IpBanned, MalformedResponse, NetworkError, RateLimitExceeded
from .exchange import ExchangeClient, normalize_side
from .models import ORDER_TYPE_LIMIT, Balance, BookLevel, Fill, SymbolInfo, Ticker
from .utils import format_number

HISTORY_STATES = "filled,partial-filled,partial-canceled"


class HuobiClient(ExchangeClient):
    """REST client for Huobi spot trading (signature version 2)."""

    name = "huobi"

    def __init__(self, api_key: str, api_secret: str, base_url: str = "https://api.huobi.pro",
                 timeout: float = 10.0, account_type: str = "spot"):
        if not api_key or not api_secret:
            raise ValueError("API key and secret must be provided for live trading")
        self.api_key = api_key
        self.api_secret = api_secret.encode()
        self.base_url = base_url.rstrip("/")
        self.host = urlparse(self.base_url).netloc
        self.timeout = timeout
        self.account_type = account_type
        self._account_id: Optional[str] = None
        self._session = requests.Session()
        self._session.headers.update({"Content-Type": "application/json"})

    def _sign(self, method: str, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        params = dict(params)
        params.update({
            "AccessKeyId": self.api_key,
            "SignatureMethod": "HmacSHA256",
            "SignatureVersion": "2",
            "Timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S"),
        })
        query = urlencode(sorted(params.items()))
        payload = f"{method}\n{self.host}\n{path}\n{query}"
        digest = hmac.new(self.api_secret, payload.encode(), hashlib.sha256).digest()
        params["Signature"] = base64.b64encode(digest).decode()
        return params

    def _request(self, method: str, path: str, *, params: Optional[Dict[str, Any]] = None,
                 body: Optional[Dict[str, Any]] = None, signed: bool = False) -> Any:
        params = params.copy() if params else {}
        if signed:
            params = self._sign(method, path, params)
        url = f"{self.base_url}{path}"
        try:
            resp = self._session.request(method, url, params=params, json=body, timeout=self.timeout)
        except requests.RequestException as exc:
            raise NetworkError(f"{method} {path} failed: {exc}", exchange=self.name) from exc
        if resp.status_code == 429:
            raise RateLimitExceeded("rate limit exceeded: 429", exchange=self.name, status_code=429)
        if resp.status_code == 418:
            raise IpBanned("ip banned: 418", exchange=self.name, status_code=418)
        if resp.status_code >= 400:
            logging.error("Huobi error %s: %s", resp.status_code, resp.text)
            raise ApiError(f"{method} {path}: {resp.status_code} {resp.text}", exchange=self.name,
                           status_code=resp.status_code)
        try:
            data = resp.json()
        except ValueError as exc:
            raise MalformedResponse(f"{method} {path} returned invalid JSON", exchange=self.name) from exc
        if isinstance(data, dict) and data.get("status") == "error":
            message = data.get("err-msg") or data.get("err_msg") or str(data)
            raise ApiError(f"{method} {path}: {message}", exchange=self.name)
        return data

    def _data(self, payload: Any, key: str = "data") -> Any:
        if not isinstance(payload, dict) or key not in payload:
            raise MalformedResponse(f"response has no {key!r} field", exchange=self.name)
        return payload[key]

    def account_id(self) -> str:
        if self._account_id is None:
            accounts = self._data(self._request("GET", "/v1/account/accounts", signed=True))
            try:
                ids = [str(a["id"]) for a in accounts if a.get("type") == self.account_type]
            except (AttributeError, KeyError, TypeError) as exc:
                raise MalformedResponse(f"Bad account entry: {exc}", exchange=self.name) from exc
            if not ids:
                raise ApiError(f"no {self.account_type} account found", exchange=self.name)
            self._account_id = ids[0]
        return self._account_id

    def get_symbols(self) -> List[SymbolInfo]:
        symbols: List[SymbolInfo] = []
        for raw in self._data(self._request("GET", "/v1/common/symbols")):
            if not isinstance(raw, dict):
                raise MalformedResponse(f"Bad symbol entry {raw!r}", exchange=self.name)
            if raw.get("state", "online") != "online":
                continue
            try:
                symbols.append(
                    SymbolInfo(
                        base=str(raw["base-currency"]),
                        quote=str(raw["quote-currency"]),
                        symbol=str(raw["symbol"]),
                        price_precision=int(raw.get("price-precision", 8)),
                        amount_precision=int(raw.get("amount-precision", 8)),
                        min_amount=float(raw.get("min-order-amt") or 0.0),
                        min_value=float(raw.get("min-order-value") or 0.0),
                    )
                )
            except (KeyError, TypeError, ValueError) as exc:
                raise MalformedResponse(f"Bad symbol entry {raw.get('symbol')!r}: {exc}", exchange=self.name) from exc
        return symbols

    def get_all_balances(self) -> List[Balance]:
        path = f"/v1/account/accounts/{self.account_id()}/balance"
        data = self._data(self._request("GET", path, signed=True))
        free: Dict[str, float] = {}
        locked: Dict[str, float] = {}
        try:
            for item in data["list"]:
                asset = str(item["currency"]).upper()
                amount = float(item.get("balance") or 0.0)
                if item.get("type") == "trade":
                    free[asset] = free.get(asset, 0.0) + amount
                elif item.get("type") == "frozen":
                    locked[asset] = locked.get(asset, 0.0) + amount
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise MalformedResponse(f"Bad balance entry: {exc}", exchange=self.name) from exc
        assets = sorted(set(free) | set(locked))
        return [Balance(asset=a, free=free.get(a, 0.0), locked=locked.get(a, 0.0)) for a in assets]

    def get_ticker(self, symbol: str) -> Ticker:
        payload = self._request("GET", "/market/detail/merged", params={"symbol": symbol.lower()})
        tick = self._data(payload, "tick")
        try:
            return Ticker(
                symbol=symbol,
                bid=BookLevel(price=float(tick["bid"][0]), amount=float(tick["bid"][1])),
                ask=BookLevel(price=float(tick["ask"][0]), amount=float(tick["ask"][1])),
                timestamp=int(tick.get("ts") or payload.get("ts") or 0),
            )
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise MalformedResponse(f"Bad ticker for {symbol}: {exc}", exchange=self.name) from exc

    def get_history_orders(self, symbol: str) -> List[Fill]:
        params = {"symbol": symbol.lower(), "states": HISTORY_STATES}
        data = self._data(self._request("GET", "/v1/order/orders", params=params, signed=True))
        fills: List[Fill] = []
        for raw in data:
            if not isinstance(raw, dict):
                raise MalformedResponse(f"Bad history order for {symbol}: {raw!r}", exchange=self.name)
            try:
                order_type = str(raw["type"]).lower()
                filled = float(raw.get("filled-amount") or raw.get("field-amount") or 0.0)
                if filled <= 0:
                    continue
                cash = float(raw.get("filled-cash-amount") or raw.get("field-cash-amount") or 0.0)
                price = float(raw.get("price") or 0.0)
                is_market = order_type.endswith("market")
                if is_market or price <= 0:
                    price = cash / filled
                # market buys quote their amount in the quote asset
                order_amount = filled if is_market else float(raw.get("amount") or filled)
                fills.append(
                    Fill(
                        symbol=str(raw.get("symbol") or symbol),
                        side=normalize_side(order_type),
                        order_amount=order_amount,
                        filled_amount=filled,
                        price=price,
                        timestamp=int(raw.get("created-at") or 0),
                    )
                )
            except (KeyError, TypeError, ValueError) as exc:
                raise MalformedResponse(f"Bad history order for {symbol}: {exc}", exchange=self.name) from exc
        fills.sort(key=lambda f: f.timestamp, reverse=True)
        return fills

    def create_order(self, symbol: str, price: float, amount: float, side: str, order_type: str) -> str:
        body: Dict[str, Any] = {
            "account-id": self.account_id(),
            "symbol": symbol.lower(),
            "type": f"{side}-{order_type}".lower(),
            "amount": format_number(amount, 8),
            "source": f"{self.account_type}-api",
        }
        if order_type.upper() == ORDER_TYPE_LIMIT:
            body["price"] = format_number(price, 8)
        logging.info("Submitting %s for %s amount %s @ %s", body["type"], symbol, body["amount"],
                     body.get("price", "MKT"))
        payload = self._request("POST", "/v1/order/orders/place", body=body, signed=True)
        return str(self._data(payload))

    def cancel_all(self, symbol: str) -> bool:
        logging.info("Cancelling open orders for %s", symbol)
        body = {"account-id": self.account_id(), "symbol": symbol.lower()}
        payload = self._request("POST", "/v1/order/orders/batchCancelOpenOrders", body=body, signed=True)
        return payload.get("status") == "ok"
