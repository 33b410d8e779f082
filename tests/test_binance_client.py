import hashlib
import hmac
import sys
from pathlib import Path
from urllib.parse import urlencode

import pytest
import requests

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from movestop.binance_client import BinanceClient
from movestop.errors import ApiError, IpBanned, MalformedResponse, NetworkError, RateLimitExceeded
from movestop.models import Balance, SymbolInfo


SYMBOL_INFO = {
    "symbol": "ZECUSDT",
    "status": "TRADING",
    "baseAsset": "ZEC",
    "quoteAsset": "USDT",
    "filters": [
        {"filterType": "PRICE_FILTER", "tickSize": "0.01000000"},
        {"filterType": "LOT_SIZE", "stepSize": "0.00100000", "minQty": "0.00100000"},
        {"filterType": "NOTIONAL", "minNotional": "5.00000000"},
    ],
}


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


def test_sign_uses_request_encoding_order():
    client = BinanceClient("key", "secret")
    params = {
        "symbol": "ZECUSDT",
        "side": "SELL",
        "type": "LIMIT",
        "quantity": "1.234",
        "timestamp": 1700000000000,
    }

    signed = client._sign(params.copy())

    payload = urlencode(params, doseq=True)
    expected_signature = hmac.new(b"secret", payload.encode(), hashlib.sha256).hexdigest()
    assert signed["signature"] == expected_signature


def test_missing_credentials_rejected():
    with pytest.raises(ValueError):
        BinanceClient("", "secret")


def test_get_all_balances_fetches_signed_account(monkeypatch):
    client = BinanceClient("key", "secret")
    calls = []

    def fake_request(method, path, *, params=None, signed=False):
        calls.append((method, path, signed))
        return {
            "balances": [
                {"asset": "ZEC", "free": "1.234", "locked": "0.5"},
                {"asset": "USDT", "free": "100.0", "locked": "0.0"},
            ]
        }

    monkeypatch.setattr(client, "_request", fake_request)

    assert client.get_all_balances() == [Balance("ZEC", 1.234, 0.5), Balance("USDT", 100.0, 0.0)]
    assert calls == [("GET", "/api/v3/account", True)]


def test_get_all_balances_without_balances_is_malformed(monkeypatch):
    client = BinanceClient("key", "secret")
    monkeypatch.setattr(client, "_request", lambda method, path, *, params=None, signed=False: {"code": 1})
    with pytest.raises(MalformedResponse):
        client.get_all_balances()


def test_get_symbols_maps_filters_and_skips_halted(monkeypatch):
    client = BinanceClient("key", "secret")
    halted = dict(SYMBOL_INFO, symbol="OLDUSDT", status="BREAK")
    bare = {"symbol": "FOOBTC", "status": "TRADING", "baseAsset": "FOO", "quoteAsset": "BTC",
            "baseAssetPrecision": 8, "quotePrecision": 8, "filters": []}

    def fake_request(method, path, *, params=None, signed=False):
        assert (method, path, signed) == ("GET", "/api/v3/exchangeInfo", False)
        return {"symbols": [SYMBOL_INFO, halted, bare]}

    monkeypatch.setattr(client, "_request", fake_request)
    symbols = client.get_symbols()

    assert symbols == [
        SymbolInfo("ZEC", "USDT", "ZECUSDT", price_precision=2, amount_precision=3, min_amount=0.001, min_value=5.0),
        SymbolInfo("FOO", "BTC", "FOOBTC", price_precision=8, amount_precision=8, min_amount=0.0, min_value=10.0),
    ]
    # cached for order rounding
    assert client.get_symbol_info("zecusdt") is SYMBOL_INFO


def test_get_ticker_reads_book_ticker(monkeypatch):
    client = BinanceClient("key", "secret")

    def fake_request(method, path, *, params=None, signed=False):
        assert path == "/api/v3/ticker/bookTicker"
        assert params == {"symbol": "ZECUSDT"}
        return {"symbol": "ZECUSDT", "bidPrice": "30.10", "bidQty": "2", "askPrice": "30.20", "askQty": "3"}

    monkeypatch.setattr(client, "_request", fake_request)
    ticker = client.get_ticker("ZECUSDT")
    assert ticker.bid.price == 30.10
    assert ticker.bid.amount == 2.0
    assert ticker.ask.price == 30.20


def test_get_history_orders_normalizes_and_sorts(monkeypatch):
    client = BinanceClient("key", "secret")
    raw_orders = [
        {"symbol": "ZECUSDT", "side": "BUY", "type": "LIMIT", "status": "FILLED", "price": "30.0",
         "origQty": "2.0", "executedQty": "2.0", "cummulativeQuoteQty": "60.0", "time": 1000},
        {"symbol": "ZECUSDT", "side": "BUY", "type": "MARKET", "status": "FILLED", "price": "0.00000000",
         "origQty": "1.0", "executedQty": "1.0", "cummulativeQuoteQty": "32.5", "time": 3000},
        {"symbol": "ZECUSDT", "side": "SELL", "type": "LIMIT", "status": "CANCELED", "price": "40.0",
         "origQty": "1.0", "executedQty": "0.0", "cummulativeQuoteQty": "0.0", "time": 4000},
        {"symbol": "ZECUSDT", "side": "SELL", "type": "LIMIT", "status": "NEW", "price": "45.0",
         "origQty": "1.0", "executedQty": "0.0", "cummulativeQuoteQty": "0.0", "time": 5000},
        {"symbol": "ZECUSDT", "side": "SELL", "type": "LIMIT", "status": "PARTIALLY_FILLED", "price": "35.0",
         "origQty": "1.0", "executedQty": "0.4", "cummulativeQuoteQty": "14.0", "time": 2000},
    ]
    calls = []

    def fake_request(method, path, *, params=None, signed=False):
        calls.append((method, path, params, signed))
        return raw_orders

    monkeypatch.setattr(client, "_request", fake_request)
    fills = client.get_history_orders("ZECUSDT")

    assert calls == [("GET", "/api/v3/allOrders", {"symbol": "ZECUSDT"}, True)]
    assert [f.timestamp for f in fills] == [3000, 2000, 1000]
    assert [f.side for f in fills] == ["BUY", "SELL", "BUY"]
    assert fills[0].price == pytest.approx(32.5)
    assert fills[1].order_amount == 1.0
    assert fills[1].filled_amount == 0.4
    assert fills[2].price == 30.0


@pytest.mark.parametrize("call, payload", [
    (lambda c: c.get_history_orders("ZECUSDT"), ["oops"]),
    (lambda c: c.get_symbols(), {"symbols": [None]}),
])
def test_non_dict_entries_are_malformed(monkeypatch, call, payload):
    client = BinanceClient("key", "secret")
    monkeypatch.setattr(client, "_request", lambda method, path, *, params=None, signed=False: payload)
    with pytest.raises(MalformedResponse):
        call(client)


def test_create_limit_order_floors_quantity(monkeypatch):
    client = BinanceClient("key", "secret")
    monkeypatch.setattr(client, "get_symbol_info", lambda symbol: SYMBOL_INFO)
    sent = []

    def fake_request(method, path, *, params=None, signed=False):
        sent.append((method, path, params, signed))
        return {"orderId": 12345}

    monkeypatch.setattr(client, "_request", fake_request)
    order_id = client.create_order("ZECUSDT", 89.304, 1.23456, "SELL", "LIMIT")

    assert order_id == "12345"
    method, path, params, signed = sent[0]
    assert (method, path, signed) == ("POST", "/api/v3/order", True)
    assert params == {
        "symbol": "ZECUSDT",
        "side": "SELL",
        "type": "LIMIT",
        "quantity": "1.234",
        "timeInForce": "GTC",
        "price": "89.3",
    }


def test_create_market_order_falls_back_to_lot_size(monkeypatch):
    client = BinanceClient("key", "secret")
    monkeypatch.setattr(client, "get_symbol_info", lambda symbol: SYMBOL_INFO)
    sent = []
    monkeypatch.setattr(client, "_request",
                        lambda method, path, *, params=None, signed=False: sent.append(params) or {"orderId": 7})

    assert client.create_order("ZECUSDT", 0.0, 0.5555, "sell", "market") == "7"
    assert sent[0] == {"symbol": "ZECUSDT", "side": "SELL", "type": "MARKET", "quantity": "0.555"}


def test_create_order_below_min_lot_raises(monkeypatch):
    client = BinanceClient("key", "secret")
    monkeypatch.setattr(client, "get_symbol_info", lambda symbol: SYMBOL_INFO)
    with pytest.raises(ValueError):
        client.create_order("ZECUSDT", 30.0, 0.0005, "SELL", "LIMIT")


def test_cancel_all_uses_delete(monkeypatch):
    client = BinanceClient("key", "secret")
    calls = []
    monkeypatch.setattr(client, "_request",
                        lambda method, path, *, params=None, signed=False: calls.append((method, path, signed)) or [])
    assert client.cancel_all("ZECUSDT") is True
    assert calls == [("DELETE", "/api/v3/openOrders", True)]


@pytest.mark.parametrize(
    "status, error",
    [(429, RateLimitExceeded), (418, IpBanned), (400, ApiError), (503, ApiError)],
)
def test_request_maps_http_errors(monkeypatch, status, error):
    client = BinanceClient("key", "secret")
    monkeypatch.setattr(client._session, "request",
                        lambda *args, **kwargs: FakeResponse(status, {"code": -1}, text="boom"))
    with pytest.raises(error) as excinfo:
        client._request("GET", "/api/v3/time")
    assert excinfo.value.exchange == "binance"


def test_request_maps_transport_and_decode_errors(monkeypatch):
    client = BinanceClient("key", "secret")

    def timeout(*args, **kwargs):
        raise requests.Timeout("read timed out")

    monkeypatch.setattr(client._session, "request", timeout)
    with pytest.raises(NetworkError):
        client._request("GET", "/api/v3/time")

    monkeypatch.setattr(client._session, "request", lambda *args, **kwargs: FakeResponse(200, None))
    with pytest.raises(MalformedResponse):
        client._request("GET", "/api/v3/time")


def test_signed_request_adds_timestamp_and_signature(monkeypatch):
    client = BinanceClient("key", "secret", timeout=3.0)
    seen = {}

    def fake_session_request(method, url, params=None, data=None, timeout=None):
        seen.update(method=method, url=url, params=params, data=data, timeout=timeout)
        return FakeResponse(200, {"ok": True})

    monkeypatch.setattr(client._session, "request", fake_session_request)
    assert client._request("GET", "/api/v3/account", params={"a": 1}, signed=True) == {"ok": True}
    assert seen["url"] == "https://api.binance.com/api/v3/account"
    assert seen["timeout"] == 3.0
    assert seen["data"] is None
    assert seen["params"]["recvWindow"] == 5000
    assert "timestamp" in seen["params"]
    assert "signature" in seen["params"]
