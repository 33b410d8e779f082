import pytest

from movestop.errors import NetworkError
from movestop.models import SIDE_BUY, SIDE_SELL, Balance, Fill, Position
from movestop.reconstructor import reconstruct, walk_fills


SYMBOL = "ZECUSDT"


def _fill(side, amount, price, ts, filled=None):
    return Fill(
        symbol=SYMBOL,
        side=side,
        order_amount=amount,
        filled_amount=amount if filled is None else filled,
        price=price,
        timestamp=ts,
    )


def _history(*fills):
    calls = []

    def fetch():
        calls.append(1)
        return list(fills)

    fetch.calls = calls
    return fetch


def _no_history():
    raise AssertionError("history must not be fetched")


def test_single_buy_round_trips_price():
    history = _history(_fill(SIDE_BUY, 2.0, 50.0, 1))
    pos = reconstruct(Position.flat(SYMBOL), Balance("ZEC", 2.0), history, bid=55.0, min_value=10.0)
    assert pos.symbol == SYMBOL
    assert pos.amount == 2.0
    assert pos.price == 50.0
    assert pos.high == 55.0
    assert len(history.calls) == 1


def test_unchanged_balance_only_moves_high_water_mark():
    prev = Position(SYMBOL, amount=2.0, price=50.0, high=60.0)
    up = reconstruct(prev, Balance("ZEC", 2.0), _no_history, bid=70.0, min_value=10.0)
    assert up == Position(SYMBOL, amount=2.0, price=50.0, high=70.0)

    down = reconstruct(up, Balance("ZEC", 2.0), _no_history, bid=55.0, min_value=10.0)
    assert down.high == 70.0


def test_unchanged_dust_position_is_returned_as_is():
    prev = Position(SYMBOL, amount=0.1, price=5.0, high=0.0)
    assert reconstruct(prev, Balance("ZEC", 0.1), _no_history, bid=500.0, min_value=10.0) is prev


def test_dust_balance_short_circuits_without_history():
    pos = reconstruct(Position.flat(SYMBOL), Balance("ZEC", 0.05), _no_history, bid=100.0, min_value=10.0)
    assert pos == Position(SYMBOL, amount=0.05, price=0.0, high=0.0)


def test_fills_are_walked_newest_first():
    # unordered input; the newest BUY alone already matches the balance
    history = _history(_fill(SIDE_BUY, 1.0, 100.0, 1), _fill(SIDE_BUY, 1.0, 200.0, 2))
    pos = reconstruct(Position.flat(SYMBOL), Balance("ZEC", 1.0), history, bid=190.0, min_value=10.0)
    assert pos.amount == 1.0
    assert pos.price == 200.0
    assert pos.high == 200.0


def test_walk_averages_until_balance_is_matched():
    history = _history(
        _fill(SIDE_BUY, 1.0, 80.0, 1),
        _fill(SIDE_BUY, 1.0, 100.0, 2),
        _fill(SIDE_BUY, 1.0, 120.0, 3),
    )
    pos = reconstruct(Position.flat(SYMBOL), Balance("ZEC", 2.0), history, bid=115.0, min_value=10.0)
    assert pos.amount == 2.0
    assert pos.price == pytest.approx(110.0)
    assert pos.high == pytest.approx(115.0)


def test_partial_close_descending_walk_collapses_to_flat():
    # BUY 10@100, BUY 10@120, SELL 10@130 leaves 10 on the account. Walking
    # newest first starts at the SELL, goes negative and then hits a zero
    # running amount, so the result is collapsed rather than averaged.
    history = _history(
        _fill(SIDE_BUY, 10.0, 100.0, 1),
        _fill(SIDE_BUY, 10.0, 120.0, 2),
        _fill(SIDE_SELL, 10.0, 130.0, 3),
    )
    assert walk_fills(history(), 10.0) == (pytest.approx(-10.0), pytest.approx(130.0))

    pos = reconstruct(Position.flat(SYMBOL), Balance("ZEC", 10.0), history, bid=125.0, min_value=10.0)
    assert pos.amount == 0.0
    assert pos.price == 0.0
    assert pos.high == 125.0


def test_zero_denominator_ends_walk():
    fills = [_fill(SIDE_BUY, 1.0, 100.0, 2), _fill(SIDE_SELL, 1.0, 90.0, 1)]
    amount, avg = walk_fills(fills, 0.5)
    assert amount == 1.0
    assert avg == 100.0


def test_sell_then_buy_average():
    # newest first: BUY 2@110 then SELL 1@100 (older)
    fills = [_fill(SIDE_SELL, 1.0, 100.0, 1), _fill(SIDE_BUY, 2.0, 110.0, 2)]
    amount, avg = walk_fills(fills, 1.0)
    assert amount == pytest.approx(1.0)
    assert avg == pytest.approx(120.0)


def test_partially_filled_order_uses_filled_for_price_and_order_amount_for_size():
    fills = [_fill(SIDE_BUY, 4.0, 50.0, 1, filled=2.0)]
    amount, avg = walk_fills(fills, 4.0)
    assert amount == 4.0
    assert avg == 50.0


def test_small_walked_notional_collapses_and_keeps_bid_as_high():
    history = _history(_fill(SIDE_BUY, 1.0, 5.0, 1))
    pos = reconstruct(Position.flat(SYMBOL), Balance("ZEC", 1.0), history, bid=20.0, min_value=10.0)
    assert (pos.amount, pos.price) == (0.0, 0.0)
    assert pos.high == 20.0


def test_high_never_below_entry_price():
    history = _history(_fill(SIDE_BUY, 1.0, 100.0, 1))
    pos = reconstruct(Position.flat(SYMBOL), Balance("ZEC", 1.0), history, bid=90.0, min_value=10.0)
    assert pos.price == 100.0
    assert pos.high == 100.0


def test_history_errors_propagate():
    def broken():
        raise NetworkError("timeout", exchange="binance")

    with pytest.raises(NetworkError):
        reconstruct(Position.flat(SYMBOL), Balance("ZEC", 1.0), broken, bid=100.0, min_value=10.0)
