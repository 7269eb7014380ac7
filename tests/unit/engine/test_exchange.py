# tests/unit/engine/test_exchange.py
"""
Tests for Exchange - thread-safe ingestion and per-tick processing.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from engine.exchange import Exchange, PhaseError
from engine.orders import Side


class TestConstruction:
    def test_one_book_per_instrument(self):
        ex = Exchange(num_instruments=4, initial_price=50.0)
        assert len(ex.order_books) == 4
        assert [b.instrument_id for b in ex.order_books] == [0, 1, 2, 3]
        assert ex.price_snapshot().tolist() == [50.0] * 4

    @pytest.mark.parametrize("n", [0, -1])
    def test_rejects_non_positive_instrument_count(self, n):
        with pytest.raises(ValueError):
            Exchange(num_instruments=n)

    def test_rejects_unknown_policy(self):
        with pytest.raises(ValueError, match="policy"):
            Exchange(num_instruments=1, global_view_policy="median")

    def test_rejects_bad_weight(self):
        with pytest.raises(ValueError):
            Exchange(num_instruments=1, global_view_policy="blend", global_view_weight=1.5)


class TestSubmitOrder:
    def test_assigns_monotonic_ids(self, make_order):
        ex = Exchange(num_instruments=2)
        ids = [ex.submit_order(make_order(100.0, 1, instrument_id=i % 2)) for i in range(5)]
        assert ids == [1, 2, 3, 4, 5]
        assert ex.pending_count == 5

    def test_caller_order_not_mutated(self, make_order):
        ex = Exchange(num_instruments=1)
        order = make_order(100.0, 1)
        ex.submit_order(order)
        assert order.order_id == 0

    @pytest.mark.parametrize("instrument_id", [-1, 3, 100])
    def test_drops_out_of_range_instrument(self, make_order, instrument_id):
        ex = Exchange(num_instruments=3)
        assert ex.submit_order(make_order(100.0, 1, instrument_id=instrument_id)) is None
        assert ex.pending_count == 0

    @pytest.mark.parametrize("volume", [0, -5])
    def test_drops_non_positive_volume(self, make_order, volume):
        ex = Exchange(num_instruments=1)
        assert ex.submit_order(make_order(100.0, volume)) is None
        assert ex.pending_count == 0

    def test_dropped_orders_do_not_consume_ids(self, make_order):
        ex = Exchange(num_instruments=1)
        ex.submit_order(make_order(100.0, 0))
        assert ex.submit_order(make_order(100.0, 1)) == 1

    def test_concurrent_submissions_lose_nothing(self, make_order):
        """1000 concurrent submissions -> 1000 booked orders, unique ids, empty queue."""
        ex = Exchange(num_instruments=3)
        start = threading.Barrier(16)

        def submit(i):
            if i < 16:
                start.wait(timeout=10)
            # Non-crossing prices so every order stays resting
            side = Side.BUY if i % 2 == 0 else Side.SELL
            price = 90.0 if side is Side.BUY else 110.0
            return ex.submit_order(make_order(price, 1, side, agent_id=i, instrument_id=i % 3))

        with ThreadPoolExecutor(max_workers=16) as pool:
            ids = list(pool.map(submit, range(1000)))

        assert sorted(ids) == list(range(1, 1001))

        trades = ex.process_tick(0)

        assert trades == 0
        assert ex.pending_count == 0
        booked = [o for book in ex.order_books for o in book.bids + book.asks]
        assert len(booked) == 1000
        assert len({o.order_id for o in booked}) == 1000
        for book in ex.order_books:
            assert all(o.instrument_id == book.instrument_id for o in book.bids + book.asks)


class TestProcessTick:
    def test_routes_and_matches_per_instrument(self, make_order):
        ex = Exchange(num_instruments=2)
        ex.submit_order(make_order(101.0, 5, Side.BUY, agent_id=1, instrument_id=1))
        ex.submit_order(make_order(99.0, 3, Side.SELL, agent_id=2, instrument_id=1))
        ex.submit_order(make_order(90.0, 1, Side.BUY, agent_id=3, instrument_id=0))

        assert ex.process_tick(tick=7) == 1

        assert ex.price(1) == 100.0
        assert ex.price(0) == 100.0  # untouched initial price
        assert len(ex.trade_log) == 1
        assert ex.trade_log[0].tick == 7
        assert ex.order_books[1].bids[0].volume == 2
        assert len(ex.order_books[0].bids) == 1

    def test_trade_log_in_instrument_order(self, make_order):
        ex = Exchange(num_instruments=3)
        # Submit instrument 2 first; processing order is still 0, 1, 2
        for instrument_id in (2, 0, 1):
            ex.submit_order(make_order(101.0, 1, Side.BUY, instrument_id=instrument_id))
            ex.submit_order(make_order(99.0, 1, Side.SELL, instrument_id=instrument_id))

        ex.process_tick(0)

        assert [t.instrument_id for t in ex.trade_log] == [0, 1, 2]

    def test_trade_log_appends_across_ticks(self, make_order):
        ex = Exchange(num_instruments=1)
        for tick in range(3):
            ex.submit_order(make_order(101.0, 1, Side.BUY, timestamp=tick))
            ex.submit_order(make_order(99.0, 1, Side.SELL, timestamp=tick))
            assert ex.process_tick(tick) == 1

        assert [t.tick for t in ex.trade_log] == [0, 1, 2]

    def test_empty_tick(self):
        ex = Exchange(num_instruments=2)
        assert ex.process_tick(0) == 0
        assert ex.trade_log == []


class TestPhases:
    def test_process_refused_while_window_open(self, make_order):
        ex = Exchange(num_instruments=1)
        window = ex.submission_window()
        window.submit(make_order(100.0, 1))

        with pytest.raises(PhaseError):
            ex.process_tick(0)

        window.close()
        ex.process_tick(0)
        assert ex.pending_count == 0

    def test_window_context_manager_closes(self, make_order):
        ex = Exchange(num_instruments=1)
        with ex.submission_window() as window:
            assert window.submit(make_order(100.0, 1)) == 1
        ex.process_tick(0)

    def test_closed_window_rejects_submissions(self, make_order):
        ex = Exchange(num_instruments=1)
        with ex.submission_window() as window:
            pass
        with pytest.raises(PhaseError):
            window.submit(make_order(100.0, 1))

    def test_window_drops_malformed_orders(self, make_order):
        ex = Exchange(num_instruments=1)
        with ex.submission_window() as window:
            assert window.submit(make_order(100.0, 0)) is None

    def test_submit_refused_while_processing(self, make_order, monkeypatch):
        ex = Exchange(num_instruments=1)
        errors = []

        def match_and_submit(tick):
            with pytest.raises(PhaseError) as excinfo:
                ex.submit_order(make_order(100.0, 1))
            errors.append(excinfo.value)
            return []

        monkeypatch.setattr(ex.order_books[0], "match_orders", match_and_submit)
        ex.process_tick(0)

        assert len(errors) == 1
        assert ex.pending_count == 0
        # Accepted again once processing is over
        assert ex.submit_order(make_order(100.0, 1)) == 1

    def test_nested_process_tick_refused(self, monkeypatch):
        ex = Exchange(num_instruments=1)
        errors = []

        def match_and_process(tick):
            with pytest.raises(PhaseError) as excinfo:
                ex.process_tick(tick + 1)
            errors.append(excinfo.value)
            return []

        monkeypatch.setattr(ex.order_books[0], "match_orders", match_and_process)
        assert ex.process_tick(0) == 0

        assert len(errors) == 1
        assert "another tick" in str(errors[0])


class TestMarketData:
    def test_unknown_instrument_returns_zero(self):
        ex = Exchange(num_instruments=1)
        assert ex.price(5) == 0.0
        assert ex.historical_average(-1) == 0.0

    def test_historical_average_delegates(self, make_order):
        ex = Exchange(num_instruments=1)
        for tick, (bid, ask) in enumerate([(101.0, 99.0), (103.0, 101.0)]):
            ex.submit_order(make_order(bid, 1, Side.BUY, timestamp=tick))
            ex.submit_order(make_order(ask, 1, Side.SELL, timestamp=tick))
            ex.process_tick(tick)

        assert ex.historical_average(0) == pytest.approx(101.0)

    def test_price_snapshot_is_a_copy(self):
        ex = Exchange(num_instruments=2)
        snap = ex.price_snapshot()
        snap[0] = -1.0
        assert ex.price(0) == 100.0


class TestGlobalView:
    def test_local_policy_is_noop(self):
        ex = Exchange(num_instruments=2)
        ex.apply_global_view([150.0, 50.0])
        assert ex.price_snapshot().tolist() == [100.0, 100.0]

    def test_blend_policy_moves_last_price(self):
        ex = Exchange(num_instruments=2, global_view_policy="blend", global_view_weight=0.25)
        ex.apply_global_view(np.array([120.0, 80.0]))

        assert ex.price(0) == pytest.approx(105.0)
        assert ex.price(1) == pytest.approx(95.0)
        # History only records executed trades
        assert all(book.price_history == [] for book in ex.order_books)

    def test_length_mismatch_raises(self):
        ex = Exchange(num_instruments=3)
        with pytest.raises(ValueError):
            ex.apply_global_view([1.0, 2.0])
