"""
Tests for price_feed.py - Oracle collaborators

Tests cover:
- StaticPriceFeed answers and updates
- TimeSeriesPriceFeed historical lookup and publish times
- Protocol conformance
"""

from datetime import datetime, timedelta

from perps import Quote, PriceFeed, StaticPriceFeed, TimeSeriesPriceFeed


T0 = datetime(2025, 1, 1)


class TestStaticPriceFeed:

    def test_returns_answer(self):
        feed = StaticPriceFeed({"WBTC": 5_000_000_000_000})
        assert feed.latest_quote("WBTC", T0) == Quote(5_000_000_000_000)

    def test_unknown_symbol_returns_none(self):
        feed = StaticPriceFeed({"WBTC": 1})
        assert feed.latest_quote("ETH", T0) is None

    def test_answer_is_time_independent(self):
        feed = StaticPriceFeed({"WBTC": 42})
        assert feed.latest_quote("WBTC", T0).answer == feed.latest_quote("WBTC", T0 + timedelta(days=365)).answer

    def test_update_answer_records_publish_time(self):
        feed = StaticPriceFeed({"WBTC": 1})
        feed.update_answer("WBTC", 2, updated_at=T0)
        assert feed.latest_quote("WBTC", T0) == Quote(2, T0)

    def test_update_answers(self):
        feed = StaticPriceFeed({})
        feed.update_answers({"WBTC": 3, "USDC": 4})
        assert feed.latest_quote("WBTC", T0).answer == 3
        assert feed.latest_quote("USDC", T0).answer == 4

    def test_constructor_copies_input(self):
        answers = {"WBTC": 1}
        feed = StaticPriceFeed(answers)
        answers["WBTC"] = 99
        assert feed.latest_quote("WBTC", T0).answer == 1


class TestTimeSeriesPriceFeed:

    def test_returns_latest_at_or_before(self):
        feed = TimeSeriesPriceFeed({"WBTC": [
            (T0 + timedelta(days=1), 200),
            (T0, 100),
        ]})
        assert feed.latest_quote("WBTC", T0) == Quote(100, T0)
        assert feed.latest_quote("WBTC", T0 + timedelta(hours=12)) == Quote(100, T0)
        assert feed.latest_quote("WBTC", T0 + timedelta(days=1)) == Quote(200, T0 + timedelta(days=1))

    def test_before_first_observation_returns_none(self):
        feed = TimeSeriesPriceFeed({"WBTC": [(T0, 100)]})
        assert feed.latest_quote("WBTC", T0 - timedelta(seconds=1)) is None

    def test_unknown_symbol_returns_none(self):
        feed = TimeSeriesPriceFeed()
        assert feed.latest_quote("WBTC", T0) is None

    def test_add_answers_out_of_order(self):
        feed = TimeSeriesPriceFeed()
        feed.add_answer("WBTC", T0 + timedelta(days=2), 300)
        feed.add_answers({"WBTC": 100, "USDC": 1}, T0)
        assert feed.latest_quote("WBTC", T0 + timedelta(days=1)).answer == 100
        assert feed.latest_quote("USDC", T0 + timedelta(days=1)).answer == 1

    def test_empty_paths_are_ignored(self):
        feed = TimeSeriesPriceFeed({"WBTC": []})
        assert feed.latest_quote("WBTC", T0) is None


class TestProtocol:

    def test_feeds_satisfy_protocol(self):
        assert isinstance(StaticPriceFeed({}), PriceFeed)
        assert isinstance(TimeSeriesPriceFeed(), PriceFeed)
