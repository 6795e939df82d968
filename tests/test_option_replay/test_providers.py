"""
Tests for option_replay/data_providers - synthetic, local file, Massive
REST and Alpha Vantage earnings.

HTTP is never hit: requests sessions are MagicMocks and the Massive
provider's sleep function is a stub.
"""

import pytest
import pytz
import requests
from datetime import datetime
from unittest.mock import MagicMock

from option_replay.data_providers.base import closest, round_half_away, round_to_increment
from option_replay.data_providers.earnings import AlphaVantageEarnings
from option_replay.data_providers.local_file_provider import LocalFileDataProvider
from option_replay.data_providers.massive_provider import (
    MassiveDataProvider,
    option_symbol,
    strike_multiplier,
)
from option_replay.data_providers.synthetic_provider import SyntheticDataProvider
from option_replay.errors import ConfigurationError, DataUnavailableError, ProviderError

NY = pytz.timezone('America/New_York')


def _ms(dt):
    """Epoch milliseconds for a New York wall-clock time."""
    return int(NY.localize(dt).timestamp() * 1000)


def _response(status=200, payload=None, text=''):
    response = MagicMock()
    response.status_code = status
    response.json.return_value = payload if payload is not None else {}
    response.text = text
    return response


# =============================================================================
# Rounding helpers
# =============================================================================

class TestRoundingHelpers:
    def test_round_half_away(self):
        assert round_half_away(2.5) == 3.0
        assert round_half_away(-2.5) == -3.0
        assert round_half_away(1.25, 1) == 1.3

    def test_round_to_increment(self):
        assert round_to_increment(581.39, 1.0) == 581.0
        assert round_to_increment(581.39, 2.5) == 582.5
        assert round_to_increment(582.5, 5.0) == 585.0

    def test_closest_tie_goes_low(self):
        assert closest([585.0, 580.0, 582.5], 581.25) == 580.0
        assert closest([580.0, 582.5, 585.0], 581.4) == 582.5


# =============================================================================
# Synthetic
# =============================================================================

class TestSyntheticProvider:
    """Seeded random walk."""

    def test_same_seed_same_bars(self):
        start, end = datetime(2024, 1, 1), datetime(2024, 3, 31)
        a = SyntheticDataProvider(seed=7).get_bars('SPY', start, end)
        b = SyntheticDataProvider(seed=7).get_bars('SPY', start, end)
        assert a == b
        assert a != SyntheticDataProvider(seed=8).get_bars('SPY', start, end)

    def test_weekdays_only_and_sorted(self):
        bars = SyntheticDataProvider(seed=1).get_bars('SPY', datetime(2024, 1, 1), datetime(2024, 1, 31))
        assert len(bars) == 23
        assert all(b.date.weekday() < 5 for b in bars)
        assert [b.date for b in bars] == sorted(b.date for b in bars)
        assert all(b.low <= min(b.open, b.close) and b.high >= max(b.open, b.close) for b in bars)

    def test_cached_subrange(self):
        provider = SyntheticDataProvider(seed=1)
        full = provider.get_bars('SPY', datetime(2024, 1, 1), datetime(2024, 1, 31))
        sub = provider.get_bars('spy', datetime(2024, 1, 8), datetime(2024, 1, 12))
        assert sub == [b for b in full if 8 <= b.date.day <= 12]

    def test_friday_expiries(self):
        expiries = SyntheticDataProvider(seed=1).get_relevant_expiries(
            'SPY', datetime(2024, 1, 1), datetime(2024, 1, 31))
        assert expiries == [datetime(2024, 1, d) for d in (5, 12, 19, 26)]

    def test_rounding(self):
        assert SyntheticDataProvider(strike_interval=5.0).round_to_nearest_strike(
            'SPY', datetime(2024, 2, 2), datetime(2024, 1, 2), 581.39) == 580.0
        assert SyntheticDataProvider(strike_interval=0).round_to_nearest_strike(
            'SPY', datetime(2024, 2, 2), datetime(2024, 1, 2), 581.386) == 581.39

    def test_option_price_from_series(self):
        provider = SyntheticDataProvider(seed=3)
        bars = provider.get_bars('SPY', datetime(2024, 1, 1), datetime(2024, 1, 31))
        spot = bars[0].close
        call = provider.get_option_price('SPY', round(spot), datetime(2024, 2, 2), 'call', bars[0].date)
        put = provider.get_option_price('SPY', round(spot), datetime(2024, 2, 2), 'put', bars[0].date)
        assert call > 0 and put > 0

    def test_option_price_without_bars(self):
        with pytest.raises(DataUnavailableError):
            SyntheticDataProvider(seed=1).get_option_price(
                'SPY', 100.0, datetime(2024, 2, 2), 'call', datetime(2024, 1, 2))

    def test_atm_prices(self):
        strike, call, put = SyntheticDataProvider(seed=1).get_atm_prices(
            'SPY', datetime(2024, 2, 2), datetime(2024, 1, 2), 581.386)
        assert strike == 581.39
        assert call > 0 and put > 0

    def test_no_earnings(self):
        with pytest.raises(DataUnavailableError):
            SyntheticDataProvider(seed=1).get_earnings_dates('SPY')

    def test_secondary_serves_quotes(self):
        secondary = MagicMock()
        secondary.get_option_price.return_value = 4.2
        provider = SyntheticDataProvider(seed=1, secondary=secondary)
        assert provider.get_option_price('SPY', 100.0, datetime(2024, 2, 2), 'call',
                                         datetime(2024, 1, 2)) == 4.2


# =============================================================================
# Local file
# =============================================================================

class TestLocalFileProvider:
    """CSV bars and strike intervals."""

    @pytest.fixture
    def data_dir(self, tmp_path):
        (tmp_path / 'SPY.csv').write_text(
            "Date,Open,High,Low,Close,Volume\n"
            "2024-01-03,471.0,473.0,470.0,472.5,1000\n"
            "2024-01-02,470.0,472.0,469.0,471.0,900\n"
            "2024-01-03,0,0,0,0,0\n"
            "2023-12-29,475.0,476.0,474.0,475.3,800\n"
        )
        (tmp_path / 'intervals.csv').write_text("underlying,interval\nSPY,5\nQQQ,abc\n")
        return tmp_path

    def test_bars_filtered_sorted_unique(self, data_dir):
        bars = LocalFileDataProvider(data_dir).get_bars('spy', datetime(2024, 1, 1), datetime(2024, 1, 31))
        assert [b.date for b in bars] == [datetime(2024, 1, 2), datetime(2024, 1, 3)]
        assert bars[1].close == 472.5, "First row wins for duplicate dates"

    def test_missing_volume_defaults(self, tmp_path):
        (tmp_path / 'IWM.csv').write_text("date,open,high,low,close\n2024-01-02,1,2,0.5,1.5\n")
        bars = LocalFileDataProvider(tmp_path).get_bars('IWM', datetime(2024, 1, 1), datetime(2024, 1, 31))
        assert bars[0].volume == 0.0

    def test_missing_columns(self, tmp_path):
        (tmp_path / 'IWM.csv').write_text("date,close\n2024-01-02,1.5\n")
        with pytest.raises(ProviderError, match='missing columns'):
            LocalFileDataProvider(tmp_path).get_bars('IWM', datetime(2024, 1, 1), datetime(2024, 1, 31))

    def test_missing_file_delegates(self, data_dir):
        secondary = MagicMock()
        secondary.get_bars.return_value = ['delegated']
        provider = LocalFileDataProvider(data_dir, secondary=secondary)
        assert provider.get_bars('QQQ', datetime(2024, 1, 1), datetime(2024, 1, 31)) == ['delegated']

    def test_missing_file_without_secondary(self, data_dir):
        with pytest.raises(DataUnavailableError):
            LocalFileDataProvider(data_dir).get_bars('QQQ', datetime(2024, 1, 1), datetime(2024, 1, 31))

    def test_interval_rounding(self, data_dir):
        provider = LocalFileDataProvider(data_dir)
        assert provider.get_interval('spy') == 5.0
        assert provider.round_to_nearest_strike('SPY', datetime(2024, 2, 2), datetime(2024, 1, 2), 581.39) == 580.0

    def test_bad_interval_falls_back(self, data_dir):
        provider = LocalFileDataProvider(data_dir)
        assert provider.get_interval('QQQ') == 0.0
        assert provider.round_to_nearest_strike('QQQ', datetime(2024, 2, 2), datetime(2024, 1, 2), 401.237) == 401.24

    def test_no_intervals_file(self, tmp_path):
        secondary = MagicMock()
        secondary.round_to_nearest_strike.return_value = 400.0
        provider = LocalFileDataProvider(tmp_path, secondary=secondary)
        assert provider.round_to_nearest_strike('QQQ', datetime(2024, 2, 2), datetime(2024, 1, 2), 401.2) == 400.0

    def test_quotes_delegated(self, data_dir):
        with pytest.raises(DataUnavailableError):
            LocalFileDataProvider(data_dir).get_option_price(
                'SPY', 470.0, datetime(2024, 2, 2), 'call', datetime(2024, 1, 2))


# =============================================================================
# Massive REST
# =============================================================================

class TestOptionSymbol:
    def test_call(self):
        assert option_symbol('spy', datetime(2024, 12, 20), 'call', 450) == 'O:SPY241220C00450000'

    def test_fractional_put(self):
        assert option_symbol('SPY', datetime(2024, 1, 19), 'PUT', 581.5) == 'O:SPY240119P00581500'

    @pytest.mark.parametrize('low,expected', [(50, 1.0), (470, 10.0), (4700, 100.0), (17000, 1000.0)])
    def test_strike_multiplier(self, low, expected):
        assert strike_multiplier(low) == expected


class TestMassiveProvider:
    """REST client with a mocked requests session."""

    @pytest.fixture
    def session(self):
        return MagicMock()

    @pytest.fixture
    def sleep(self):
        return MagicMock()

    @pytest.fixture
    def provider(self, session, sleep):
        return MassiveDataProvider(api_key='test-key', base_url='https://api.test/',
                                   session=session, sleep=sleep, max_rate_limit_retries=2)

    def test_requires_key(self, monkeypatch):
        monkeypatch.setattr('option_replay.data_providers.massive_provider.get_polygon_key', lambda: None)
        with pytest.raises(ConfigurationError):
            MassiveDataProvider()

    def test_unknown_timezone(self):
        with pytest.raises(ConfigurationError):
            MassiveDataProvider(api_key='k', timezone='Nowhere/Special')

    def test_daily_bars(self, provider, session):
        session.get.return_value = _response(payload={'results': [
            {'t': _ms(datetime(2024, 1, 2)), 'o': 470, 'h': 472, 'l': 469, 'c': 471, 'v': 1e6},
            {'t': _ms(datetime(2024, 1, 3)), 'o': 471, 'h': 473, 'l': 470, 'c': 472.5, 'v': 2e6},
        ]})
        bars = provider.get_bars('spy', datetime(2024, 1, 1), datetime(2024, 1, 5))

        assert [b.date for b in bars] == [datetime(2024, 1, 2), datetime(2024, 1, 3)]
        assert bars[1].close == 472.5
        url = session.get.call_args.args[0]
        assert url == 'https://api.test/v2/aggs/ticker/SPY/range/1/day/2024-01-01/2024-01-05'
        assert session.get.call_args.kwargs['params']['apiKey'] == 'test-key'

    def test_rate_limit_retry(self, provider, session, sleep):
        session.get.side_effect = [_response(429), _response(payload={'results': []})]
        assert provider.get_bars('SPY', datetime(2024, 1, 1), datetime(2024, 1, 5)) == []
        assert sleep.call_count == 1
        assert 0 <= sleep.call_args.args[0] <= 60

    def test_rate_limit_exhausted(self, provider, session, sleep):
        session.get.return_value = _response(429)
        with pytest.raises(ProviderError, match='rate limited'):
            provider.get_bars('SPY', datetime(2024, 1, 1), datetime(2024, 1, 5))
        assert sleep.call_count == 3

    def test_error_status(self, provider, session):
        session.get.return_value = _response(500, text='internal error')
        with pytest.raises(ProviderError, match='500'):
            provider.get_bars('SPY', datetime(2024, 1, 1), datetime(2024, 1, 5))

    def test_network_failure(self, provider, session):
        session.get.side_effect = requests.exceptions.ConnectionError('down')
        with pytest.raises(ProviderError, match='request failed'):
            provider.get_bars('SPY', datetime(2024, 1, 1), datetime(2024, 1, 5))

    def test_contracts_pagination(self, provider, session):
        next_url = 'https://api.test/v3/reference/options/contracts?cursor=abc'
        session.get.side_effect = [
            _response(payload={
                'results': [{'expiration_date': '2024-01-19', 'strike_price': 470, 'contract_type': 'call',
                             'ticker': 'O:SPY240119C00470000'}],
                'next_url': next_url,
            }),
            _response(payload={
                'results': [{'expiration_date': '2024-01-26', 'strike_price': 470, 'contract_type': 'call'},
                            {'expiration_date': None}],
            }),
        ]
        contracts = provider.get_contracts('SPY', strike=470.0, start=datetime(2024, 1, 1),
                                           end=datetime(2024, 1, 31))

        assert [c.expiration for c in contracts] == [datetime(2024, 1, 19), datetime(2024, 1, 26)]
        first_params = session.get.call_args_list[0].kwargs['params']
        assert first_params['strike_price'] == '470'
        assert first_params['expiration_date.gte'] == '2024-01-01'
        second = session.get.call_args_list[1]
        assert second.args[0] == next_url
        assert second.kwargs['params'] == {'apiKey': 'test-key'}

    def test_relevant_expiries_union(self, provider, session):
        """Range 470-480 samples strikes 470 and 480 (multiplier 10)."""
        def fake_get(url, params=None, timeout=None):
            if '/v2/aggs/' in url:
                return _response(payload={'results': [
                    {'t': _ms(datetime(2024, 1, 2)), 'o': 475, 'h': 480, 'l': 470, 'c': 475},
                ]})
            by_strike = {
                '470': ['2024-01-19', '2024-01-12'],
                '480': ['2024-01-19', '2024-02-02'],
            }
            dates = by_strike[params['strike_price']]
            return _response(payload={'results': [{'expiration_date': d} for d in dates]})

        session.get.side_effect = fake_get
        expiries = provider.get_relevant_expiries('SPY', datetime(2024, 1, 1), datetime(2024, 2, 29))
        assert expiries == [datetime(2024, 1, 12), datetime(2024, 1, 19), datetime(2024, 2, 2)]

    def test_relevant_expiries_no_spot(self, provider, session):
        session.get.return_value = _response(payload={'results': []})
        with pytest.raises(DataUnavailableError):
            provider.get_relevant_expiries('SPY', datetime(2024, 1, 1), datetime(2024, 2, 29))

    def test_price_before_window(self, provider, session):
        session.get.return_value = _response(payload={'results': [
            {'t': _ms(datetime(2024, 1, 2, 9, 26)), 'o': 2.0, 'c': 2.1},
            {'t': _ms(datetime(2024, 1, 2, 9, 29)), 'o': 2.2, 'c': 2.3},
        ]})
        price = provider.get_option_price('SPY', 470.0, datetime(2024, 1, 19), 'call',
                                          datetime(2024, 1, 2, 9, 30))
        assert price == 2.3
        url = session.get.call_args.args[0]
        assert '/O:SPY240119C00470000/range/1/minute/' in url
        assert url.endswith(f"/{_ms(datetime(2024, 1, 2, 9, 25))}/{_ms(datetime(2024, 1, 2, 9, 30))}")

    def test_price_after_window(self, provider, session):
        session.get.side_effect = [
            _response(payload={'results': []}),
            _response(payload={'results': [
                {'t': _ms(datetime(2024, 1, 2, 9, 31)), 'o': 2.4, 'c': 2.5},
            ]}),
        ]
        price = provider.get_option_price('SPY', 470.0, datetime(2024, 1, 19), 'call',
                                          datetime(2024, 1, 2, 9, 30))
        assert price == 2.4

    def test_price_unavailable(self, provider, session):
        session.get.return_value = _response(payload={})
        with pytest.raises(DataUnavailableError):
            provider.get_option_price('SPY', 470.0, datetime(2024, 1, 19), 'call',
                                      datetime(2024, 1, 2, 9, 30))

    def test_closest_listed_strike(self, provider, session):
        session.get.return_value = _response(payload={'results': [
            {'expiration_date': '2024-01-19', 'strike_price': s} for s in (580, 582.5, 585)
        ]})
        strike = provider.round_to_nearest_strike('SPY', datetime(2024, 1, 19), datetime(2024, 1, 2), 581.4)
        assert strike == 582.5

    def test_rounding_falls_back_without_listing(self, provider, session):
        session.get.return_value = _response(500, text='down')
        strike = provider.round_to_nearest_strike('SPY', datetime(2024, 1, 19), datetime(2024, 1, 2), 581.386)
        assert strike == 581.39

    def test_atm_prices_delegate_on_failure(self, session, sleep):
        secondary = MagicMock()
        secondary.round_to_nearest_strike.return_value = 581.0
        secondary.get_atm_prices.return_value = (581.0, 9.0, 8.5)
        provider = MassiveDataProvider(api_key='k', session=session, sleep=sleep, secondary=secondary)
        session.get.return_value = _response(payload={'results': []})

        assert provider.get_atm_prices('SPY', datetime(2024, 2, 2), datetime(2024, 1, 2), 581.39) == (581.0, 9.0, 8.5)

    def test_earnings_source(self, provider):
        source = MagicMock()
        source.get_earnings_dates.return_value = [datetime(2024, 1, 25)]
        provider.earnings_source = source
        assert provider.get_earnings_dates('MSFT') == [datetime(2024, 1, 25)]

    def test_no_earnings_source(self, provider):
        with pytest.raises(DataUnavailableError):
            provider.get_earnings_dates('MSFT')


# =============================================================================
# Alpha Vantage earnings
# =============================================================================

class TestAlphaVantageEarnings:
    """Earnings calendar client."""

    def test_parse_and_cache(self):
        session = MagicMock()
        session.get.return_value = _response(payload={'quarterlyEarnings': [
            {'reportedDate': '2024-01-25'},
            {'reportedDate': 'None'},
            {'reportedDate': '2023-10-24'},
        ]})
        earnings = AlphaVantageEarnings(api_key='k', session=session)

        assert earnings.get_earnings_dates('msft') == [datetime(2024, 1, 25), datetime(2023, 10, 24)]
        earnings.get_earnings_dates('MSFT')
        assert session.get.call_count == 1, "Second lookup should hit the cache"
        assert session.get.call_args.kwargs['params']['symbol'] == 'MSFT'

    def test_http_error(self):
        session = MagicMock()
        response = _response(503)
        response.raise_for_status.side_effect = requests.exceptions.HTTPError('503')
        session.get.return_value = response
        with pytest.raises(ProviderError):
            AlphaVantageEarnings(api_key='k', session=session).get_earnings_dates('MSFT')

    def test_requires_key(self, monkeypatch):
        monkeypatch.setattr('option_replay.data_providers.earnings.get_alphavantage_key', lambda: None)
        with pytest.raises(ConfigurationError):
            AlphaVantageEarnings()
