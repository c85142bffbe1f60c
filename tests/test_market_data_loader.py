import unittest
from unittest import mock

import pandas as pd

from fundnav.market_data_loader import MarketDataError, fetch_nav_series, load_nav_histories


def make_history(dates, closes, tz='America/New_York'):
    """Mimics yfinance history(): tz-aware index, OHLC columns, unsorted input allowed."""
    index = pd.DatetimeIndex(pd.to_datetime(dates)).tz_localize(tz)
    return pd.DataFrame({
        'Open': closes,
        'High': closes,
        'Low': closes,
        'Close': closes,
        'Dividends': [0.0] * len(closes)
    }, index=index)


class TestFetchNavSeries(unittest.TestCase):

    @mock.patch('fundnav.market_data_loader.yf.Ticker')
    def test_returns_ordered_date_nav_frame(self, mock_ticker):
        mock_ticker.return_value.history.return_value = make_history(
            ['2024-01-03', '2024-01-02', '2024-01-04'], [12.5, 12.34, 12.6]
        )

        df = fetch_nav_series('ANCFX', '2024-01-01', '2024-01-04')

        self.assertEqual(list(df.columns), ['date', 'nav'])
        self.assertEqual(list(df['date']), ['2024-01-02', '2024-01-03', '2024-01-04'])
        self.assertEqual(list(df['nav']), [12.34, 12.5, 12.6])

        mock_ticker.assert_called_once_with('ANCFX')
        kwargs = mock_ticker.return_value.history.call_args.kwargs
        self.assertEqual(kwargs['start'], pd.Timestamp('2024-01-01'))
        # End date is inclusive for callers
        self.assertEqual(kwargs['end'], pd.Timestamp('2024-01-05'))

    @mock.patch('fundnav.market_data_loader.yf.Ticker')
    def test_drops_missing_closes(self, mock_ticker):
        mock_ticker.return_value.history.return_value = make_history(
            ['2024-01-02', '2024-01-03'], [12.34, float('nan')]
        )

        df = fetch_nav_series('ANCFX', '2024-01-01', '2024-01-03')

        self.assertEqual(list(df['date']), ['2024-01-02'])

    @mock.patch('fundnav.market_data_loader.time.sleep')
    @mock.patch('fundnav.market_data_loader.yf.Ticker')
    def test_retries_then_succeeds(self, mock_ticker, mock_sleep):
        mock_ticker.return_value.history.side_effect = [
            ConnectionError("reset by peer"),
            make_history(['2024-01-02'], [1.0]),
        ]

        with self.assertLogs('fundnav.market_data_loader', level='WARNING'):
            df = fetch_nav_series('AFAXX', '2024-01-01', '2024-01-02', retry_wait=5)

        self.assertEqual(len(df), 1)
        mock_sleep.assert_called_once_with(5)

    @mock.patch('fundnav.market_data_loader.time.sleep')
    @mock.patch('fundnav.market_data_loader.yf.Ticker')
    def test_empty_data_exhausts_retries(self, mock_ticker, mock_sleep):
        mock_ticker.return_value.history.return_value = pd.DataFrame()

        with self.assertLogs('fundnav.market_data_loader', level='WARNING'):
            with self.assertRaises(MarketDataError):
                fetch_nav_series('NOPEX', '2024-01-01', '2024-01-02', max_retries=3, retry_wait=1)

        self.assertEqual(mock_ticker.return_value.history.call_count, 3)
        # Exponential backoff between attempts
        self.assertEqual([c.args[0] for c in mock_sleep.call_args_list], [1, 2])


class TestLoadNavHistories(unittest.TestCase):

    def test_failures_are_isolated_per_fund(self):
        def fetcher(ticker, start_date, end_date):
            if ticker == 'AGTHX':
                raise MarketDataError("Failed to fetch data for AGTHX")
            return pd.DataFrame({'date': ['2024-01-02'], 'nav': [12.34]})

        with self.assertLogs('fundnav.market_data_loader', level='WARNING'):
            histories = load_nav_histories(['ANCFX', 'AGTHX', 'AFAXX'], '2024-01-01', fetcher=fetcher)

        self.assertEqual(list(histories), ['ANCFX', 'AGTHX', 'AFAXX'])
        self.assertEqual(len(histories['ANCFX']), 1)
        self.assertTrue(histories['AGTHX'].empty)
        self.assertEqual(list(histories['AGTHX'].columns), ['date', 'nav'])

    def test_passes_date_range(self):
        fetcher = mock.Mock(return_value=pd.DataFrame({'date': [], 'nav': []}))

        load_nav_histories(['ANCFX'], '2024-01-01', '2024-06-30', fetcher=fetcher)

        fetcher.assert_called_once_with('ANCFX', '2024-01-01', '2024-06-30')

    def test_no_tickers(self):
        self.assertEqual(load_nav_histories([], fetcher=mock.Mock()), {})


if __name__ == '__main__':
    unittest.main()
