import os
import tempfile
import unittest
from decimal import Decimal
from unittest import mock

import requests

from fundnav.distribution_loader import (
    CombinedFileSource,
    DistributionSourceError,
    IngestionMode,
    PerTickerFileSource,
    fetch_text,
    load_all_distributions,
    load_distribution_file,
    load_fund_distributions,
    make_source,
)

COMBINED_LISTING = (
    "AFAXX\n"
    "Daily Rate\tDate\n"
    "0.0001\t01/02/24\n"
    "0.0002\t01/02/24\n"
    "\n"
    "ANCFX\n"
    "Record Date\tReinvest NAV\tDividend\tCap. Gains\n"
    "01/15/24\t$12.34\t$0.10\t$0.05\n"
)


class FakeFetcher:
    """Serves listings from a dict and counts the requests."""

    def __init__(self, files):
        self.files = files
        self.calls = []

    def __call__(self, identifier):
        self.calls.append(identifier)
        if identifier not in self.files:
            raise DistributionSourceError(f"not found: {identifier}")
        return self.files[identifier]


class TestFetchText(unittest.TestCase):

    def test_reads_local_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, 'distributions.txt')
            with open(path, 'w', encoding='utf-8-sig') as f:
                f.write(COMBINED_LISTING)

            # BOM is dropped
            self.assertEqual(fetch_text(path), COMBINED_LISTING)

    def test_missing_file_raises_source_error(self):
        with self.assertRaises(DistributionSourceError):
            fetch_text(os.path.join(tempfile.gettempdir(), 'does-not-exist', 'x.txt'))

    @mock.patch('fundnav.distribution_loader.requests.get')
    def test_http_success(self, mock_get):
        mock_get.return_value.text = COMBINED_LISTING
        mock_get.return_value.raise_for_status.return_value = None

        self.assertEqual(fetch_text('https://example.com/distributions.txt'), COMBINED_LISTING)
        mock_get.assert_called_once_with('https://example.com/distributions.txt', timeout=10)

    @mock.patch('fundnav.distribution_loader.requests.get')
    def test_http_error_status_raises_source_error(self, mock_get):
        mock_get.return_value.raise_for_status.side_effect = requests.HTTPError("404 Client Error")

        with self.assertRaises(DistributionSourceError):
            fetch_text('https://example.com/missing.txt')

    @mock.patch('fundnav.distribution_loader.requests.get')
    def test_network_failure_raises_source_error(self, mock_get):
        mock_get.side_effect = requests.ConnectionError("connection refused")

        with self.assertRaises(DistributionSourceError):
            fetch_text('http://example.com/distributions.txt')


class TestSourceResolution(unittest.TestCase):

    def test_combined_source_uses_one_file(self):
        source = CombinedFileSource(base_path='data')
        self.assertEqual(source.identifier_for('ANCFX'), os.path.join('data', 'distributions.txt'))
        self.assertEqual(source.identifier_for('AFAXX'), os.path.join('data', 'distributions.txt'))
        self.assertIsNone(source.section_ticker('ANCFX'))

    def test_per_ticker_source_prefixes_by_fund_type(self):
        source = PerTickerFileSource(base_path='data')
        self.assertEqual(source.identifier_for('AFAXX'), os.path.join('data', 'mmf_AFAXX.txt'))
        self.assertEqual(source.identifier_for('ANCFX'), os.path.join('data', 'mf_ANCFX.txt'))
        self.assertEqual(source.section_ticker('ANCFX'), 'ANCFX')

    def test_url_base_path(self):
        source = PerTickerFileSource(base_path='https://example.com/funds/')
        self.assertEqual(source.identifier_for('ANCFX'), 'https://example.com/funds/mf_ANCFX.txt')

    def test_make_source(self):
        self.assertIsInstance(make_source('combined'), CombinedFileSource)
        self.assertIsInstance(make_source(IngestionMode.PER_TICKER), PerTickerFileSource)
        with self.assertRaises(ValueError):
            make_source('zip_archive')


class TestLoadFundDistributions(unittest.TestCase):

    def test_combined_mode(self):
        fetcher = FakeFetcher({os.path.join('data', 'distributions.txt'): COMBINED_LISTING})
        source = CombinedFileSource(base_path='data', fetcher=fetcher)

        table = load_fund_distributions('AFAXX', source=source)

        self.assertEqual(list(table), ['01/02/2024'])
        self.assertEqual(table['01/02/2024'].total_distributions, Decimal('0.0003'))
        self.assertEqual(table['01/02/2024'].reinvest_nav, Decimal('1.00'))

    def test_per_ticker_mode_without_ticker_line(self):
        fetcher = FakeFetcher({
            os.path.join('data', 'mf_ANCFX.txt'): "Record Date\tReinvest NAV\tDividend\n01/15/24\t$12.34\t$0.10\n",
        })
        source = PerTickerFileSource(base_path='data', fetcher=fetcher)

        table = load_fund_distributions('ANCFX', source=source)

        self.assertEqual(table['01/15/2024'].reinvest_nav, Decimal('12.34'))
        self.assertEqual(table['01/15/2024'].total_distributions, Decimal('0.10'))

    def test_missing_listing_yields_empty_table(self):
        source = PerTickerFileSource(base_path='data', fetcher=FakeFetcher({}))

        with self.assertLogs('fundnav.distribution_loader', level='WARNING'):
            table = load_fund_distributions('ANCFX', source=source)

        self.assertEqual(table, {})

    def test_real_files_on_disk(self):
        with tempfile.TemporaryDirectory() as tmp:
            with open(os.path.join(tmp, 'mmf_AFAXX.txt'), 'w', encoding='utf-8') as f:
                f.write("AFAXX\n0.0001\t01/02/24\n0.0002\t01/02/24\n")

            table = load_fund_distributions('AFAXX', source=PerTickerFileSource(base_path=tmp))

        self.assertEqual(table['01/02/2024'].total_distributions, Decimal('0.0003'))


class TestLoadAllDistributions(unittest.TestCase):

    def test_per_ticker_failures_are_isolated(self):
        fetcher = FakeFetcher({
            os.path.join('data', 'mmf_AFAXX.txt'): "0.0001\t01/02/24\n",
            os.path.join('data', 'mf_ANCFX.txt'): "01/02/24\t0.10\t12.34\n",
        })
        source = PerTickerFileSource(base_path='data', fetcher=fetcher)

        store = load_all_distributions(['AFAXX', 'ANCFX', 'AGTHX'], source=source, max_workers=3)

        self.assertEqual(store.tickers, ['AFAXX', 'ANCFX', 'AGTHX'])
        self.assertEqual(len(store.get_fund_data('AFAXX')), 1)
        self.assertEqual(len(store.get_fund_data('ANCFX')), 1)
        self.assertEqual(store.get_fund_data('AGTHX'), {})
        self.assertEqual(len(fetcher.calls), 3)

    def test_unexpected_task_error_does_not_cancel_siblings(self):
        def fetcher(identifier):
            if 'ANCFX' in identifier:
                raise RuntimeError("boom")
            return "0.0001\t01/02/24\n"

        source = PerTickerFileSource(base_path='data', fetcher=fetcher)

        with self.assertLogs('fundnav.distribution_loader', level='WARNING'):
            store = load_all_distributions(['AFAXX', 'ANCFX'], source=source)

        self.assertEqual(len(store.get_fund_data('AFAXX')), 1)
        self.assertEqual(store.get_fund_data('ANCFX'), {})

    def test_combined_listing_is_fetched_once(self):
        fetcher = FakeFetcher({os.path.join('data', 'distributions.txt'): COMBINED_LISTING})
        source = CombinedFileSource(base_path='data', fetcher=fetcher)

        store = load_all_distributions(['AFAXX', 'ANCFX', 'AGTHX'], source=source)

        self.assertEqual(len(fetcher.calls), 1)
        self.assertEqual(store.tickers, ['AFAXX', 'ANCFX', 'AGTHX'])
        self.assertEqual(store.get_fund_data('ANCFX')['01/15/2024'].total_distributions, Decimal('0.15'))
        self.assertEqual(store.get_fund_data('AGTHX'), {})

    def test_no_tickers(self):
        self.assertEqual(len(load_all_distributions([], source=CombinedFileSource(fetcher=FakeFetcher({})))), 0)


class TestLoadDistributionFile(unittest.TestCase):

    def test_parses_combined_file(self):
        fetcher = FakeFetcher({'distributions.txt': COMBINED_LISTING})
        store = load_distribution_file('distributions.txt', fetcher=fetcher)

        self.assertEqual(store.tickers, ['AFAXX', 'ANCFX'])

    def test_unreadable_file_yields_empty_store(self):
        with self.assertLogs('fundnav.distribution_loader', level='ERROR'):
            store = load_distribution_file('missing.txt', fetcher=FakeFetcher({}))

        self.assertEqual(len(store), 0)


if __name__ == '__main__':
    unittest.main()
