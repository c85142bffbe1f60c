"""
Distribution Source Loader.

Locates a fund's distribution listing, retrieves the raw text (local file or
HTTP) and runs it through the distribution parser. Two ingestion modes feed the
same parser:

1. combined: one listing holding every fund in ticker-delimited sections.
2. per_ticker: one listing per fund, named '<prefix>_<TICKER>.txt' where the
   prefix depends on the fund type ('mmf' / 'mf').

A fund whose listing cannot be retrieved gets an empty table; the other funds
still load.
"""
import logging
import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from enum import Enum
from typing import Callable, Dict, Iterable, Optional, Set

import requests

from .config import (
    DATA_DIR,
    DISTRIBUTIONS_FILE,
    FUND_TICKERS,
    INGESTION_MODE,
    MAX_WORKERS,
    MONEY_MARKET_TICKERS,
    PER_TICKER_FILE_PREFIX,
    REQUEST_TIMEOUT,
    TWO_DIGIT_YEAR_PIVOT,
)
from .distribution_parser import (
    DistributionStore,
    FundDistributionTable,
    classify_fund,
    parse_distribution_data,
)

_log = logging.getLogger(__name__)


class IngestionMode(str, Enum):
    COMBINED = 'combined'
    PER_TICKER = 'per_ticker'


class DistributionSourceError(Exception):
    """Raised when a distribution listing cannot be retrieved."""


# ==========================================
# SECTION 1: RAW TEXT RETRIEVAL
# ==========================================
def fetch_text(identifier: str, timeout: float = REQUEST_TIMEOUT) -> str:
    """
    Reads a listing from an http(s) URL or a local path.

    Raises:
        DistributionSourceError: On a missing file, an error status or a network failure.
    """
    if identifier.startswith(('http://', 'https://')):
        try:
            response = requests.get(identifier, timeout=timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise DistributionSourceError(f"HTTP error loading '{identifier}': {e}") from e
        return response.text

    try:
        # 'utf-8-sig' drops the BOM that spreadsheet exports often carry
        with open(identifier, 'r', encoding='utf-8-sig') as f:
            return f.read()
    except OSError as e:
        raise DistributionSourceError(f"Cannot read '{identifier}': {e}") from e


def _join(base: str, name: str) -> str:
    if base.startswith(('http://', 'https://')):
        return f"{base.rstrip('/')}/{name}"
    return os.path.join(base, name)


# ==========================================
# SECTION 2: INGESTION ADAPTERS
# ==========================================
class DistributionSource:
    """
    Common loading path of both ingestion modes.

    Subclasses decide which listing holds a fund and whether the parser starts
    inside that fund's section.
    """

    def __init__(
        self,
        base_path: str = DATA_DIR,
        fetcher: Callable[[str], str] = fetch_text,
        money_market_tickers: Set[str] = MONEY_MARKET_TICKERS,
        two_digit_year_pivot: Optional[int] = TWO_DIGIT_YEAR_PIVOT,
        logger: Optional[logging.Logger] = None
    ) -> None:
        self.base_path = base_path
        self.fetcher = fetcher
        self.money_market_tickers = money_market_tickers
        self.pivot = two_digit_year_pivot
        self.log = logger or _log

    def identifier_for(self, ticker: str) -> str:
        raise NotImplementedError

    def section_ticker(self, ticker: str) -> Optional[str]:
        raise NotImplementedError

    def load_store(self, ticker: str) -> DistributionStore:
        """
        Fetches and parses the listing that holds a fund.

        Returns:
            DistributionStore: Parsed listing, empty when retrieval failed.
        """
        identifier = self.identifier_for(ticker)
        try:
            text = self.fetcher(identifier)
        except DistributionSourceError as e:
            self.log.warning("No distribution data for %s: %s", ticker, e)
            return DistributionStore()

        return parse_distribution_data(
            text,
            ticker=self.section_ticker(ticker),
            money_market_tickers=self.money_market_tickers,
            two_digit_year_pivot=self.pivot,
            logger=self.log
        )

    def load(self, ticker: str) -> FundDistributionTable:
        return self.load_store(ticker).get_fund_data(ticker)


class CombinedFileSource(DistributionSource):
    """All funds in one listing, each section opened by its ticker line."""

    def __init__(self, base_path: str = DATA_DIR, filename: str = DISTRIBUTIONS_FILE, **kwargs) -> None:
        super().__init__(base_path, **kwargs)
        self.filename = filename

    def identifier_for(self, ticker: str) -> str:
        return _join(self.base_path, self.filename)

    def section_ticker(self, ticker: str) -> Optional[str]:
        return None


class PerTickerFileSource(DistributionSource):
    """One listing per fund; the ticker line inside the file is optional."""

    def __init__(self, base_path: str = DATA_DIR, prefixes: Optional[Dict[str, str]] = None, **kwargs) -> None:
        super().__init__(base_path, **kwargs)
        self.prefixes = prefixes or PER_TICKER_FILE_PREFIX

    def identifier_for(self, ticker: str) -> str:
        fund_type = classify_fund(ticker, self.money_market_tickers)
        return _join(self.base_path, f"{self.prefixes[fund_type.value]}_{ticker}.txt")

    def section_ticker(self, ticker: str) -> Optional[str]:
        return ticker


def make_source(mode: str = INGESTION_MODE, **kwargs) -> DistributionSource:
    """
    Builds the adapter for an ingestion mode.

    Raises:
        ValueError: If mode is not 'combined' or 'per_ticker'.
    """
    mode = IngestionMode(mode)
    if mode is IngestionMode.COMBINED:
        return CombinedFileSource(**kwargs)
    return PerTickerFileSource(**kwargs)


# ==========================================
# SECTION 3: PUBLIC ENTRY POINTS
# ==========================================
def load_fund_distributions(ticker: str, source: Optional[DistributionSource] = None) -> FundDistributionTable:
    """
    Loads one fund's distributions through the configured ingestion mode.

    Args:
        ticker (str): Fund ticker.
        source (Optional[DistributionSource]): Adapter to use; defaults to the
            one selected by INGESTION_MODE.

    Returns:
        FundDistributionTable: Date -> record, empty if the listing is unavailable.
    """
    source = source or make_source()
    return source.load(ticker)


def load_distribution_file(
    file_path: str = os.path.join(DATA_DIR, DISTRIBUTIONS_FILE),
    fetcher: Callable[[str], str] = fetch_text,
    logger: Optional[logging.Logger] = None
) -> DistributionStore:
    """Reads and parses a combined listing; an unreadable file yields an empty store."""
    log = logger or _log
    log.info("Loading distribution file: %s", file_path)
    try:
        text = fetcher(file_path)
    except DistributionSourceError as e:
        log.error("Error loading distribution file: %s", e)
        return DistributionStore()
    return parse_distribution_data(text, logger=log)


def load_all_distributions(
    tickers: Iterable[str] = FUND_TICKERS,
    source: Optional[DistributionSource] = None,
    max_workers: int = MAX_WORKERS
) -> DistributionStore:
    """
    Loads distributions for several funds into one store.

    A combined listing is fetched and parsed once. Per-ticker listings are
    fetched in parallel; the store is assembled only after every fetch has
    finished, and a failing fund contributes an empty table.

    Args:
        tickers (Iterable[str]): Funds to load.
        source (Optional[DistributionSource]): Adapter; defaults to INGESTION_MODE.
        max_workers (int): Thread pool size for per-ticker fetches.

    Returns:
        DistributionStore: One table per requested ticker.
    """
    source = source or make_source()
    tickers = list(dict.fromkeys(tickers))
    result = DistributionStore()

    if not tickers:
        return result

    if isinstance(source, CombinedFileSource):
        parsed = source.load_store(tickers[0])
        for ticker in tickers:
            result.merge({ticker: parsed.get_fund_data(ticker)})
        return result

    tables: Dict[str, FundDistributionTable] = {}
    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="distributions") as pool:
        futures = {pool.submit(source.load, ticker): ticker for ticker in tickers}
        for future in as_completed(futures):
            ticker = futures[future]
            try:
                tables[ticker] = future.result()
            except Exception as e:
                source.log.warning("Distribution loader for %s raised: %s", ticker, e)
                tables[ticker] = {}

    # Disjoint tickers: union in request order
    for ticker in tickers:
        result.merge({ticker: tables[ticker]})
    return result
