"""
Market Data Loader Module.

Retrieves daily NAV histories for the tracked funds via yfinance, with retries
and exponential backoff, and normalises them into plain date/NAV tables.
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Dict, Iterable, Optional

import pandas as pd
import yfinance as yf

from .config import FUND_TICKERS, MAX_RETRIES, MAX_WORKERS, NAV_HISTORY_START, RETRY_BASE_WAIT

_log = logging.getLogger(__name__)

NAV_COLUMNS = ['date', 'nav']


class MarketDataError(Exception):
    """Raised when a NAV history cannot be retrieved after all retries."""


def _empty_nav_frame() -> pd.DataFrame:
    return pd.DataFrame(columns=NAV_COLUMNS)


def fetch_nav_series(
    ticker: str,
    start_date: Any,
    end_date: Optional[Any] = None,
    max_retries: int = MAX_RETRIES,
    retry_wait: float = RETRY_BASE_WAIT,
    logger: Optional[logging.Logger] = None
) -> pd.DataFrame:
    """
    Downloads the daily NAV history of one fund.

    Args:
        ticker (str): Fund ticker (e.g. 'ANCFX').
        start_date (Any): Start date, 'YYYY-MM-DD' string or date-like.
        end_date (Optional[Any]): Inclusive end date; defaults to today.
        max_retries (int): Attempts before giving up.
        retry_wait (float): Base wait in seconds, doubled after each failed attempt.
        logger (Optional[logging.Logger]): Logger for retry warnings.

    Returns:
        pd.DataFrame: Columns ['date', 'nav'] ordered by date, dates as 'YYYY-MM-DD'.

    Raises:
        MarketDataError: If every attempt failed or returned no data.
    """
    log = logger or _log

    start = pd.Timestamp(start_date).normalize()
    end = pd.Timestamp(end_date).normalize() if end_date is not None else pd.Timestamp.today().normalize()
    # The provider treats 'end' as exclusive
    end_exclusive = end + pd.Timedelta(days=1)

    for attempt in range(max_retries):
        try:
            df = yf.Ticker(ticker).history(start=start, end=end_exclusive, auto_adjust=False, actions=True)
            df = df.dropna(how='all')
            if df.empty:
                raise ValueError("Received empty data")

            # Remove timezone information and normalize to midnight.
            index = pd.to_datetime(df.index)
            if index.tz is not None:
                index = index.tz_localize(None)
            index = index.normalize()

            nav = pd.DataFrame({
                'date': index.strftime('%Y-%m-%d'),
                'nav': pd.to_numeric(df['Close'], errors='coerce').to_numpy()
            })
            nav = nav.dropna(subset=['nav'])
            nav = nav.drop_duplicates(subset=['date'], keep='last')
            return nav.sort_values(by='date').reset_index(drop=True)

        except Exception as e:
            wait_time = retry_wait * (2 ** attempt)
            if attempt < max_retries - 1:
                log.warning("Issue with %s (%s). Retrying in %ss...", ticker, e, wait_time)
                time.sleep(wait_time)
            else:
                raise MarketDataError(f"Failed to fetch data for {ticker}: {e}") from e

    raise MarketDataError(f"Failed to fetch data for {ticker}: no attempts made")


def load_nav_histories(
    tickers: Iterable[str] = FUND_TICKERS,
    start_date: Any = NAV_HISTORY_START,
    end_date: Optional[Any] = None,
    max_workers: int = MAX_WORKERS,
    fetcher: Callable[..., pd.DataFrame] = fetch_nav_series,
    logger: Optional[logging.Logger] = None
) -> Dict[str, pd.DataFrame]:
    """
    Downloads NAV histories for several funds in parallel.

    A fund that cannot be fetched maps to an empty frame; it never cancels the
    other downloads.

    Returns:
        Dict[str, pd.DataFrame]: Ticker -> ['date', 'nav'] frame, in request order.
    """
    log = logger or _log
    tickers = list(dict.fromkeys(tickers))
    histories: Dict[str, pd.DataFrame] = {}

    if not tickers:
        return histories

    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="nav") as pool:
        futures = {pool.submit(fetcher, ticker, start_date, end_date): ticker for ticker in tickers}
        for future in as_completed(futures):
            ticker = futures[future]
            try:
                histories[ticker] = future.result()
                log.info("%s: %d NAV points", ticker, len(histories[ticker]))
            except Exception as e:
                log.warning("NAV history for %s unavailable: %s", ticker, e)
                histories[ticker] = _empty_nav_frame()

    return {ticker: histories[ticker] for ticker in tickers}
