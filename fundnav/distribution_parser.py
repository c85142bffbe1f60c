"""
Fund Distribution Parser.

This module turns the hand-maintained distribution listings into a structured
per-fund, per-date timeline. The listings stack several funds in one text file,
each introduced by a bare ticker line, and come in two layouts:

1. Money-market funds: rows of '<daily rate> <sep> <date>', NAV fixed at 1.00.
2. Mutual funds: dated dividend / capital-gains rows, either aligned to a header
   row ('Record Date', 'Reinvest NAV', 'Dividend', 'Cap. Gains') or positional
   (date first, NAV last, distributions in between).

Rows are tab- or comma-delimited, years come as 2 or 4 digits and amounts may
carry dollar signs. Everything is normalised into one record per (ticker, date),
with same-day rows summed rather than overwritten.
"""
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Set, Tuple, Union

import pandas as pd
from dateutil import parser as date_parser

from .config import (
    DATE_HEADER_KEYWORDS,
    DEFAULT_REINVEST_NAV,
    DISTRIBUTION_HEADER_KEYWORDS,
    MONEY_MARKET_TICKERS,
    NAV_HEADER_KEYWORDS,
    TWO_DIGIT_YEAR_PIVOT,
)

_log = logging.getLogger(__name__)

NAN = Decimal('NaN')
ZERO = Decimal('0')

CANONICAL_DATE_FORMAT = '%m/%d/%Y'

# A section starts with a line holding nothing but an upper-case ticker
TICKER_LINE = re.compile(r'^[A-Z]+$')

_CANONICAL_DATE = re.compile(r'^(\d{1,2})/(\d{1,2})/(\d{4})$')
_SHORT_YEAR_DATE = re.compile(r'^(\d{1,2})/(\d{1,2})/(\d{2})$')

# Amount-like tokens ('$12.34', '-0.5', '1,000') are never dates
_NUMERIC_TOKEN = re.compile(r'^[$+\-]?[\d,]*\.?\d*%?$')
_NON_NUMERIC = re.compile(r'[^0-9.\-]')

# Two defaults differing in year, month and day expose partially specified dates
_PARSE_DEFAULTS = (datetime(2000, 1, 1), datetime(2001, 2, 2))


# ==========================================
# SECTION 1: FUND CLASSIFICATION
# ==========================================
class FundType(str, Enum):
    MONEY_MARKET = 'money_market'
    MUTUAL = 'mutual'


def classify_fund(ticker: str, money_market_tickers: Set[str] = MONEY_MARKET_TICKERS) -> FundType:
    """
    Decides which distribution layout a fund follows.

    Unknown tickers are treated as mutual funds.
    """
    if ticker in money_market_tickers:
        return FundType.MONEY_MARKET
    return FundType.MUTUAL


# ==========================================
# SECTION 2: FIELD NORMALISATION
# ==========================================
def expand_two_digit_year(year: int, pivot: Optional[int] = TWO_DIGIT_YEAR_PIVOT) -> int:
    """
    Expands a two-digit year.

    Args:
        year (int): Year in the range 0-99.
        pivot (Optional[int]): None maps every year to the 2000s. An integer
            maps years below the pivot to the 2000s and the rest to the 1900s.

    Returns:
        int: Four-digit year.
    """
    if pivot is None or year < pivot:
        return 2000 + year
    return 1900 + year


def _format_date(year: int, month: int, day: int) -> Optional[str]:
    try:
        return date(year, month, day).strftime(CANONICAL_DATE_FORMAT)
    except ValueError:
        return None


def normalize_date(raw_token: Any, pivot: Optional[int] = TWO_DIGIT_YEAR_PIVOT) -> Optional[str]:
    """
    Converts a raw date token into the canonical 'MM/DD/YYYY' key.

    Accepted forms:
    - 'MM/DD/YYYY' (single-digit month/day are zero-padded).
    - 'MM/DD/YY', expanded with the configured two-digit-year pivot.
    - Any other complete calendar date dateutil understands ('2024-01-15',
      'Jan 15, 2024'). Partial tokens ('Jan 2024', 'Monday', '16:00') are rejected.

    Purely numeric tokens are treated as amounts, so compact dates such as
    '20240115' are not recognised.

    Args:
        raw_token (Any): Field content, usually a string.
        pivot (Optional[int]): Two-digit-year pivot, see expand_two_digit_year.

    Returns:
        Optional[str]: The canonical date key, or None when the token holds no
        valid calendar date. Never raises for malformed input.
    """
    if raw_token is None:
        return None

    token = str(raw_token).strip()
    if not token or _NUMERIC_TOKEN.match(token):
        return None

    match = _CANONICAL_DATE.match(token)
    if match:
        month, day, year = (int(g) for g in match.groups())
        return _format_date(year, month, day)

    match = _SHORT_YEAR_DATE.match(token)
    if match:
        month, day, year = (int(g) for g in match.groups())
        return _format_date(expand_two_digit_year(year, pivot), month, day)

    # dateutil fills missing parts from its default; a complete date ignores it
    try:
        parsed = [date_parser.parse(token, default=default) for default in _PARSE_DEFAULTS]
    except (ValueError, OverflowError):
        return None
    if parsed[0].date() != parsed[1].date():
        return None
    return _format_date(parsed[0].year, parsed[0].month, parsed[0].day)


def clean_number(raw_field: Any) -> Decimal:
    """
    Parses an amount field, ignoring currency symbols and other noise.

    Returns:
        Decimal: The parsed value, or the NaN sentinel when nothing numeric
        remains. Callers treat NaN as 'contributes zero'.
    """
    if raw_field is None:
        return NAN

    cleaned = _NON_NUMERIC.sub('', str(raw_field))
    if not cleaned:
        return NAN

    try:
        return Decimal(cleaned)
    except InvalidOperation:
        return NAN


def _as_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return NAN


def split_fields(line: str, delimiter: Optional[str] = None) -> List[str]:
    """Splits a row on the given delimiter, else on tab when present, else on comma."""
    if delimiter is None:
        delimiter = '\t' if '\t' in line else ','
    return [part.strip() for part in line.split(delimiter)]


# ==========================================
# SECTION 3: DATA MODEL
# ==========================================
@dataclass
class DistributionRecord:
    """
    Distribution activity of one fund on one date.

    NaN or non-positive NAVs fall back to the default reinvestment NAV and a
    NaN total becomes zero, so a stored record is always usable.
    """
    reinvest_nav: Decimal = DEFAULT_REINVEST_NAV
    total_distributions: Decimal = ZERO

    def __post_init__(self) -> None:
        nav = _as_decimal(self.reinvest_nav)
        if nav.is_nan() or nav <= 0:
            nav = DEFAULT_REINVEST_NAV
        self.reinvest_nav = nav

        total = _as_decimal(self.total_distributions)
        self.total_distributions = ZERO if total.is_nan() else total


FundDistributionTable = Dict[str, DistributionRecord]


class DistributionStore:
    """
    Per-ticker, per-date distribution records built during one parse pass.

    Repeated dates accumulate: totals are summed and a published (non-default)
    reinvestment NAV replaces the default one.
    """

    def __init__(self) -> None:
        self._tables: Dict[str, FundDistributionTable] = {}

    def add_ticker(self, ticker: str) -> FundDistributionTable:
        return self._tables.setdefault(ticker, {})

    def record(self, ticker: str, date_key: str, record: DistributionRecord) -> DistributionRecord:
        """
        Inserts or merges the record for (ticker, date).

        Args:
            ticker (str): Fund ticker.
            date_key (str): Date in any form normalize_date accepts; stored canonical.
            record (DistributionRecord): Values to insert or accumulate.

        Returns:
            DistributionRecord: The stored record after the merge.

        Raises:
            ValueError: If date_key is not a calendar date.
        """
        canonical = normalize_date(date_key)
        if canonical is None:
            raise ValueError(f"Invalid distribution date: {date_key!r}")

        table = self.add_ticker(ticker)
        existing = table.get(canonical)

        if existing is None:
            stored = DistributionRecord(record.reinvest_nav, record.total_distributions)
            table[canonical] = stored
            return stored

        existing.total_distributions += record.total_distributions
        if record.reinvest_nav != DEFAULT_REINVEST_NAV:
            existing.reinvest_nav = record.reinvest_nav
        return existing

    def merge(self, other: Union['DistributionStore', Mapping[str, FundDistributionTable]]) -> None:
        """Folds another store in; overlapping dates are merged, never overwritten."""
        for ticker, table in other.items():
            self.add_ticker(ticker)
            for date_key, record in table.items():
                self.record(ticker, date_key, record)

    def get_fund_data(self, ticker: str) -> FundDistributionTable:
        return self._tables.get(ticker, {})

    @property
    def tickers(self) -> List[str]:
        return list(self._tables)

    def items(self):
        return self._tables.items()

    def __contains__(self, ticker: object) -> bool:
        return ticker in self._tables

    def __getitem__(self, ticker: str) -> FundDistributionTable:
        return self._tables[ticker]

    def __iter__(self) -> Iterator[str]:
        return iter(self._tables)

    def __len__(self) -> int:
        return len(self._tables)

    def record_count(self) -> int:
        return sum(len(table) for table in self._tables.values())

    def to_frame(self) -> pd.DataFrame:
        """
        Flattens the store into a long table for display.

        Returns:
            pd.DataFrame: Columns ['ticker', 'date', 'timestamp', 'reinvest_nav',
            'total_distributions'], sorted by ticker then date. Amounts are floats.
        """
        cols = ['ticker', 'date', 'timestamp', 'reinvest_nav', 'total_distributions']
        rows = [
            {
                'ticker': ticker,
                'date': date_key,
                'reinvest_nav': float(record.reinvest_nav),
                'total_distributions': float(record.total_distributions)
            }
            for ticker, table in self._tables.items()
            for date_key, record in table.items()
        ]
        if not rows:
            return pd.DataFrame(columns=cols)

        df = pd.DataFrame(rows)
        df['timestamp'] = pd.to_datetime(df['date'], format=CANONICAL_DATE_FORMAT)
        df = df.sort_values(by=['ticker', 'timestamp']).reset_index(drop=True)
        return df[cols]


# ==========================================
# SECTION 4: LINE CLASSIFIER & RECORD EXTRACTOR
# ==========================================
class ExtractionMode(str, Enum):
    """How data rows of a section are mapped to a record."""
    HEADER = 'header'            # columns located by a header row
    POSITIONAL = 'positional'    # date first, NAV last, distributions in between
    DAILY_RATE = 'daily_rate'    # money-market '<rate> <sep> <date>'


def _keyword_index(labels: Sequence[str], keywords: Sequence[str], taken: Set[int]) -> Optional[int]:
    # Keywords are tried in priority order, so 'record date' beats a plain 'date'
    for keyword in keywords:
        for idx, label in enumerate(labels):
            if idx not in taken and keyword in label:
                return idx
    return None


@dataclass(frozen=True)
class HeaderSchema:
    date_index: int
    nav_index: Optional[int]
    distribution_indices: Tuple[int, ...]

    @classmethod
    def detect(
        cls,
        fields: Sequence[str],
        pivot: Optional[int] = TWO_DIGIT_YEAR_PIVOT
    ) -> Optional['HeaderSchema']:
        """
        Reads column positions from a header row.

        Returns None for rows that carry a date (data rows) or that lack a date
        column plus at least one NAV or distribution column.
        """
        if any(normalize_date(f, pivot) for f in fields):
            return None

        labels = [f.lower() for f in fields]

        date_index = _keyword_index(labels, DATE_HEADER_KEYWORDS, set())
        if date_index is None:
            return None

        # Other date columns ('Ex-Dividend Date', 'NAV Date') never hold NAV or amounts
        date_columns = {idx for idx, label in enumerate(labels) if any(k in label for k in DATE_HEADER_KEYWORDS)}

        nav_index = _keyword_index(labels, NAV_HEADER_KEYWORDS, date_columns)
        taken = date_columns if nav_index is None else date_columns | {nav_index}

        distribution_indices = tuple(
            idx for idx, label in enumerate(labels)
            if idx not in taken and any(k in label for k in DISTRIBUTION_HEADER_KEYWORDS)
        )

        if nav_index is None and not distribution_indices:
            return None
        return cls(date_index, nav_index, distribution_indices)


@dataclass
class _Section:
    ticker: str
    fund_type: FundType
    mode: Optional[ExtractionMode]  # None until a header or the first dated row settles the layout
    schema: Optional[HeaderSchema] = None


def _field(fields: Sequence[str], idx: Optional[int]) -> Optional[str]:
    if idx is None or idx >= len(fields):
        return None
    return fields[idx]


class DistributionParser:
    """
    Line-oriented state machine over a distribution listing.

    Outside a section every line is skipped until a ticker line opens one. Inside
    a section each row is extracted according to the section's ExtractionMode.
    Rows that yield no date or no numeric value are dropped and logged; they never
    abort the parse.
    """

    def __init__(
        self,
        money_market_tickers: Set[str] = MONEY_MARKET_TICKERS,
        two_digit_year_pivot: Optional[int] = TWO_DIGIT_YEAR_PIVOT,
        delimiter: Optional[str] = None,
        header_lookup: bool = True,
        logger: Optional[logging.Logger] = None
    ) -> None:
        self.money_market_tickers = money_market_tickers
        self.pivot = two_digit_year_pivot
        self.delimiter = delimiter
        self.header_lookup = header_lookup
        self.log = logger or _log

    def parse(self, text: str, ticker: Optional[str] = None, store: Optional[DistributionStore] = None) -> DistributionStore:
        """
        Parses a listing into a DistributionStore.

        Args:
            text (str): Raw file content.
            ticker (Optional[str]): Opens this fund's section before the first line,
                for files that hold a single fund without a ticker line.
            store (Optional[DistributionStore]): Store to accumulate into.

        Returns:
            DistributionStore: The populated store.

        Raises:
            TypeError: If text is not a string.
        """
        if not isinstance(text, str):
            raise TypeError(f"distribution data must be str, got {type(text).__name__}")

        store = store if store is not None else DistributionStore()
        section = self._open_section(ticker, store) if ticker else None

        for line_no, line in enumerate(text.splitlines(), start=1):
            stripped = line.strip()
            if not stripped:
                continue

            if TICKER_LINE.match(stripped):
                section = self._open_section(stripped, store)
                continue

            if section is None:
                self.log.debug("Line %d skipped: no ticker section open", line_no)
                continue

            # Keep empty leading/trailing columns so header positions still line up
            row = line.strip(' \r\n')
            self._parse_row(section, split_fields(row, self.delimiter), line_no, store)

        return store

    def _open_section(self, ticker: str, store: DistributionStore) -> _Section:
        fund_type = classify_fund(ticker, self.money_market_tickers)
        store.add_ticker(ticker)

        if fund_type is FundType.MONEY_MARKET:
            mode = ExtractionMode.DAILY_RATE
        elif self.header_lookup:
            mode = None
        else:
            mode = ExtractionMode.POSITIONAL

        self.log.debug("Section %s opened (%s)", ticker, fund_type.value)
        return _Section(ticker=ticker, fund_type=fund_type, mode=mode)

    def _parse_row(self, section: _Section, fields: List[str], line_no: int, store: DistributionStore) -> None:
        if section.mode is None:
            schema = HeaderSchema.detect(fields, self.pivot)
            if schema is not None:
                section.mode = ExtractionMode.HEADER
                section.schema = schema
                self.log.debug("Line %d: header for %s -> %s", line_no, section.ticker, schema)
                return
            if not any(normalize_date(f, self.pivot) for f in fields):
                # Title or note lines before the header leave the layout open
                self.log.debug("Line %d skipped (%s): no header and no date in %r",
                               line_no, section.ticker, fields)
                return
            section.mode = ExtractionMode.POSITIONAL

        if section.mode is ExtractionMode.DAILY_RATE:
            result = self._extract_daily_rate(fields)
        elif section.mode is ExtractionMode.HEADER:
            result = self._extract_with_header(fields, section.schema)
        else:
            result = self._extract_positional(fields)

        if result is None:
            self.log.debug("Line %d skipped (%s, %s): no date or no amounts in %r",
                           line_no, section.ticker, section.mode.value, fields)
            return

        date_key, record = result
        store.record(section.ticker, date_key, record)

    def _numeric_values(self, fields: Sequence[str], exclude: Set[int]) -> List[Tuple[int, Decimal]]:
        values = []
        for idx, raw in enumerate(fields):
            if idx in exclude or normalize_date(raw, self.pivot):
                continue
            value = clean_number(raw)
            if not value.is_nan():
                values.append((idx, value))
        return values

    def _extract_daily_rate(self, fields: List[str]) -> Optional[Tuple[str, DistributionRecord]]:
        if len(fields) < 2:
            return None

        # Rate first, date second; other orders are tolerated
        for date_index in [1, 0] + list(range(2, len(fields))):
            date_key = normalize_date(fields[date_index], self.pivot)
            if date_key:
                break
        else:
            return None

        rates = self._numeric_values(fields, {date_index})
        if not rates:
            return None

        total = sum((v for _, v in rates), ZERO)
        return date_key, DistributionRecord(DEFAULT_REINVEST_NAV, total)

    def _extract_positional(self, fields: List[str]) -> Optional[Tuple[str, DistributionRecord]]:
        date_key = normalize_date(fields[0], self.pivot)
        if date_key is None:
            return None

        numeric = self._numeric_values(fields, {0})
        if not numeric:
            return None

        _, nav = numeric[-1]
        total = sum((v for _, v in numeric[:-1]), ZERO)
        return date_key, DistributionRecord(nav, total)

    def _extract_with_header(self, fields: List[str], schema: HeaderSchema) -> Optional[Tuple[str, DistributionRecord]]:
        date_key = normalize_date(_field(fields, schema.date_index), self.pivot)
        if date_key is None:
            return None

        nav = clean_number(_field(fields, schema.nav_index)) if schema.nav_index is not None else NAN
        amounts = [
            clean_number(_field(fields, idx)) for idx in schema.distribution_indices
            if normalize_date(_field(fields, idx), self.pivot) is None
        ]

        if nav.is_nan() and all(a.is_nan() for a in amounts):
            return None

        total = sum((a for a in amounts if not a.is_nan()), ZERO)
        return date_key, DistributionRecord(nav, total)


# ==========================================
# SECTION 5: PUBLIC ENTRY POINTS
# ==========================================
def parse_distribution_data(
    file_content: Any,
    ticker: Optional[str] = None,
    money_market_tickers: Set[str] = MONEY_MARKET_TICKERS,
    two_digit_year_pivot: Optional[int] = TWO_DIGIT_YEAR_PIVOT,
    delimiter: Optional[str] = None,
    header_lookup: bool = True,
    logger: Optional[logging.Logger] = None
) -> DistributionStore:
    """
    Parses a distribution listing, degrading to an empty store on bad input.

    Args:
        file_content (Any): Raw listing text. Anything that is not a string yields
            an empty store and an error log entry.
        ticker (Optional[str]): Fund whose section is open from the first line
            (per-ticker files).
        money_market_tickers (Set[str]): Fixed-NAV fund tickers.
        two_digit_year_pivot (Optional[int]): See expand_two_digit_year.
        delimiter (Optional[str]): Field delimiter; detected per line when None.
        header_lookup (bool): Look for a header row in mutual-fund sections before
            falling back to positional columns.
        logger (Optional[logging.Logger]): Logger for row drops and failures.

    Returns:
        DistributionStore: Parsed records.
    """
    log = logger or _log
    parser = DistributionParser(
        money_market_tickers=money_market_tickers,
        two_digit_year_pivot=two_digit_year_pivot,
        delimiter=delimiter,
        header_lookup=header_lookup,
        logger=log
    )

    try:
        store = parser.parse(file_content, ticker=ticker)
    except TypeError as e:
        log.error("Error processing distribution data: %s", e)
        return DistributionStore()

    log.info("Parsed %d distribution records for %d funds", store.record_count(), len(store))
    return store


def get_fund_data(
    ticker: str,
    store: Union[DistributionStore, Mapping[str, FundDistributionTable]]
) -> FundDistributionTable:
    """Returns every distribution of one fund, or an empty table."""
    if isinstance(store, DistributionStore):
        return store.get_fund_data(ticker)
    return store.get(ticker, {})


def get_distributions_on_date(
    date_token: str,
    store: Union[DistributionStore, Mapping[str, FundDistributionTable]],
    two_digit_year_pivot: Optional[int] = TWO_DIGIT_YEAR_PIVOT
) -> Dict[str, DistributionRecord]:
    """
    Collects the distributions all funds made on one date.

    Args:
        date_token (str): Date in any form normalize_date accepts.
        store: Parsed distributions.
        two_digit_year_pivot (Optional[int]): Pivot for a 'MM/DD/YY' token.

    Returns:
        Dict[str, DistributionRecord]: Ticker -> record, only for funds with an
        entry on that date.
    """
    date_key = normalize_date(date_token, two_digit_year_pivot)
    if date_key is None:
        return {}

    return {
        ticker: table[date_key]
        for ticker, table in store.items()
        if date_key in table
    }
