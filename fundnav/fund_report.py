"""
Fund Report Module.

Joins the NAV histories with the parsed distributions on their canonical date
keys and renders the result as tables and charts. Starting from one share, each
distribution is reinvested at its reinvestment NAV, which gives the growth of
the holding including distributions.
"""
from typing import Dict, Iterable, Optional

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

from .config import TWO_DIGIT_YEAR_PIVOT
from .distribution_parser import (
    CANONICAL_DATE_FORMAT,
    DistributionStore,
    FundDistributionTable,
    get_distributions_on_date,
    normalize_date,
)

HISTORY_COLUMNS = ['date', 'nav', 'distribution', 'reinvest_nav', 'shares', 'value']

# Global plot configuration
plt.rcParams.update({
    'font.family': 'sans-serif',
    'font.size': 12,
    'axes.titlesize': 15,
    'axes.titleweight': 'bold',
    'axes.labelsize': 13,
    'legend.fontsize': 12
})


def build_fund_history(
    nav_series: Optional[pd.DataFrame],
    fund_table: FundDistributionTable,
    pivot: Optional[int] = TWO_DIGIT_YEAR_PIVOT
) -> pd.DataFrame:
    """
    Aligns a fund's NAV history with its distributions.

    NAV dates are converted to canonical keys and matched exactly against the
    distribution table. Distributions on dates without a NAV point are not shown.

    Args:
        nav_series (Optional[pd.DataFrame]): Columns ['date', 'nav'].
        fund_table (FundDistributionTable): Date -> DistributionRecord.
        pivot (Optional[int]): Two-digit-year pivot for the NAV dates.

    Returns:
        pd.DataFrame: Indexed by timestamp, columns ['date', 'nav', 'distribution',
        'reinvest_nav', 'shares', 'value']. 'shares' starts at 1 and grows with
        every reinvested distribution.
    """
    empty = pd.DataFrame(columns=HISTORY_COLUMNS, index=pd.DatetimeIndex([], name='timestamp'))
    if nav_series is None or nav_series.empty:
        return empty

    df = nav_series[['date', 'nav']].copy()
    df['date'] = df['date'].map(lambda d: normalize_date(d, pivot))
    df['nav'] = pd.to_numeric(df['nav'], errors='coerce')
    df = df.dropna(subset=['date', 'nav']).drop_duplicates(subset=['date'], keep='last')
    if df.empty:
        return empty

    df.index = pd.DatetimeIndex(pd.to_datetime(df['date'], format=CANONICAL_DATE_FORMAT), name='timestamp')
    df = df.sort_index()

    records = df['date'].map(fund_table.get)
    df['distribution'] = records.map(lambda r: float(r.total_distributions) if r is not None else 0.0)
    df['reinvest_nav'] = records.map(lambda r: float(r.reinvest_nav) if r is not None else np.nan)

    # Shares bought per share held = distribution / reinvestment NAV
    growth = 1.0 + (df['distribution'] / df['reinvest_nav']).fillna(0.0)
    df['shares'] = growth.cumprod()
    df['value'] = df['shares'] * df['nav']

    return df[HISTORY_COLUMNS]


class FundReport:
    """
    Table and chart views over the distributions and NAV histories of all funds.
    """

    def __init__(self, distributions: DistributionStore, nav_histories: Dict[str, pd.DataFrame]) -> None:
        self.distributions = distributions
        self.nav_histories = nav_histories
        self.tickers = list(dict.fromkeys(list(nav_histories) + distributions.tickers))

        self.histories = {
            ticker: build_fund_history(nav_histories.get(ticker), distributions.get_fund_data(ticker))
            for ticker in self.tickers
        }

    # ==========================================
    # TABLES
    # ==========================================
    def history(self, ticker: str) -> pd.DataFrame:
        return self.histories.get(ticker, build_fund_history(None, {}))

    def distribution_table(self, ticker: str) -> pd.DataFrame:
        """All distributions of one fund, oldest first."""
        df = self.distributions.to_frame()
        df = df[df['ticker'] == ticker]
        return df.drop(columns=['ticker']).reset_index(drop=True)

    def distributions_on(self, date_token: str) -> pd.DataFrame:
        """Every fund's distribution on one date, one row per fund."""
        on_date = get_distributions_on_date(date_token, self.distributions)
        rows = [
            {
                'ticker': ticker,
                'reinvest_nav': float(record.reinvest_nav),
                'total_distributions': float(record.total_distributions)
            }
            for ticker, record in on_date.items()
        ]
        return pd.DataFrame(rows, columns=['ticker', 'reinvest_nav', 'total_distributions'])

    def get_summary(self) -> pd.DataFrame:
        """
        Per-fund period statistics over the NAV history.

        'price_return' uses NAV only, 'total_return' includes reinvested
        distributions. Funds without NAV data are listed with NaN statistics.
        """
        rows = []
        for ticker in self.tickers:
            hist = self.histories[ticker]
            if hist.empty:
                rows.append({'ticker': ticker, 'distribution_count': len(self.distributions.get_fund_data(ticker))})
                continue

            start_nav, end_nav = hist['nav'].iloc[0], hist['nav'].iloc[-1]
            rows.append({
                'ticker': ticker,
                'start_date': hist['date'].iloc[0],
                'end_date': hist['date'].iloc[-1],
                'start_nav': start_nav,
                'end_nav': end_nav,
                'distribution_count': int((hist['distribution'] != 0).sum()),
                'total_distributions': hist['distribution'].sum(),
                'price_return': end_nav / start_nav - 1.0,
                'total_return': hist['value'].iloc[-1] / hist['value'].iloc[0] - 1.0
            })

        cols = ['ticker', 'start_date', 'end_date', 'start_nav', 'end_nav', 'distribution_count',
                'total_distributions', 'price_return', 'total_return']
        return pd.DataFrame(rows, columns=cols).set_index('ticker')

    # ==========================================
    # CHARTS
    # ==========================================
    def _select(self, tickers: Optional[Iterable[str]]) -> list:
        selected = self.tickers if tickers is None else list(tickers)
        return [t for t in selected if t in self.histories and not self.histories[t].empty]

    def plot_nav_history(self, tickers: Optional[Iterable[str]] = None, save_path: Optional[str] = None) -> None:
        """
        Plots the NAV of each fund and marks its distribution dates.
        """
        plt.figure(figsize=(12, 6))

        for ticker in self._select(tickers):
            hist = self.histories[ticker]
            line, = plt.plot(hist.index, hist['nav'], linewidth=1.5, label=ticker)

            paid = hist[hist['distribution'] != 0]
            if not paid.empty:
                plt.scatter(paid.index, paid['nav'], color=line.get_color(), marker='o', s=25, zorder=3)

        plt.ylabel('Net Asset Value [USD]')
        plt.legend(loc='upper left', framealpha=1.0, facecolor='white')
        plt.grid(True, alpha=0.3)
        plt.tight_layout()

        if save_path:
            print(f" [>] Saving plot to {save_path}")
            plt.savefig(save_path, dpi=300, bbox_inches='tight')

        plt.show()

    def plot_growth(self, tickers: Optional[Iterable[str]] = None, save_path: Optional[str] = None) -> None:
        """
        Plots the value of one initial share with distributions reinvested,
        rebased to 1.0 at the first NAV date.
        """
        plt.figure(figsize=(12, 6))

        for ticker in self._select(tickers):
            hist = self.histories[ticker]
            rebased = hist['value'] / hist['value'].iloc[0]
            sns.lineplot(x=hist.index, y=rebased.to_numpy(), linewidth=1.5, label=ticker)

        plt.axhline(1.0, color='black', linewidth=1, linestyle='--', alpha=0.5)
        plt.ylabel('Growth of 1 Share (Distributions Reinvested)')
        plt.legend(loc='upper left', framealpha=1.0, facecolor='white')
        plt.grid(True, alpha=0.3)
        plt.tight_layout()

        if save_path:
            print(f" [>] Saving plot to {save_path}")
            plt.savefig(save_path, dpi=300, bbox_inches='tight')

        plt.show()
