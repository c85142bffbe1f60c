"""
Fund NAV & Distribution Viewer Entry Point.

Loads the hand-maintained distribution listings of the tracked funds, fetches
their NAV histories and presents both as tables and charts.

Steps depend on each other (tables and charts need distributions and NAV data);
a step whose prerequisite is missing triggers it automatically.
"""
import logging
import os
import sys
import time
from typing import Callable

from fundnav import config
from fundnav import distribution_loader as dl
from fundnav import market_data_loader as mdl
from fundnav.fund_report import FundReport

# Directory for exported charts and tables.
RESULTS_DIR = 'results'


class FundViewerApp:
    """
    Controls the distribution / NAV workflow and the interactive command-line menu.
    """
    def __init__(self) -> None:
        # None indicates the step has not run yet.
        self.distributions = None
        self.nav_histories = None
        self.report = None

    def menu(self) -> None:
        """
        Displays the main menu and routes user input to pipeline steps.
        """
        while True:
            self._print_header()
            print(" 0. RUN FULL PIPELINE")
            print(" 1. Load Distribution Data")
            print(" 2. Fetch NAV Histories")
            print(" 3. Show Fund Distribution Table")
            print(" 4. Show Distributions on Date")
            print(" 5. Summarise and Plot")
            print()
            print(" Q. Quit")
            print("-" * 60)

            flags = []
            flags.append("DIST: OK" if self.distributions is not None else "DIST: --")
            flags.append("NAV: OK" if self.nav_histories is not None else "NAV: --")
            print(f" STATUS: {' | '.join(flags)} | MODE: {config.INGESTION_MODE}")
            print("-" * 60)

            choice = input(" >> Select Option: ").upper().strip()

            if choice == '0':
                self.step_load_distributions()
                self.step_fetch_nav()
                self.step_analyse()
            elif choice == '1':
                self.step_load_distributions()
            elif choice == '2':
                self.step_fetch_nav()
            elif choice == '3':
                self.step_show_fund_table()
            elif choice == '4':
                self.step_show_date()
            elif choice == '5':
                self.step_analyse()
            elif choice == 'Q':
                sys.exit()
            else:
                print(" [!] Invalid selection.")
                time.sleep(0.5)

    # =========================================================================
    # STEP 1: DISTRIBUTIONS
    # =========================================================================
    def step_load_distributions(self) -> None:
        """
        Loads the distribution listings of all tracked funds.

        Invalidates the report so it is rebuilt against the new data.
        """
        self._print_section_header("STEP 1: DISTRIBUTION DATA")
        self.report = None

        source = dl.make_source(config.INGESTION_MODE, base_path=config.DATA_DIR)
        print(f" [>] Loading distributions ({config.INGESTION_MODE}) from '{config.DATA_DIR}'...")

        self.distributions = dl.load_all_distributions(config.FUND_TICKERS, source=source)

        for ticker in config.FUND_TICKERS:
            count = len(self.distributions.get_fund_data(ticker))
            marker = '-' if count else '!'
            print(f"     {marker} {ticker}: {count} distribution dates")

        print(f" [+] Distribution data loaded ({self.distributions.record_count()} records).")

    # =========================================================================
    # STEP 2: NAV HISTORIES
    # =========================================================================
    def step_fetch_nav(self) -> None:
        """
        Downloads NAV histories for all tracked funds in parallel.
        """
        self._print_section_header("STEP 2: NAV HISTORIES")
        self.report = None

        start = input(f" >> Start date [Default: {config.NAV_HISTORY_START}]: ").strip() or config.NAV_HISTORY_START
        print(f"\n [>] Downloading {len(config.FUND_TICKERS)} NAV histories since {start}...")

        self.nav_histories = mdl.load_nav_histories(config.FUND_TICKERS, start_date=start)

        for ticker, df in self.nav_histories.items():
            if df.empty:
                print(f"     ! {ticker}: NO DATA returned.")
            else:
                print(f"     - {ticker}: {len(df)} NAV points ({df['date'].iloc[0]} to {df['date'].iloc[-1]})")

        print(" [+] Market data download complete.")

    # =========================================================================
    # STEP 3/4: TABLE VIEWS
    # =========================================================================
    def step_show_fund_table(self) -> None:
        if not self._ensure_report():
            return

        self._print_section_header("FUND DISTRIBUTION TABLE")
        ticker = input(f" >> Ticker {config.FUND_TICKERS}: ").upper().strip()

        table = self.report.distribution_table(ticker)
        if table.empty:
            print(f" [!] No distributions found for '{ticker}'.")
            return

        print(table.drop(columns=['timestamp']).to_string(index=False))

    def step_show_date(self) -> None:
        if not self._ensure_report():
            return

        self._print_section_header("DISTRIBUTIONS ON DATE")
        date_token = input(" >> Date (MM/DD/YYYY): ").strip()

        on_date = self.report.distributions_on(date_token)
        if on_date.empty:
            print(f" [!] No fund distributed on '{date_token}'.")
            return

        print(on_date.to_string(index=False))

    # =========================================================================
    # STEP 5: SUMMARY & CHARTS
    # =========================================================================
    def step_analyse(self) -> None:
        """
        Prints the per-fund summary, exports it to CSV and saves the charts.
        """
        if not self._ensure_report():
            return

        self._print_section_header("STEP 5: SUMMARY & CHARTS")

        os.makedirs(RESULTS_DIR, exist_ok=True)

        summary = self.report.get_summary()
        print("\nFund Summary:")
        print(summary)
        summary.to_csv(os.path.join(RESULTS_DIR, 'fund_summary.csv'))
        self.distributions.to_frame().to_csv(os.path.join(RESULTS_DIR, 'distributions.csv'), index=False)
        print("\n [+] Saved summary and distribution tables")

        self.report.plot_nav_history(save_path=os.path.join(RESULTS_DIR, '1_nav_history.png'))
        self.report.plot_growth(save_path=os.path.join(RESULTS_DIR, '2_growth_reinvested.png'))

        print(f"\n [+] All analysis files saved to: {RESULTS_DIR}")
        input("\n >> Press Enter to return to menu...")

    # =========================================================================
    # UTILITY FUNCTIONS
    # =========================================================================
    def _ensure_report(self) -> bool:
        self._check_dependency(self.distributions is not None, "Step 1 (Distribution Data)", self.step_load_distributions)
        self._check_dependency(self.nav_histories is not None, "Step 2 (NAV Histories)", self.step_fetch_nav)

        if self.distributions is None or self.nav_histories is None:
            print("\n [!] Critical Error: Data not loaded correctly.")
            return False

        if self.report is None:
            self.report = FundReport(self.distributions, self.nav_histories)
        return True

    def _print_section_header(self, title: str) -> None:
        print("\n" + "="*60)
        print(f" {title}")
        print("="*60 + "\n")

    def _check_dependency(self, condition: bool, fix_action_name: str, fix_action_func: Callable[[], None]) -> bool:
        """
        Triggers the missing prerequisite step when the condition is not met.

        Returns:
            bool: True if the dependency was already met, False if the fix ran.
        """
        if not condition:
            print(f"\n [!] Missing dependency: {fix_action_name}")
            print(f" [>] Auto-triggering {fix_action_name}...")
            fix_action_func()
            return False
        return True

    def _print_header(self) -> None:
        print("\n" + "#"*60)
        print("       FUND NAV & DISTRIBUTION VIEWER")
        print("#"*60)


if __name__ == "__main__":
    logging.basicConfig(level=config.LOG_LEVEL, format=config.LOG_FORMAT)
    app = FundViewerApp()
    try:
        app.menu()
    except KeyboardInterrupt:
        print("\n [!] Interrupted by user. Exiting.")
