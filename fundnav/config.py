from decimal import Decimal

# ==========================================
# 0. FUND UNIVERSE
# ==========================================

# Funds tracked by the application (Yahoo Finance symbols)
FUND_TICKERS = [
    'ANCFX',    # American Funds Fundamental Investors
    'AGTHX',    # American Funds Growth Fund of America
    'AFAXX'     # American Funds U.S. Government Money Market
]

# Fixed-NAV funds: distributions are published as daily rates
MONEY_MARKET_TICKERS = {
    'AFAXX'
}

# ==========================================
# 1. DISTRIBUTION FILES
# ==========================================

# Directory holding the hand-maintained distribution listings
DATA_DIR = 'data'

# 'combined': one file with ticker-delimited sections
# 'per_ticker': one file per fund, named <prefix>_<TICKER>.txt
INGESTION_MODE = 'combined'

DISTRIBUTIONS_FILE = 'distributions.txt'

PER_TICKER_FILE_PREFIX = {
    'money_market': 'mmf',
    'mutual': 'mf'
}

# ==========================================
# 2. PARSING RULES
# ==========================================

# Reinvestment NAV used for fixed-NAV funds and when no NAV is published
DEFAULT_REINVEST_NAV = Decimal('1.00')

# None: 'YY' always maps to '20YY'.
# Integer p: 'YY' < p maps to '20YY', otherwise '19YY'.
TWO_DIGIT_YEAR_PIVOT = None

# Lower-case fragments used to recognise header columns
DATE_HEADER_KEYWORDS = ('record date', 'date')
NAV_HEADER_KEYWORDS = ('nav',)
DISTRIBUTION_HEADER_KEYWORDS = (
    'dividend',
    'cap. gain',
    'cap gain',
    'capital gain',
    'income',
    'distribution',
    'rate'
)

# ==========================================
# 3. MARKET DATA
# ==========================================

NAV_HISTORY_START = '2024-01-01'

# Retries with exponential backoff (5s, 10s, 20s)
MAX_RETRIES = 3
RETRY_BASE_WAIT = 5

# Parallel fetches of independent fund files / NAV histories
MAX_WORKERS = 4

# Seconds, for HTTP distribution sources
REQUEST_TIMEOUT = 10

# ==========================================
# 4. LOGGING
# ==========================================

LOG_LEVEL = 'INFO'
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
