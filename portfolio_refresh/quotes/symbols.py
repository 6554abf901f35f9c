"""Symbol normalization for the quote providers."""

EXCHANGE_SUFFIXES = (".NS", ".BO")

# Yahoo chart suffix and Google Finance exchange code per listing exchange
YAHOO_SUFFIX = {"NSE": ".NS", "BSE": ".BO"}
GOOGLE_EXCHANGE = {"NSE": "NSE", "BSE": "BOM"}


def normalize_symbol(symbol: str) -> str:
    """Trim, upper-case and drop a trailing .NS/.BO suffix."""
    value = (symbol or "").strip().upper()
    for suffix in EXCHANGE_SUFFIXES:
        if value.endswith(suffix):
            return value[: -len(suffix)]
    return value


def normalize_exchange(exchange: str | None) -> str:
    value = (exchange or "").strip().upper()
    return value if value in YAHOO_SUFFIX else "NSE"


def yahoo_symbol(symbol: str, exchange: str | None = None) -> str:
    """``TCS`` -> ``TCS.NS``."""
    return f"{normalize_symbol(symbol)}{YAHOO_SUFFIX[normalize_exchange(exchange)]}"


def google_symbol(symbol: str, exchange: str | None = None) -> str:
    """``TCS`` -> ``TCS:NSE``."""
    return f"{normalize_symbol(symbol)}:{GOOGLE_EXCHANGE[normalize_exchange(exchange)]}"
