"""Lenient value parsing for provider payloads.

Providers are unversioned and may change shape at any time, so every
helper here returns None instead of raising on unexpected input.
"""

import math
import re
from typing import Any, Optional


# Only this many characters of an HTML page are searched
MAX_SCAN_CHARS = 250_000

# Maximum distance between an earnings keyword and the date it labels
KEYWORD_WINDOW_CHARS = 200

PE_UPPER_BOUND = 1e6
# Far above any listed Indian equity price
PRICE_UPPER_BOUND = 1e7

_NUMBER = r"(\d[\d,]*(?:\.\d+)?)"

PE_PATTERNS = [
    re.compile(r'"trailingPe"\s*:\s*' + _NUMBER),
    re.compile(r'"peRatio"\s*:\s*' + _NUMBER, re.IGNORECASE),
    re.compile(r'"P/E"[^}]*?"' + _NUMBER + '"'),
    re.compile(r"P/E ratio\s*</div>\s*<div[^>]*>\s*" + _NUMBER + r"\s*<", re.IGNORECASE),
]

_MONTH = r"(?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)[a-z]*\.?"
_DATE = (
    r"(?:\d{4}-\d{2}-\d{2}"
    rf"|{_MONTH}\s+\d{{1,2}},?\s+\d{{4}}"
    rf"|\d{{1,2}}\s+{_MONTH}\s+\d{{4}})"
)

EARNINGS_JSON_PATTERN = re.compile(r'"earningsDate"\s*:\s*"([^"]{1,64})"')
EARNINGS_KEYWORD_PATTERN = re.compile(
    rf"\b(?:Earnings|EPS)\b[\s\S]{{0,{KEYWORD_WINDOW_CHARS}}}?({_DATE})",
    re.IGNORECASE,
)


def to_finite_number(value: Any) -> Optional[float]:
    """Coerce a provider value to float; None for absent, non-numeric or non-finite."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().replace(",", "")
        if not value or value.upper() in ("N/A", "NA", "-", "--"):
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def sane_price(value: Any) -> Optional[float]:
    """Price accepted only inside (0, 1e7); zero or negative quotes are absent, not a total loss."""
    number = to_finite_number(value)
    if number is None or not (0 < number < PRICE_UPPER_BOUND):
        return None
    return number


def sane_pe_ratio(value: Any) -> Optional[float]:
    """P/E accepted only inside (0, 1e6)."""
    number = to_finite_number(value)
    if number is None or not (0 < number < PE_UPPER_BOUND):
        return None
    return number


def dig(data: Any, *path: Any) -> Any:
    """Walk nested dicts/lists, returning None at the first missing step."""
    current = data
    for step in path:
        if isinstance(step, int):
            if not isinstance(current, list) or not (-len(current) <= step < len(current)):
                return None
            current = current[step]
        else:
            if not isinstance(current, dict):
                return None
            current = current.get(step)
        if current is None:
            return None
    return current


def extract_pe_ratio(html: str) -> Optional[float]:
    """First P/E pattern that yields a sane value wins."""
    text = (html or "")[:MAX_SCAN_CHARS]
    for pattern in PE_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        value = sane_pe_ratio(match.group(1))
        if value is not None:
            return value
    return None


def extract_latest_earnings(html: str) -> Optional[str]:
    """Earnings date from embedded JSON, else a date right after an Earnings/EPS label."""
    text = (html or "")[:MAX_SCAN_CHARS]

    match = EARNINGS_JSON_PATTERN.search(text)
    if match and match.group(1).strip():
        return match.group(1).strip()

    match = EARNINGS_KEYWORD_PATTERN.search(text)
    if match:
        return " ".join(match.group(1).split())
    return None
