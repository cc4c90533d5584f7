"""
Tax Locator.

Approximate sales-tax lookup keyed on recognizable region names in the
pickup location text. Not a tax-authority integration: the fare engine
accepts any callable with the same signature.
"""

from typing import Callable, List, Tuple

TaxLocatorFn = Callable[[str], float]

DEFAULT_TAX_RATE = 0.05

# First match wins; more specific regions are listed before broader ones.
REGION_TAX_RATES: List[Tuple[Tuple[str, ...], float]] = [
    (("new york", "manhattan", "ny"), 0.08875),
    (("california", "los angeles", "san francisco", "ca", "sf"), 0.095),
    (("florida", "miami", "fl"), 0.07),
    (("texas", "tx"), 0.0825),
    (("las vegas", "nevada", "nv"), 0.0838),
    (("london", "uk"), 0.20),
    (("dubai", "uae"), 0.05),
    (("paris", "france"), 0.20),
]


def _matches(text: str, keyword: str) -> bool:
    # Short codes ("ny", "uk") must be standalone tokens, not substrings of other words.
    if len(keyword) <= 3:
        tokens = "".join(ch if ch.isalnum() else " " for ch in text).split()
        return keyword in tokens
    return keyword in text


def locate_tax_rate(location_text: str) -> float:
    """
    Return the fractional tax rate for a free-form location string.

    Matching is case-insensitive; unrecognized locations fall back to
    DEFAULT_TAX_RATE.
    """
    text = (location_text or "").lower()
    for keywords, rate in REGION_TAX_RATES:
        if any(_matches(text, keyword) for keyword in keywords):
            return rate
    return DEFAULT_TAX_RATE
