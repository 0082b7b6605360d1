import re
from typing import Optional

# Price mention in free text: optional currency marker around a number
CURRENCY_PRICE_PATTERN = re.compile(
    r'(?:€|\bEUR\b)\s*(\d+(?:[.,]\d+)?)|(\d+(?:[.,]\d+)?)\s*(?:€|\bEUR\b)',
    re.IGNORECASE,
)
BARE_NUMBER_PATTERN = re.compile(r'(\d+(?:[.,]\d+)?)')


def parse_numeric_value(text: Optional[str]) -> Optional[float]:
    """
    Parses a stored price or distance string such as "1,500 EUR" or "575 km".
    Commas are treated as thousands separators.
    """
    if text is None:
        return None
    if isinstance(text, (int, float)):
        return float(text)

    cleaned = re.sub(r'[^\d.,]', '', str(text)).replace(',', '')
    if not cleaned:
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


def _to_float(raw: str) -> Optional[float]:
    try:
        return float(raw.replace(',', '.'))
    except ValueError:
        return None


def extract_marked_price(text: str) -> Optional[float]:
    """
    Extracts a price carrying a currency marker, e.g. "€950 agreed" or
    "we can do 1400,50 EUR". A comma is read as a decimal separator.
    Bare numbers (times, pallet counts) are ignored.
    """
    if not text:
        return None

    match = CURRENCY_PRICE_PATTERN.search(text)
    if match:
        return _to_float(match.group(1) or match.group(2))
    return None


def extract_price_mention(text: str) -> Optional[float]:
    """Like extract_marked_price, falling back to the first bare number."""
    if not text:
        return None

    marked = extract_marked_price(text)
    if marked is not None:
        return marked

    match = BARE_NUMBER_PATTERN.search(text)
    if match:
        return _to_float(match.group(1))

    return None


def format_eur(value: float) -> str:
    return f"€{value:.2f}"


def price_per_km(price: Optional[str], distance: Optional[str]) -> Optional[float]:
    """Best-effort price/km; None when either side does not parse."""
    price_value = parse_numeric_value(price)
    distance_value = parse_numeric_value(distance)
    if price_value is None or not distance_value:
        return None
    return price_value / distance_value


def clean_message_id(message_id: Optional[str]) -> str:
    """Canonical Message-ID: '<abc123@mail>' -> 'abc123@mail'"""
    if not message_id:
        return ""
    return message_id.strip().strip('<>').strip()
