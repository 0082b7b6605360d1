import os
import sys

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from core.utils import (
    clean_message_id,
    extract_marked_price,
    extract_price_mention,
    format_eur,
    parse_numeric_value,
    price_per_km,
)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("€950 agreed", 950.0),
        ("we can do 1400,50 EUR", 1400.5),
        ("EUR 1200 is my last offer", 1200.0),
        ("truck 2 can do 980€", 980.0),
        ("ok for 875", 875.0),
        ("no numbers here", None),
        ("", None),
    ],
)
def test_extract_price_mention(text, expected):
    assert extract_price_mention(text) == expected


def test_currency_marked_price_wins_over_bare_number():
    assert extract_price_mention("Loading at 8, price 1100 EUR") == 1100.0


@pytest.mark.parametrize(
    "text, expected",
    [
        ("Loading at 8, ok for 1400?", None),
        ("2 pallets, 950 EUR", 950.0),
        ("€1200,50 is fine", 1200.5),
        (None, None),
    ],
)
def test_extract_marked_price_ignores_bare_numbers(text, expected):
    assert extract_marked_price(text) == expected


def test_parse_numeric_value_treats_comma_as_thousands_separator():
    assert parse_numeric_value("1,500 EUR") == 1500.0
    assert parse_numeric_value("575 km") == 575.0
    assert parse_numeric_value(None) is None
    assert parse_numeric_value("n/a") is None


def test_price_per_km_is_best_effort():
    assert price_per_km("1150 EUR", "575 km") == pytest.approx(2.0)
    assert price_per_km("1150 EUR", None) is None
    assert price_per_km("1150 EUR", "0 km") is None
    assert price_per_km("unknown", "575 km") is None


def test_format_eur():
    assert format_eur(950) == "€950.00"


def test_clean_message_id():
    assert clean_message_id("<abc123@mail>") == "abc123@mail"
    assert clean_message_id("  <abc123@mail> ") == "abc123@mail"
    assert clean_message_id(None) == ""
