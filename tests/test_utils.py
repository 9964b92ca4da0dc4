from datetime import date

import pytest

from app.senexus.utils import parse_flexible_date, parse_ref


def test_parse_flexible_date_day_first():
    assert parse_flexible_date("03/04/2024") == date(2024, 4, 3)


def test_parse_flexible_date_month_first_when_unambiguous():
    assert parse_flexible_date("04/25/2024") == date(2024, 4, 25)


def test_parse_flexible_date_iso_and_blank():
    assert parse_flexible_date("2024-12-31") == date(2024, 12, 31)
    assert parse_flexible_date("  ") is None
    assert parse_flexible_date(None) is None


def test_parse_flexible_date_rejects_garbage():
    with pytest.raises(ValueError):
        parse_flexible_date("31/31/2024")
    with pytest.raises(ValueError):
        parse_flexible_date("yesterday")


def test_parse_ref():
    assert parse_ref("42") == 42
    assert parse_ref(" alpha ") == "alpha"
    assert parse_ref(7) == 7
