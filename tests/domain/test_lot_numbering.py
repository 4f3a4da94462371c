"""Tests for lot numbers, expiry dates and virtual codes."""

from datetime import date

import pytest
from hypothesis import given
from hypothesis import strategies as st

from certify_kernel.domain.lot_numbering import (
    LotDateFormat,
    LotNumberingRules,
    add_months,
    compute_expiry_date,
    format_lot_number,
    format_virtual_code,
    parse_date_format,
    validate_lot_rules,
)
from certify_kernel.exceptions import InvalidSettingsError


class TestLotNumber:
    def test_default_shape(self):
        rules = LotNumberingRules("ND", 5, LotDateFormat.YYMMDD, 24)
        assert format_lot_number(rules, 12, date(2024, 12, 9)) == "ND00012241209"

    @pytest.mark.parametrize(
        "date_format, expected",
        [
            (LotDateFormat.YYMMDD, "AB001240305"),
            (LotDateFormat.YYYYMMDD, "AB00120240305"),
            (LotDateFormat.YYMM, "AB0012403"),
        ],
    )
    def test_date_formats(self, date_format, expected):
        rules = LotNumberingRules("AB", 3, date_format, 12)
        assert format_lot_number(rules, 1, date(2024, 3, 5)) == expected

    def test_serial_overflow_rejected(self):
        rules = LotNumberingRules("ND", 2, LotDateFormat.YYMMDD, 24)
        with pytest.raises(ValueError):
            format_lot_number(rules, 100, date(2024, 1, 1))


class TestLotRulesValidation:
    @pytest.mark.parametrize("prefix", ["", "nd", "TOOLONGPREFIX", "N1"])
    def test_bad_prefix(self, prefix):
        with pytest.raises(InvalidSettingsError) as exc_info:
            validate_lot_rules(prefix, 5, "yymmdd")
        assert exc_info.value.setting == "lot_prefix"

    @pytest.mark.parametrize("digits", [0, 11])
    def test_bad_digits(self, digits):
        with pytest.raises(InvalidSettingsError) as exc_info:
            validate_lot_rules("ND", digits, "yymmdd")
        assert exc_info.value.setting == "lot_model_digits"

    def test_bad_date_format(self):
        with pytest.raises(InvalidSettingsError):
            parse_date_format("ddmmyy")

    def test_date_format_is_case_insensitive(self):
        assert parse_date_format("YYYYMMDD") is LotDateFormat.YYYYMMDD


class TestExpiry:
    @pytest.mark.parametrize(
        "production, months, expected",
        [
            (date(2024, 12, 1), 24, date(2026, 11, 30)),
            (date(2024, 1, 31), 1, date(2024, 2, 28)),
            (date(2023, 8, 31), 6, date(2024, 2, 28)),
            (date(2024, 3, 15), 12, date(2025, 3, 14)),
        ],
    )
    def test_months_minus_one_day(self, production, months, expected):
        assert compute_expiry_date(production, months) == expected

    @given(
        start=st.dates(min_value=date(2000, 1, 1), max_value=date(2090, 12, 31)),
        months=st.sampled_from([6, 12, 18, 24, 36]),
    )
    def test_add_months_lands_in_target_month(self, start, months):
        result = add_months(start, months)
        total = start.year * 12 + start.month - 1 + months
        assert (result.year, result.month) == (total // 12, total % 12 + 1)
        assert result.day <= start.day


class TestVirtualCode:
    def test_zero_padded(self):
        assert format_virtual_code(42) == "NC-00000042"

    def test_custom_prefix_and_width(self):
        assert format_virtual_code(7, prefix="TS-", digits=4) == "TS-0007"

    def test_non_positive_rejected(self):
        with pytest.raises(ValueError):
            format_virtual_code(0)
