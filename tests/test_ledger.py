"""Unit tests untuk fungsi murni ledger anggaran.

- calculate_total_amount (floor rkap * release / 100)
- calculate_ppn / calculate_ppn_on_update (jalur create vs update)
- current_quarter, quarter_date_range
- split_evenly, auto_split_quarters, auto_split_months, months/quarters
- auto_split_regional, apply_percentages
"""
from datetime import datetime

import pytest

from errors import ValidationError
from ledger import (
    QUARTER_FIELDS, MONTH_FIELDS,
    calculate_total_amount, calculate_ppn, calculate_ppn_on_update,
    current_quarter, quarter_date_range, split_evenly,
    auto_split_quarters, auto_split_months, months_from_quarters, quarters_from_months,
    auto_split_regional, apply_percentages,
)


class TestCalculateTotalAmount:

    def test_release_percent(self):
        assert calculate_total_amount(1_000_000, 80) == 800_000

    def test_floor(self):
        assert calculate_total_amount(1_000_001, 33) == 330_000

    def test_none_values(self):
        assert calculate_total_amount(None, 100) == 0
        assert calculate_total_amount(500, None) == 0


class TestCalculatePpn:

    def test_ppn11_inclusive_on_create(self):
        tanpa_ppn, ppn = calculate_ppn(111_000, "PPN11")
        assert tanpa_ppn == pytest.approx(100_000)
        assert ppn == pytest.approx(11_000)

    def test_jasa2(self):
        tanpa_ppn, ppn = calculate_ppn(100_000, "PPNJasa2")
        assert ppn == pytest.approx(2_000)
        assert tanpa_ppn == pytest.approx(98_000)

    def test_inklaring(self):
        tanpa_ppn, ppn = calculate_ppn(100_000, "PPNInklaring1.1")
        assert ppn == pytest.approx(1_100)
        assert tanpa_ppn == pytest.approx(98_900)

    def test_tanpa_ppn_and_unknown(self):
        assert calculate_ppn(50_000, "TanpaPPN") == (50_000, 0.0)
        assert calculate_ppn(50_000, None) == (50_000, 0.0)


class TestCalculatePpnOnUpdate:

    def test_ppn11_exclusive_on_update(self):
        """Jalur update menganggap input PPN11 belum termasuk pajak (beda dengan create)."""
        kwitansi, tanpa_ppn, ppn = calculate_ppn_on_update(100_000, "PPN11")
        assert tanpa_ppn == pytest.approx(100_000)
        assert ppn == pytest.approx(11_000)
        assert kwitansi == pytest.approx(111_000)

    def test_same_input_differs_between_paths(self):
        create_tanpa, _ = calculate_ppn(111_000, "PPN11")
        _, update_tanpa, _ = calculate_ppn_on_update(111_000, "PPN11")
        assert create_tanpa != pytest.approx(update_tanpa)

    def test_other_types_follow_create_path(self):
        kwitansi, tanpa_ppn, ppn = calculate_ppn_on_update(100_000, "PPNJasa2")
        assert kwitansi == 100_000
        assert (tanpa_ppn, ppn) == calculate_ppn(100_000, "PPNJasa2")


class TestQuarter:

    @pytest.mark.parametrize("month,expected", [(1, 1), (3, 1), (4, 2), (6, 2), (7, 3), (10, 4), (12, 4)])
    def test_current_quarter(self, month, expected):
        assert current_quarter(datetime(2025, month, 15)) == expected

    def test_date_range_q1(self):
        start, end = quarter_date_range(1, 2024)
        assert start == datetime(2024, 1, 1)
        assert end == datetime(2024, 3, 31, 23, 59, 59, 999000)

    def test_date_range_q4(self):
        start, end = quarter_date_range(4, 2025)
        assert start == datetime(2025, 10, 1)
        assert end.date() == datetime(2025, 12, 31).date()

    def test_invalid_quarter(self):
        with pytest.raises(ValidationError):
            quarter_date_range(5, 2025)


class TestAutoSplit:

    def test_800k_into_quarters(self):
        total = calculate_total_amount(1_000_000, 80)
        result = auto_split_quarters(total)
        assert [result[f] for f in QUARTER_FIELDS] == [200_000, 200_000, 200_000, 200_000]

    def test_last_quarter_absorbs_remainder(self):
        result = auto_split_quarters(1_000_003)
        assert result["q1_amount"] == 250_000
        assert result["q4_amount"] == 250_003
        assert sum(result.values()) == 1_000_003

    def test_months_sum_exact(self):
        result = auto_split_months(1_000_001)
        assert len(result) == 12
        assert sum(result.values()) == 1_000_001
        assert result["dec_amount"] >= result["jan_amount"]

    def test_months_from_quarters(self):
        result = months_from_quarters([300, 301, 0, 100])
        assert [result[m] for m in MONTH_FIELDS[:3]] == [100, 100, 100]
        assert [result[m] for m in MONTH_FIELDS[3:6]] == [100, 100, 101]
        assert sum(result.values()) == 701

    def test_quarters_from_months(self):
        result = quarters_from_months([1, 2, 3, 4, 5, 6, 7, 8, 9, 10, 11, None])
        assert result == {"q1_amount": 6, "q2_amount": 15, "q3_amount": 24, "q4_amount": 21}

    def test_split_evenly_invalid_parts(self):
        with pytest.raises(ValidationError):
            split_evenly(100, 0)


class TestRegionalSplit:

    def test_three_regionals_33_33_34(self):
        rows = auto_split_regional(100, ["TREG-1", "TREG-2", "TREG-3"])
        assert [r["amount"] for r in rows] == [33, 33, 34]
        assert [r["percentage"] for r in rows] == [33.33, 33.33, 33.34]

    def test_seven_regionals_percentage_sum(self):
        codes = [f"TREG-{n}" for n in range(1, 8)]
        rows = auto_split_regional(1_000_000, codes)
        assert sum(r["percentage"] for r in rows) == pytest.approx(100, abs=0.01)
        assert rows[-1]["percentage"] == 14.26
        assert sum(r["amount"] for r in rows) == 1_000_000

    def test_apply_percentages_seven_empty_slots(self):
        codes = [f"TREG-{n}" for n in range(1, 8)]
        rows = apply_percentages(1_000_000, codes, {})
        assert sum(r["percentage"] for r in rows) == pytest.approx(100, abs=0.01)
        assert sum(r["amount"] for r in rows) == 1_000_000

    def test_apply_percentages_over_100(self):
        with pytest.raises(ValidationError):
            apply_percentages(1_000, ["A", "B", "C"], {"A": 70, "B": 40})

    def test_no_regionals(self):
        with pytest.raises(ValidationError):
            auto_split_regional(100, [])

    def test_apply_percentages_fills_empty_slots(self):
        rows = apply_percentages(1_000, ["A", "B", "C"], {"A": 50})
        pcts = {r["regional_code"]: r["percentage"] for r in rows}
        assert pcts == {"A": 50, "B": 25, "C": 25}
        assert sum(r["amount"] for r in rows) == 1_000

    def test_apply_percentages_sum_exact(self):
        rows = apply_percentages(1_000_003, ["A", "B", "C"], {})
        assert sum(r["percentage"] for r in rows) == pytest.approx(100, abs=0.01)
        assert sum(r["amount"] for r in rows) == 1_000_003

    def test_apply_percentages_full(self):
        rows = apply_percentages(200, ["A", "B"], {"A": 30, "B": 70})
        assert [r["amount"] for r in rows] == [60, 140]
