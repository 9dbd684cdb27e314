"""
Tests for the value types and their construction rules.
"""

import pytest

from models import LineItem, MatchResult, ParseStats


def item(quantity=4, unit_price=12.5, total=None):
    return LineItem("153.01.0042", "Domates", quantity, "KG", unit_price, total)


class TestLineItem:

    @pytest.mark.parametrize("total", [None, 0, 0.0, -5])
    def test_missing_total_derived(self, total):
        assert item(total=total).total == 12.5 * 4

    def test_explicit_total_kept(self):
        """The printed total wins even when it disagrees with price x quantity."""
        assert item(total=49.99).total == 49.99

    @pytest.mark.parametrize("unit_price", [0, -1, None])
    def test_unit_price_must_be_positive(self, unit_price):
        with pytest.raises(ValueError, match="unit price"):
            item(unit_price=unit_price)

    @pytest.mark.parametrize("quantity", [0, -1, None])
    def test_quantity_must_be_positive(self, quantity):
        with pytest.raises(ValueError, match="quantity"):
            item(quantity=quantity)


class TestMatchResult:

    @pytest.mark.parametrize("confidence", [-0.01, 1.01])
    def test_confidence_range(self, confidence):
        with pytest.raises(ValueError):
            MatchResult(None, confidence, "no_match")

    def test_suggestions_capped_at_five(self):
        result = MatchResult(None, 0.0, "no_match", tuple("abcdefg"))
        assert result.suggestions == ("a", "b", "c", "d", "e")
        assert not result.matched


class TestParseStats:

    def test_to_dict(self):
        stats = ParseStats(lines_scanned=3, codes_found=1, parsed=1, tiers={"primary": 1})
        data = stats.to_dict()
        assert data["lines_scanned"] == 3
        assert data["parsed"] == 1
        assert data["tiers"] == {"primary": 1}
