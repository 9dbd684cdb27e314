"""
Tests for line-item parsing: code detection tiers, quantity and price
tokenization, name cleanup and multi-line recovery.
"""

import pytest

import line_parser
from line_parser import (
    assign_prices, clean_product_name, detect_product_code, extract_quantity,
    find_price_tokens, is_excluded_code, is_valid_name, parse_amount,
    parse_line_items, parse_product_line,
)


class TestCodeDetection:

    def test_primary_code(self):
        found = detect_product_code("153.01.0042 Domates 10 KG 250,00 TL")
        assert found.code == "153.01.0042"
        assert found.tier == "primary"
        assert found.start == 0

    def test_primary_code_needs_digit_boundaries(self):
        found = detect_product_code("9153.01.00421 Domates")
        assert found is None or found.tier != "primary"

    def test_dotted_code(self):
        found = detect_product_code("120.05.331 Kabak 3 KG 45,00 TL")
        assert found.code == "120.05.331"
        assert found.tier == "dotted_3_2_3"

    def test_date_is_not_a_code(self):
        assert detect_product_code("Fatura Tarihi: 15.01.2024") is None

    @pytest.mark.parametrize("token,excluded", [
        ("INV12345", True),
        ("FTR2024001", True),
        ("15.01.2024", True),
        ("123456789", True),
        ("1234.567.89012", True),
        ("120.05.331", False),
        ("153.01.0042", False),
    ])
    def test_exclusions(self, token, excluded):
        assert is_excluded_code(token) is excluded

    def test_plain_number_with_product_context(self):
        found = detect_product_code("Domates 42 kasa 10 KG 250,00 TL")
        assert found.code == "42"
        assert found.tier == "plain_number"

    def test_plain_number_near_line_start(self):
        found = detect_product_code("Kod 4711 Kereviz 2 KG 30,00 TL")
        assert found.code == "4711"

    def test_plain_number_rejects_year(self):
        assert detect_product_code("Domates 2024 sezon 5 KG 50,00 TL") is None

    def test_plain_number_rejects_row_ordinal(self):
        assert detect_product_code("12 Domates 5 KG 50,00 TL") is None

    def test_plain_number_rejects_quantity(self):
        assert detect_product_code("Domates 25 KG") is None

    def test_plain_number_rejects_price_label(self):
        assert detect_product_code("Toplam 350") is None


class TestTokens:

    def test_quantity_and_unit(self):
        quantity, unit, remaining = extract_quantity("Domates 10 KG 250,00 TL")
        assert quantity == 10
        assert unit == "KG"
        assert "10 KG" not in remaining

    def test_decimal_quantity(self):
        quantity, unit, _ = extract_quantity("Mantar 2,5 kg")
        assert quantity == pytest.approx(2.5)
        assert unit == "KG"

    def test_quantity_defaults_to_one_piece(self):
        quantity, unit, remaining = extract_quantity("Marul 15,50 TL")
        assert quantity == 1.0
        assert unit == "ADET"
        assert remaining == "Marul 15,50 TL"

    def test_turkish_amounts(self):
        assert parse_amount("1.234,50 TL") == pytest.approx(1234.5)
        assert parse_amount("250,00") == pytest.approx(250.0)
        assert parse_amount("12867,75 ₺") == pytest.approx(12867.75)

    def test_price_tokens_left_to_right(self):
        tokens = find_price_tokens("Biber 20,00 TL 1,00 TL 100,00 TL")
        assert [parse_amount(t) for t in tokens] == [20.0, 1.0, 100.0]

    def test_price_token_not_split_inside_number(self):
        tokens = find_price_tokens("Patates 1250,00 TL")
        assert [parse_amount(t) for t in tokens] == [1250.0]

    def test_single_price_is_total_when_quantity_above_one(self):
        assert assign_prices(["250,00 TL"], 10) == (pytest.approx(25.0), pytest.approx(250.0))

    def test_single_price_is_unit_price_for_one_unit(self):
        assert assign_prices(["15,50 TL"], 1) == (pytest.approx(15.5), pytest.approx(15.5))

    def test_first_and_last_of_many_prices(self):
        unit_price, total = assign_prices(["20,00 TL", "1,00 TL", "100,00 TL"], 5)
        assert unit_price == pytest.approx(20.0)
        assert total == pytest.approx(100.0)

    def test_short_and_ungrouped_prices_on_one_line(self):
        tokens = find_price_tokens("Domates 12,50 TL 1250,00 TL")
        assert [parse_amount(t) for t in tokens] == [12.5, 1250.0]

    def test_overlapping_matches_counted_once(self):
        tokens = find_price_tokens("Biber 1.234,50 TL")
        assert tokens == ["1.234,50 TL"]

    def test_no_prices(self):
        assert assign_prices([], 3) == (0.0, 0.0)


class TestNameCleanup:

    def test_strips_ordinal_brand_and_tax(self):
        assert clean_product_name("1 Domates (ERUST&GREENADA) %10 -") == "Domates"

    def test_collapses_whitespace(self):
        assert clean_product_name("  Salkım    Domates  ") == "Salkım Domates"

    @pytest.mark.parametrize("name,valid", [
        ("Domates", True),
        ("KG", False),
        ("adet", False),
        ("ab", False),
        ("", False),
        ("- | -", False),
    ])
    def test_name_validation(self, name, valid):
        assert is_valid_name(name) is valid


class TestParseProductLine:

    def test_single_price_line(self):
        """Quantity above one makes the only price the total."""
        item = parse_product_line("153.01.0042 Domates 10 KG 250,00 TL")
        assert item.code == "153.01.0042"
        assert item.name == "Domates"
        assert item.quantity == 10
        assert item.unit == "KG"
        assert item.unit_price == pytest.approx(25.0)
        assert item.total == pytest.approx(250.0)

    def test_thousands_separator(self):
        item = parse_product_line("153.01.0051 Patates 100 KG 1.234,50 TL")
        assert item.total == pytest.approx(1234.5)
        assert item.unit_price == pytest.approx(12.345)

    def test_middle_prices_ignored(self):
        item = parse_product_line("153.01.0043 Biber 5 KG 20,00 TL 1,00 TL 100,00 TL")
        assert item.name == "Biber"
        assert item.unit_price == pytest.approx(20.0)
        assert item.total == pytest.approx(100.0)

    def test_unit_price_and_ungrouped_total(self):
        item = parse_product_line("153.01.0042 Domates 100 KG 12,50 TL 1250,00 TL")
        assert item.name == "Domates"
        assert item.unit_price == pytest.approx(12.5)
        assert item.total == pytest.approx(1250.0)

    def test_bare_unit_name_rejected(self):
        assert parse_product_line("153.01.0080 KG 5,00 TL") is None

    def test_missing_price_rejected(self):
        assert parse_product_line("153.01.0060 Salkım Domates") is None

    def test_line_without_code(self):
        assert parse_product_line("Ara Toplam 350,00 TL") is None


class TestParseLineItems:

    def test_multi_line_description_recovered(self):
        text = "153.01.0060 Salkım Domates\nExtra 5 KG 100,00 TL"
        items, stats = parse_line_items(text)
        assert len(items) == 1
        assert items[0].name == "Salkım Domates Extra"
        assert items[0].unit_price == pytest.approx(20.0)
        assert stats.multiline_recovered == 1
        assert stats.codes_found == 1

    def test_failed_candidate_does_not_stop_parsing(self):
        text = "\n".join([
            "153.01.0070 Biber",
            "Ara Toplam",
            "Genel",
            "153.01.0071 Ispanak 2 KG 40,00 TL",
        ])
        items, stats = parse_line_items(text)
        assert [i.code for i in items] == ["153.01.0071"]
        assert stats.codes_found == 2
        assert stats.parsed == 1
        assert stats.failed == 1
        assert stats.attempts == 4
        assert stats.tiers == {"primary": 2}

    def test_longer_code_counted_under_dotted_tier(self):
        """A fifth trailing digit moves the code out of the primary tier."""
        items, stats = parse_line_items("153.01.00421 Domates 10 KG 250,00 TL")
        assert [i.code for i in items] == ["153.01.00421"]
        assert stats.tiers == {"dotted_extended": 1}

    def test_blank_lines_ignored(self):
        items, stats = parse_line_items("\n\n153.01.0042 Domates 10 KG 250,00 TL\n   \n")
        assert len(items) == 1
        assert stats.lines_scanned == 1

    def test_attempt_limit(self):
        text = "153.01.0042 Domates 10 KG 250,00 TL\n153.01.0043 Biber 5 KG 100,00 TL"
        items, stats = parse_line_items(text, max_attempts=1)
        assert len(items) == 1
        assert stats.failed == 1
        assert stats.attempt_limit_reached

    def test_parse_errors_are_counted(self, monkeypatch):
        def broken(line):
            raise ValueError("bad amount")

        monkeypatch.setattr(line_parser, "parse_product_line", broken)
        items, stats = parse_line_items("153.01.0042 Domates 10 KG 250,00 TL")
        assert items == []
        assert stats.failed == 1
