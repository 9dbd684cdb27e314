"""
Tests for text reconstruction, header extraction and invoice extraction.
"""

import json
from datetime import date

import pytest

from extractor import (
    PDF_UNIT_SCALE, extract_from_fragments, extract_invoice_date,
    extract_invoice_number, find_invoice_date, fragments_from_page,
    load_fragments_json, load_pages, reconstruct_text,
)
from models import ExtractionError, PositionedFragment


def frag(text, x, y):
    return PositionedFragment(text=text, x=x, y=y)


def pages_from_lines(lines):
    """One fragment per line, one layout unit apart."""
    return [[frag(line, 0.0, float(i)) for i, line in enumerate(lines)]]


INVOICE_LINES = [
    "GÜLER TARIM ÜRÜNLERİ",
    "Fatura No: GLR2025000123",
    "Fatura Tarihi: 15.01.2024",
    "153.01.0042 Domates 10 KG 250,00 TL",
    "153.01.0043 Biber 5 KG 20,00 TL 100,00 TL",
    "Genel Toplam 350,00 TL",
]


class FakePage:
    """Stands in for a pdfplumber page."""

    page_number = 1

    def __init__(self, words=None, text=""):
        self._words = words or []
        self._text = text

    def extract_words(self):
        return self._words

    def extract_text(self):
        return self._text


class TestReconstructText:

    def test_orders_by_line_then_x(self):
        pages = [[frag("TL", 30, 5.0), frag("Domates", 10, 5.2), frag("Fatura", 1, 1.0)]]
        assert reconstruct_text(pages) == "Fatura\nDomates TL"

    def test_new_line_at_tolerance(self):
        pages = [[frag("A", 0, 1.0), frag("B", 5, 1.5)]]
        assert reconstruct_text(pages) == "A\nB"

    def test_same_line_within_tolerance(self):
        pages = [[frag("B", 5, 1.0), frag("A", 0, 1.49)]]
        assert reconstruct_text(pages) == "A B"

    def test_custom_tolerance(self):
        pages = [[frag("A", 0, 1.0), frag("B", 5, 1.5)]]
        assert reconstruct_text(pages, tolerance=1.0) == "A B"

    def test_pages_concatenated(self):
        pages = [[frag("one", 0, 0)], [frag("two", 0, 0)]]
        assert reconstruct_text(pages) == "one\ntwo"

    def test_no_fragment_dropped(self):
        pages = [[frag("A", 0, 0), frag("", 0, 2), frag("B", 0, 4)]]
        assert reconstruct_text(pages) == "A\n\nB"

    @pytest.mark.parametrize("pages", [[], [[]], None])
    def test_empty_input(self, pages):
        assert reconstruct_text(pages) == ""


class TestTextLayer:

    def test_words_scaled_to_layout_units(self):
        page = FakePage(words=[{"text": "Domates", "x0": 45.0, "top": 90.0, "x1": 90.0}])
        fragments = fragments_from_page(page)
        assert fragments == [PositionedFragment("Domates", 10.0, 20.0, 45.0 / PDF_UNIT_SCALE)]

    def test_page_text_fallback(self):
        page = FakePage(words=[], text="Fatura No: GLR2025000123\n\nDomates")
        fragments = fragments_from_page(page)
        assert [f.text for f in fragments] == ["Fatura No: GLR2025000123", "Domates"]
        assert reconstruct_text([fragments]) == "Fatura No: GLR2025000123\nDomates"

    def test_json_dump(self, tmp_path):
        path = tmp_path / "invoice.json"
        path.write_text(json.dumps({"pages": [[
            {"text": "Domates", "x": 10, "y": 2, "width": 30},
            {"text": "Fatura", "x": 1, "y": 1},
        ]]}), encoding="utf-8")

        pages = load_pages(str(path))
        assert pages == load_fragments_json(str(path))
        assert pages[0][0] == PositionedFragment("Domates", 10.0, 2.0, 30.0)
        assert reconstruct_text(pages) == "Fatura\nDomates"


class TestHeader:

    def test_labelled_invoice_number(self):
        assert extract_invoice_number("GÜLER TARIM\nFatura No: GLR2025000123") == "GLR2025000123"

    def test_short_token_skipped(self):
        assert extract_invoice_number("Fatura No: AB1") is None

    def test_fallback_token_scan(self):
        assert extract_invoice_number("Belge ABC1234X") == "ABC1234X"

    def test_fallback_scan_is_uppercase_only(self):
        assert extract_invoice_number("Belge: abc12345x") is None
        assert extract_invoice_number("Belge: ABC12345X") == "ABC12345X"

    def test_no_invoice_number(self):
        assert extract_invoice_number("Merhaba dünya") is None

    def test_labelled_date(self):
        assert find_invoice_date("Fatura Tarihi: 15.01.2024") == date(2024, 1, 15)

    def test_invalid_date_skipped(self):
        text = "Tarih: 31.02.2024\nDate: 01/03/2024"
        assert find_invoice_date(text) == date(2024, 3, 1)

    def test_date_defaults_to_today(self):
        assert find_invoice_date("no date here") is None
        assert extract_invoice_date("no date here") == date.today()


class TestExtractFromFragments:

    def test_full_invoice(self):
        invoice = extract_from_fragments(pages_from_lines(INVOICE_LINES))
        assert invoice.invoice_number == "GLR2025000123"
        assert invoice.invoice_date == date(2024, 1, 15)
        assert not invoice.date_defaulted
        assert [i.code for i in invoice.line_items] == ["153.01.0042", "153.01.0043"]
        assert invoice.stats.parsed == 2
        assert invoice.warnings == []

    def test_missing_date_is_a_warning(self):
        lines = [l for l in INVOICE_LINES if "Tarihi" not in l]
        invoice = extract_from_fragments(pages_from_lines(lines))
        assert invoice.date_defaulted
        assert invoice.invoice_date == date.today()
        assert "DATE_DEFAULTED" in invoice.warnings

    def test_no_line_items_is_a_warning(self):
        invoice = extract_from_fragments(pages_from_lines(INVOICE_LINES[:3]))
        assert invoice.line_items == []
        assert "NO_LINE_ITEMS_FOUND" in invoice.warnings

    def test_empty_text_is_fatal(self):
        with pytest.raises(ExtractionError) as excinfo:
            extract_from_fragments([])
        assert excinfo.value.stage == "text"
        assert excinfo.value.context["text_length"] == 0

    def test_missing_invoice_number_is_fatal(self):
        pages = pages_from_lines(["Merhaba dünya", "bu bir deneme metnidir"])
        with pytest.raises(ExtractionError) as excinfo:
            extract_from_fragments(pages)
        error = excinfo.value
        assert error.stage == "header"
        assert error.context["first_lines"] == ["Merhaba dünya", "bu bir deneme metnidir"]
        assert error.context["fallbacks_attempted"]
        assert "fatura_no" in error.context["searched_patterns"]
