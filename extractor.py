"""
Invoice text extraction.

Turns a PDF text layer into ordered lines, then recovers the header
(invoice number and date) and hands the lines to the line-item parser.

Input is positioned text: words with x/y placement, read from the PDF
with pdfplumber or from a pre-extracted JSON dump. Lines are rebuilt by
position rather than trusting the PDF's own text order, which is
unreliable for e-invoice tables.
"""

import json
import logging
import re
from datetime import date
from functools import cmp_to_key

import pdfplumber

from config import DEFAULT_LINE_TOLERANCE, DEFAULT_MAX_PARSE_ATTEMPTS
from line_parser import parse_line_items
from models import ExtractedInvoice, ExtractionError, PositionedFragment

logger = logging.getLogger(__name__)

# PDF points per layout unit. The line tolerance is expressed in layout units.
PDF_UNIT_SCALE = 4.5

MIN_USABLE_CHARS = 10

# ── Header Patterns ─────────────────────────────────────────────────
# Most specific first. The first match with a token of 4+ chars wins.
_TOKEN = r"([A-Z0-9\-_/.]+)"

INVOICE_NUMBER_PATTERNS = [
    ("fatura_no", re.compile(r"Fatura\s+No[:.]\s*" + _TOKEN, re.IGNORECASE)),
    ("invoice_no", re.compile(r"Invoice\s+No[:.]\s*" + _TOKEN, re.IGNORECASE)),
    ("fatura_numarasi", re.compile(r"Fatura\s+Numarası[:.]\s*" + _TOKEN, re.IGNORECASE)),
    ("belge_no", re.compile(r"Belge\s+No[:.]\s*" + _TOKEN, re.IGNORECASE)),
    ("seri_no", re.compile(r"Seri\s*No[:.]\s*" + _TOKEN, re.IGNORECASE)),
    ("no", re.compile(r"No[:.]\s*([A-Z0-9\-_/.]{4,})", re.IGNORECASE)),
    ("f_no", re.compile(r"F\.?\s*No[:.]\s*" + _TOKEN, re.IGNORECASE)),
    ("s_no", re.compile(r"S\.?\s*No[:.]\s*" + _TOKEN, re.IGNORECASE)),
    ("prefixed", re.compile(r"\b([A-Z]{2,}[0-9]{4,})\b")),
    ("long_prefixed", re.compile(r"\b([A-Z]{3}[0-9]{10,})\b")),
    ("inv", re.compile(r"\b(INV[0-9]+)\b", re.IGNORECASE)),
    ("numeric", re.compile(r"\b([0-9]{8,})\b")),
    ("receipt", re.compile(r"(?:Fiş|Makbuz|Dekont)[:\s]*([A-Z0-9\-_/.]{4,})", re.IGNORECASE)),
    ("reference", re.compile(r"(?:Referans|Ref)[:\s]*([A-Z0-9\-_/.]{4,})", re.IGNORECASE)),
]

# Uppercase runs only: lowercase text on an invoice is prose, not a document number
_FALLBACK_TOKEN = re.compile(r"[A-Z0-9\-_/.]{6,}")

_DATE = r"(\d{1,2}[/\-.]\d{1,2}[/\-.]\d{4})"

DATE_PATTERNS = [
    re.compile(r"Fatura\s+Tarihi[:.]\s*" + _DATE, re.IGNORECASE),
    re.compile(r"İrsaliye\s+Tarihi[:.]\s*" + _DATE, re.IGNORECASE),
    re.compile(r"Tarih[:.]\s*" + _DATE, re.IGNORECASE),
    re.compile(r"Date[:.]\s*" + _DATE, re.IGNORECASE),
    re.compile(r"Invoice\s+Date[:.]\s*" + _DATE, re.IGNORECASE),
    re.compile(r"(\d{2}-\d{2}-\d{4})"),
    re.compile(r"(\d{2}\.\d{2}\.\d{4})"),
    re.compile(r"(\d{2}/\d{2}/\d{4})"),
    re.compile(r"\b" + _DATE + r"\b"),
]


# ── Text Layer ──────────────────────────────────────────────────────

def load_fragments(pdf_path: str) -> list[list[PositionedFragment]]:
    """Read positioned words from every page of a PDF."""
    pages = []
    with pdfplumber.open(pdf_path) as pdf:
        for page in pdf.pages:
            pages.append(fragments_from_page(page))
    return pages


def fragments_from_page(page) -> list[PositionedFragment]:
    """
    Convert one pdfplumber page's words into fragments in layout units.

    Pages without word positions fall back to the page text, one
    fragment per line.
    """
    words = page.extract_words() or []
    if not words:
        text = page.extract_text() or ""
        if text.strip():
            logger.info("No word positions on page %s, using page text lines", getattr(page, "page_number", "?"))
        return [PositionedFragment(text=line, x=0.0, y=float(i)) for i, line in enumerate(text.split("\n"))
                if line.strip()]

    fragments = []
    for word in words:
        text = word.get("text", "")
        if not text:
            continue
        fragments.append(PositionedFragment(
            text=text,
            x=float(word["x0"]) / PDF_UNIT_SCALE,
            y=float(word["top"]) / PDF_UNIT_SCALE,
            width=(float(word["x1"]) - float(word["x0"])) / PDF_UNIT_SCALE,
        ))
    return fragments


def load_fragments_json(path: str) -> list[list[PositionedFragment]]:
    """
    Read a pre-extracted text layer.

    Format: {"pages": [[{"text": ..., "x": ..., "y": ..., "width": ...}, ...], ...]}
    """
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    pages = []
    for page in data.get("pages", []):
        pages.append([
            PositionedFragment(
                text=str(item.get("text", "")),
                x=float(item.get("x", 0) or 0),
                y=float(item.get("y", 0) or 0),
                width=float(item.get("width", 0) or 0),
            )
            for item in page
        ])
    return pages


# ── Text Reconstruction ─────────────────────────────────────────────

def reconstruct_text(pages: list[list[PositionedFragment]],
                     tolerance: float = DEFAULT_LINE_TOLERANCE) -> str:
    """
    Merge positioned fragments into newline-separated lines.

    Fragments are sorted top to bottom; fragments whose y differs by less
    than `tolerance` are on the same line and ordered left to right.
    Same-line fragments are joined with a single space. Nothing is
    dropped here, including blank lines.
    """
    def compare(a: PositionedFragment, b: PositionedFragment) -> float:
        dy = a.y - b.y
        if abs(dy) < tolerance:
            return a.x - b.x
        return dy

    lines = []
    for fragments in pages or []:
        ordered = sorted(fragments, key=cmp_to_key(compare))
        current = []
        last_y = None
        for fragment in ordered:
            if last_y is not None and abs(fragment.y - last_y) >= tolerance:
                lines.append(" ".join(current))
                current = []
            current.append(fragment.text)
            last_y = fragment.y
        if current:
            lines.append(" ".join(current))

    return "\n".join(lines)


def _usable_lines(text: str) -> list[str]:
    return [line.strip() for line in text.split("\n") if line.strip()]


# ── Header ──────────────────────────────────────────────────────────

def extract_invoice_number(text: str) -> str | None:
    """
    Find the invoice number.

    Label patterns are tried most specific first, each against every
    line. If none yields a 4+ char token, any 6+ char token holding both
    a letter and a digit is accepted.
    """
    lines = _usable_lines(text)

    for name, pattern in INVOICE_NUMBER_PATTERNS:
        for line in lines:
            m = pattern.search(line)
            if m and m.group(1) and len(m.group(1).strip()) >= 4:
                number = m.group(1).strip()
                logger.debug("Invoice number %r matched by %s in %r", number, name, line)
                return number

    for line in lines:
        for candidate in _FALLBACK_TOKEN.findall(line):
            if re.search(r"[0-9]", candidate) and re.search(r"[A-Z]", candidate):
                logger.info("Invoice number %r taken from fallback scan of %r", candidate, line)
                return candidate

    logger.warning("No invoice number found (%d chars of text)", len(text))
    return None


def find_invoice_date(text: str) -> date | None:
    """Return the first date-shaped token that parses as DD/MM/YYYY, or None."""
    lines = _usable_lines(text)

    for pattern in DATE_PATTERNS:
        for line in lines:
            m = pattern.search(line)
            if not m:
                continue
            day, month, year = re.split(r"[/\-.]", m.group(1).strip())
            try:
                return date(int(year), int(month), int(day))
            except ValueError:
                logger.debug("Could not parse date %r in %r", m.group(1), line)
    return None


def extract_invoice_date(text: str) -> date:
    """Invoice date, defaulting to today when nothing parses."""
    found = find_invoice_date(text)
    if found is None:
        logger.warning("No valid invoice date found, using current date")
        return date.today()
    return found


# ── Invoice ─────────────────────────────────────────────────────────

def extract_from_fragments(pages: list[list[PositionedFragment]],
                           tolerance: float = DEFAULT_LINE_TOLERANCE,
                           max_parse_attempts: int = DEFAULT_MAX_PARSE_ATTEMPTS) -> ExtractedInvoice:
    """
    Run text reconstruction, header extraction and line-item parsing.

    Raises ExtractionError when no usable text or no invoice number can
    be recovered. A missing date or an invoice without parseable lines
    is not fatal; both are reported as warnings.
    """
    warnings = []
    text = reconstruct_text(pages, tolerance)

    if len(re.sub(r"\s", "", text)) < MIN_USABLE_CHARS:
        raise ExtractionError("text", "No usable text could be extracted", {
            "pages": len(pages or []),
            "fragments": sum(len(p) for p in pages or []),
            "text_length": len(text),
            "suggestion": "The PDF may be image-based, password protected or corrupted.",
        })

    invoice_number = extract_invoice_number(text)
    if not invoice_number:
        raise ExtractionError("header", "No invoice number found", {
            "text_length": len(text),
            "first_lines": _usable_lines(text)[:10],
            "text_sample": text[:800],
            "searched_patterns": [name for name, _ in INVOICE_NUMBER_PATTERNS],
            "fallbacks_attempted": ["alphanumeric_token_scan"],
        })

    invoice_date = find_invoice_date(text)
    date_defaulted = invoice_date is None
    if date_defaulted:
        invoice_date = extract_invoice_date(text)
        warnings.append("DATE_DEFAULTED")

    items, stats = parse_line_items(text, max_parse_attempts)
    if not items:
        warnings.append("NO_LINE_ITEMS_FOUND")
    if stats.attempt_limit_reached:
        warnings.append("PARSE_ATTEMPT_LIMIT_REACHED")

    return ExtractedInvoice(
        invoice_number=invoice_number,
        invoice_date=invoice_date,
        line_items=items,
        stats=stats,
        text=text,
        date_defaulted=date_defaulted,
        warnings=warnings,
    )


def load_pages(path: str) -> list[list[PositionedFragment]]:
    """Fragments from a PDF, or from a .json text-layer dump."""
    if path.lower().endswith(".json"):
        return load_fragments_json(path)
    return load_fragments(path)
