"""
Line-item parsing for reconstructed invoice text.

A line is a product line only if it carries a product code. Codes are
found by an ordered list of strategies, strongest first:

  1. primary        the supplier's structured code (153.01.NNNN)
  2. dotted         looser dotted digit groups, minus invoice numbers,
                    dates and long numeric runs
  3. plain_number   a bare 2-4 digit token, accepted only with product
                    context and nothing suggesting quantity/price/date

Once a code is found the same text is tokenized for quantity + unit,
currency-marked prices and the product name. Product descriptions that
wrap are recovered by retrying with the next one and two lines appended.
"""

import logging
import re
from collections import Counter
from dataclasses import dataclass

from config import DEFAULT_MAX_PARSE_ATTEMPTS
from models import LineItem, ParseStats
from reference_data import (
    BARE_UNIT_NAMES, BRAND_ANNOTATIONS, DEFAULT_UNIT, INVOICE_CAPTIONS,
    INVOICE_NUMBER_PREFIXES, PLAIN_CODE_YEAR_RANGE, PRODUCT_VOCABULARY,
    QUANTITY_UNITS,
)

logger = logging.getLogger(__name__)

# Lines are combined with up to this many following lines
MAX_LINE_SPAN = 3


@dataclass(frozen=True)
class CodeMatch:
    code: str
    tier: str
    start: int


# ── Code Detection ──────────────────────────────────────────────────

PRIMARY_CODE = re.compile(r"(?<![\d.])(153\.01\.\d{4})(?!\d)")

DOTTED_CODES = [
    ("dotted_extended", re.compile(r"(153\.01\.\d{3,5})")),
    ("dotted_3_2_3", re.compile(r"(\d{3}\.\d{2}\.\d{3,4})")),
    ("dotted_flexible", re.compile(r"(\d{2,3}\.\d{1,2}\.\d{3,4})")),
]

PLAIN_NUMBER = re.compile(r"\b(\d{2,4})\b")

_INVOICE_NUMBER_SHAPE = re.compile(
    r"^(?:%s)\d+" % "|".join(INVOICE_NUMBER_PREFIXES), re.IGNORECASE)
_DATE_SHAPE = re.compile(r"^\d{2}[./\-]\d{2}[./\-]\d{2,4}$")
_DATE_ANYWHERE = re.compile(r"\d{2}[./\-]\d{2}[./\-]")
_ROW_ORDINAL = re.compile(r"^\s*\d+\s+")

_UNIT_AFTER = re.compile(r"\b(?:kg|adet|lt|gram|pc|litre)\b", re.IGNORECASE)
_CURRENCY_AFTER = re.compile(r"\b(?:tl|lira)\b|₺", re.IGNORECASE)
_PRICE_BEFORE = re.compile(r"fiyat|tutar|toplam", re.IGNORECASE)
_DATE_BEFORE = re.compile(r"tarih|date", re.IGNORECASE)
_PRODUCT_CONTEXT = re.compile("|".join(PRODUCT_VOCABULARY), re.IGNORECASE)


def is_excluded_code(code: str) -> bool:
    """Tokens that look like invoice numbers, dates or long numeric runs."""
    if _INVOICE_NUMBER_SHAPE.match(code) or len(code) > 12:
        return True
    if _DATE_SHAPE.match(code):
        return True
    return code.isdigit() and len(code) > 8


def primary_code(line: str) -> CodeMatch | None:
    m = PRIMARY_CODE.search(line)
    if m:
        return CodeMatch(m.group(1), "primary", m.start(1))
    return None


def dotted_code(line: str) -> CodeMatch | None:
    for tier, pattern in DOTTED_CODES:
        for m in pattern.finditer(line):
            if not is_excluded_code(m.group(1)):
                return CodeMatch(m.group(1), tier, m.start(1))
    return None


def plain_number_code(line: str) -> CodeMatch | None:
    """
    Accept a bare 2-4 digit code only under strict gating.

    Rejected when the text around it reads as a quantity, a price or a
    date, when it could be a year, when it is tiny, or when it is the
    row ordinal. Accepted only on lines mentioning a known product or
    when it sits near the start of the line.
    """
    numbered_line = bool(_ROW_ORDINAL.match(line))
    has_product_context = bool(_PRODUCT_CONTEXT.search(line))
    line_has_date = bool(_DATE_ANYWHERE.search(line))

    for m in PLAIN_NUMBER.finditer(line):
        code = m.group(1)
        start = m.start(1)
        value = int(code)
        before = line[max(0, start - 10):start]
        after = line[start + len(code):start + len(code) + 10]

        if _UNIT_AFTER.search(after):
            continue
        if _CURRENCY_AFTER.search(after) or _PRICE_BEFORE.search(before):
            continue
        if _DATE_BEFORE.search(before) or line_has_date:
            continue
        if PLAIN_CODE_YEAR_RANGE[0] <= value <= PLAIN_CODE_YEAR_RANGE[1]:
            continue
        if value < 10:
            continue
        if numbered_line and start < 5:
            continue

        at_line_start = start < 20 and not numbered_line
        if has_product_context or at_line_start:
            return CodeMatch(code, "plain_number", start)
    return None


CODE_STRATEGIES = [primary_code, dotted_code, plain_number_code]


def detect_product_code(line: str) -> CodeMatch | None:
    """First code accepted by the strategies, in priority order."""
    for strategy in CODE_STRATEGIES:
        found = strategy(line)
        if found:
            return found
    return None


# ── Quantity and Price ──────────────────────────────────────────────

_UNITS = "|".join(QUANTITY_UNITS)

QUANTITY_PATTERNS = [
    re.compile(r"(\d+(?:[,.]\d+)?)\s*(%s)\b" % _UNITS, re.IGNORECASE),
    re.compile(r"(\d+(?:[,.]\d+)?)\s*(%s)" % _UNITS, re.IGNORECASE),
]

PRICE_PATTERNS = [
    re.compile(r"(?<![\d.,])(\d{1,3}(?:\.\d{3})*(?:,\d{1,4})?)\s*(?:TL|₺)"),   # 1.234,56 TL
    re.compile(r"(?<![\d.,])(\d+(?:\.\d{3})*(?:,\d{2})?)\s*(?:TL|₺)"),         # 12867,75 TL
    re.compile(r"(?:TL|₺)\s*(\d{1,3}(?:\.\d{3})*(?:,\d{1,4})?)(?![\d,])"),      # TL 1.234,56
]


def extract_quantity(text: str) -> tuple[float, str, str]:
    """
    Find the first <number><unit> pair.

    Returns (quantity, unit, text with the pair removed). Defaults to one
    piece when no pair is present.
    """
    for pattern in QUANTITY_PATTERNS:
        m = pattern.search(text)
        if m:
            quantity = float(m.group(1).replace(",", "."))
            unit = m.group(2).upper()
            remaining = (text[:m.start()] + " " + text[m.end():]).strip()
            return quantity, unit, remaining
    return 1.0, DEFAULT_UNIT, text


def parse_amount(token: str) -> float:
    """Parse a Turkish-format amount: '.' groups thousands, ',' marks decimals."""
    digits = re.sub(r"[^\d,.]", "", token)
    digits = digits.replace(".", "").replace(",", ".")
    return float(digits)


def find_price_tokens(text: str) -> list[str]:
    """
    All currency-marked amounts, left to right.

    Every pattern is scanned; where two matches overlap, the one from
    the earlier pattern is kept.
    """
    spans = []
    for pattern in PRICE_PATTERNS:
        for m in pattern.finditer(text):
            if any(m.start() < end and start < m.end() for start, end, _ in spans):
                continue
            spans.append((m.start(), m.end(), m.group(0)))
    return [token for _, _, token in sorted(spans)]


def assign_prices(tokens: list[str], quantity: float) -> tuple[float, float]:
    """
    Map price tokens to (unit_price, total).

    One token is the line total when more than one unit was bought and
    the unit price otherwise. With two or more, the first is the unit
    price and the last the total; anything between is ignored.
    """
    if not tokens:
        return 0.0, 0.0

    if len(tokens) == 1:
        price = parse_amount(tokens[0])
        if quantity > 1:
            return price / quantity, price
        return price, price

    return parse_amount(tokens[0]), parse_amount(tokens[-1])


# ── Name Cleanup ────────────────────────────────────────────────────

def clean_product_name(text: str) -> str:
    """Strip ordinals, brand annotations, tax fragments and trailing punctuation."""
    name = text
    for brand in BRAND_ANNOTATIONS:
        name = re.sub(r"\s*\([^)]*%s[^)]*\)" % brand, " ", name, flags=re.IGNORECASE)
    name = re.sub(r"\s*\([A-Z&\s]{3,}\)", " ", name)
    name = re.sub(r"\s*%\s*\d+[,.]?\d*\s*", " ", name)
    for caption in INVOICE_CAPTIONS:
        name = re.sub(r"\s*%s\s*" % re.escape(caption), " ", name, flags=re.IGNORECASE)

    name = name.strip()
    name = re.sub(r"^\d+\s*", "", name)
    name = re.sub(r"^[\s|]+", "", name)
    name = re.sub(r"[\s,;:.%\-|]+$", "", name)
    name = re.sub(r"\s+", " ", name)
    return name.strip()


def is_valid_name(name: str) -> bool:
    if not name or len(name) < 3:
        return False
    if name.lower() in BARE_UNIT_NAMES:
        return False
    return not re.fullmatch(r"[\s\-|,.]+", name)


# ── Line Parsing ────────────────────────────────────────────────────

def parse_product_line(line: str) -> LineItem | None:
    """
    Parse one (possibly combined) line into a line item.

    Returns None when the line has no product code or the candidate
    fails validation. Malformed amounts raise ValueError.
    """
    found = detect_product_code(line)
    if not found:
        return None

    text = _ROW_ORDINAL.sub("", line, count=1).strip()
    text = text.replace(found.code, " ", 1).strip()

    quantity, unit, text = extract_quantity(text)

    tokens = find_price_tokens(text)
    unit_price, total = assign_prices(tokens, quantity)
    for token in tokens:
        text = text.replace(token, " ", 1)

    name = clean_product_name(text)

    if not is_valid_name(name):
        logger.debug("Rejected %s: invalid name %r", found.code, name)
        return None
    if not unit_price > 0:
        logger.debug("Rejected %s: invalid unit price %r", found.code, unit_price)
        return None
    if not quantity > 0:
        logger.debug("Rejected %s: invalid quantity %r", found.code, quantity)
        return None

    return LineItem(
        code=found.code,
        name=name,
        quantity=quantity,
        unit=unit,
        unit_price=unit_price,
        total=total,
        source_line=line,
    )


def parse_line_items(text: str,
                     max_attempts: int = DEFAULT_MAX_PARSE_ATTEMPTS) -> tuple[list[LineItem], ParseStats]:
    """
    Parse every product line in the reconstructed text.

    Each line with a detected code is parsed alone, then joined with the
    next line, then with the next two. A candidate that fails all three
    is dropped and counted; it never stops the remaining lines. Parsing
    stops attempting once `max_attempts` parses have been tried.
    """
    lines = [line.strip() for line in text.split("\n") if line.strip()]
    stats = ParseStats(lines_scanned=len(lines))
    tiers = Counter()

    candidates = []
    for index, line in enumerate(lines):
        found = detect_product_code(line)
        if found:
            candidates.append((index, found))
            tiers[found.tier] += 1
    stats.codes_found = len(candidates)
    stats.tiers = dict(tiers)

    items = []
    for index, found in candidates:
        item = None
        for span in range(1, MAX_LINE_SPAN + 1):
            if index + span > len(lines):
                break
            if stats.attempts >= max_attempts:
                stats.attempt_limit_reached = True
                break
            stats.attempts += 1

            combined = " ".join(lines[index:index + span])
            try:
                item = parse_product_line(combined)
            except (ValueError, ArithmeticError) as exc:
                logger.warning("Parse error for code %s in %r: %s", found.code, combined, exc)
                item = None

            if item:
                if span > 1:
                    stats.multiline_recovered += 1
                break

        if item:
            items.append(item)
            stats.parsed += 1
        else:
            stats.failed += 1
            logger.info("Failed to parse line %d (code %s): %r", index + 1, found.code, lines[index])

    if stats.attempt_limit_reached:
        logger.warning("Parse attempt limit (%d) reached; %d candidate(s) left unparsed",
                       max_attempts, stats.failed)

    logger.info("Parsed %d/%d product lines (%d multi-line, %d failed)",
                stats.parsed, stats.codes_found, stats.multiline_recovered, stats.failed)
    return items, stats
