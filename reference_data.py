"""
Static vocabularies and rule factors.

Invoices come from Turkish produce suppliers, so unit words, labels and
brand annotations below are the ones seen on those e-invoices. Reference
list A is a discount-based list price catalog, reference list B a
market maximum-price catalog.
"""

# ── Price Rules ─────────────────────────────────────────────────────
# Invoice unit price may be at most 32% of the list A price (68% discount floor)
LIST_A_DISCOUNT_FACTOR = 0.32
# Invoice unit price may be at most 10% above the list B maximum
LIST_B_MARKUP_FACTOR = 1.10

# ── Matcher Strategy Weights ────────────────────────────────────────
EXACT_CONFIDENCE = 1.0
ALIAS_CONFIDENCE = 0.95
NORMALIZED_EXACT_CONFIDENCE = 0.90

SUBSTRING_MIN_SCORE = 0.70
SUBSTRING_WEIGHT = 0.85
WORD_OVERLAP_MIN_SCORE = 0.60
WORD_OVERLAP_WEIGHT = 0.80
EDIT_DISTANCE_MIN_SCORE = 0.50
EDIT_DISTANCE_WEIGHT = 0.75

MAX_SUGGESTIONS = 5
UNMATCHED_SUGGESTION_MIN_SCORE = 30  # thefuzz scale, 0-100

# ── Units ───────────────────────────────────────────────────────────
# Units recognised after a quantity on an invoice line
QUANTITY_UNITS = ["KG", "ADET", "LT", "GRAM", "LITRE", "PC"]
DEFAULT_UNIT = "ADET"

# Names that are nothing but a unit word are parse artifacts
BARE_UNIT_NAMES = {"kg", "adet", "lt", "gram", "litre", "pc", "gr"}

# ── Name Normalization ──────────────────────────────────────────────
FOLD_MAP = {
    "ç": "c", "ğ": "g", "ı": "i", "ö": "o", "ş": "s", "ü": "u",
    "Ç": "c", "Ğ": "g", "İ": "i", "I": "i", "Ö": "o", "Ş": "s", "Ü": "u",
}

UNIT_WORDS = [
    "kg", "gr", "gram", "adet", "lt", "litre", "liter",
    "paket", "pk", "piece", "pcs",
]

QUALITY_WORDS = [
    "fresh", "taze", "organic", "organik", "premium", "kalite", "quality",
]

# ── Line Parsing ────────────────────────────────────────────────────
# A bare 2-4 digit code is only trusted on lines about these products
PRODUCT_VOCABULARY = [
    "domates", "biber", "salata", "ispanak", "kabak", "lahana",
    "karnabahar", "patates", "mantar", "turp", "brokoli", "marul",
    "aysberg", "endivyen",
]

# Supplier brand annotations printed in brackets after the product name
BRAND_ANNOTATIONS = ["ERUST", "GREENADA", "GREENATE", "LIKKO"]

# e-invoice column captions that leak into the name
INVOICE_CAPTIONS = ["KDV Oranı", "İskonto", "Vergi", "Tutar"]

# Invoice numbers start with one of these prefixes
INVOICE_NUMBER_PREFIXES = ["SEN", "TIC", "FAT", "FTR", "INV"]

PLAIN_CODE_YEAR_RANGE = (2020, 2029)
