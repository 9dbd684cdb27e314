"""
Typed records passed between pipeline stages.

Every stage takes and returns these instead of ad hoc dicts, and the
constructors enforce the invariants a downstream stage relies on
(positive prices, bounded confidence, non-negative refunds).
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum


class Status(str, Enum):
    COMPLIANT = "COMPLIANT"
    # Kept for compatibility with stored results. No rule produces it:
    # every violation maps to REFUND_REQUIRED.
    WARNING = "WARNING"
    REFUND_REQUIRED = "REFUND_REQUIRED"
    PENDING_MANUAL_REVIEW = "PENDING_MANUAL_REVIEW"


class System(str, Enum):
    """Naming systems a product name can come from."""
    ORIGIN = "origin"
    LIST_A = "listA"
    LIST_B = "listB"
    ALTERNATE = "alternate"


# Manual-review reasons
NO_MAPPING = "no_mapping"
BOTH_MISSING = "both_missing"


class ExtractionError(Exception):
    """
    Fatal extraction failure for a whole invoice.

    stage: "text" (no usable text) or "header" (no invoice number)
    context: diagnostics for debugging malformed inputs
    """

    def __init__(self, stage: str, reason: str, context: dict | None = None):
        super().__init__(f"[{stage}] {reason}")
        self.stage = stage
        self.reason = reason
        self.context = context or {}


@dataclass(frozen=True)
class PositionedFragment:
    text: str
    x: float
    y: float
    width: float = 0.0


@dataclass
class LineItem:
    code: str
    name: str
    quantity: float
    unit: str
    unit_price: float
    total: float
    source_line: str = ""

    def __post_init__(self):
        if self.unit_price is None or not self.unit_price > 0:
            raise ValueError(f"unit price must be positive, got {self.unit_price!r}")
        if self.quantity is None or not self.quantity > 0:
            raise ValueError(f"quantity must be positive, got {self.quantity!r}")
        if self.total is None or not self.total > 0:
            self.total = self.unit_price * self.quantity


@dataclass(frozen=True)
class AliasEntry:
    system: System
    raw_name: str
    canonical_key: str


@dataclass(frozen=True)
class ReferencePriceA:
    product_name: str
    list_price: float
    effective_date: str


@dataclass(frozen=True)
class ReferencePriceB:
    product_name: str
    max_price: float
    observed_date: str


@dataclass(frozen=True)
class SpecialLimit:
    product_name: str
    fixed_max_price: float
    active: bool = True


@dataclass(frozen=True)
class StockMapping:
    supplier_code: str
    origin_code: str | None
    origin_name: str


@dataclass(frozen=True)
class MatchResult:
    canonical_key: str | None
    confidence: float
    strategy: str
    suggestions: tuple = ()

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence!r}")
        if len(self.suggestions) > 5:
            object.__setattr__(self, "suggestions", tuple(self.suggestions[:5]))

    @property
    def matched(self) -> bool:
        return self.canonical_key is not None


@dataclass
class ComparisonOutcome:
    line_item: LineItem
    canonical_name: str
    status: Status
    match: MatchResult | None = None
    match_a: ReferencePriceA | None = None
    match_b: ReferencePriceB | None = None
    threshold_a: float | None = None
    threshold_b: float | None = None
    violated_a: bool = False
    violated_b: bool = False
    refund_amount: float = 0.0
    special_limit_applied: bool = False
    previously_approved: bool = False
    stock_mapping: StockMapping | None = None
    reason: str | None = None

    def __post_init__(self):
        if self.refund_amount < 0:
            raise ValueError(f"refund amount must be non-negative, got {self.refund_amount!r}")
        if self.status != Status.REFUND_REQUIRED and self.refund_amount != 0:
            raise ValueError("refund amount must be zero unless a refund is required")

    @property
    def needs_manual_review(self) -> bool:
        return self.status == Status.PENDING_MANUAL_REVIEW

    def to_dict(self) -> dict:
        """Serializable view with the field names the outputs use."""
        item = self.line_item
        return {
            "productCode": item.code,
            "productName": item.name,
            "unitPrice": item.unit_price,
            "quantity": item.quantity,
            "unit": item.unit,
            "total": item.total,
            "canonicalName": self.canonical_name,
            "matchedA": self.match_a.product_name if self.match_a else None,
            "matchedB": self.match_b.product_name if self.match_b else None,
            "thresholdA": self.threshold_a,
            "thresholdB": self.threshold_b,
            "violatedA": self.violated_a,
            "violatedB": self.violated_b,
            "refundAmount": self.refund_amount,
            "status": self.status.value,
            "reason": self.reason,
            "matchConfidence": self.match.confidence if self.match else None,
            "matchStrategy": self.match.strategy if self.match else None,
            "suggestions": list(self.match.suggestions) if self.match else [],
        }


@dataclass
class ParseStats:
    lines_scanned: int = 0
    codes_found: int = 0
    parsed: int = 0
    failed: int = 0
    multiline_recovered: int = 0
    attempts: int = 0
    attempt_limit_reached: bool = False
    tiers: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "lines_scanned": self.lines_scanned,
            "codes_found": self.codes_found,
            "parsed": self.parsed,
            "failed": self.failed,
            "multiline_recovered": self.multiline_recovered,
            "attempts": self.attempts,
            "attempt_limit_reached": self.attempt_limit_reached,
            "tiers": dict(self.tiers),
        }


@dataclass
class ExtractedInvoice:
    invoice_number: str
    invoice_date: date
    line_items: list
    stats: ParseStats
    text: str = ""
    date_defaulted: bool = False
    warnings: list = field(default_factory=list)
