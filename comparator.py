"""
Price rule evaluation.

Each invoice line is checked against two independent references:

  List A (discount rule):  unit price <= list price x 0.32
                           or <= the fixed limit when a list A product
                           has an active special limit
  List B (markup rule):    unit price <= max price x 1.10

Either violation means a refund. The refund is computed from the B
threshold when B is violated, else from the A threshold. Lines with no
resolvable reference price go to manual review; lines a human already
adjudicated for the same invoice are compliant without re-evaluation.
"""

from models import (
    BOTH_MISSING, NO_MAPPING, ComparisonOutcome, LineItem, MatchResult,
    ReferencePriceA, ReferencePriceB, SpecialLimit, Status, StockMapping,
    System,
)
from reference_data import LIST_A_DISCOUNT_FACTOR, LIST_B_MARKUP_FACTOR


def list_a_threshold(price_a: ReferencePriceA | None,
                     special_limit: SpecialLimit | None = None) -> float | None:
    """
    Maximum allowed unit price under the list A rule.

    Only products priced in list A are checked; for those an active
    special limit replaces the discount rule.
    """
    if price_a is None:
        return None
    if special_limit is not None and special_limit.active:
        return special_limit.fixed_max_price
    return price_a.list_price * LIST_A_DISCOUNT_FACTOR


def list_b_threshold(price_b: ReferencePriceB | None) -> float | None:
    """Maximum allowed unit price under the list B rule."""
    if price_b is None:
        return None
    return price_b.max_price * LIST_B_MARKUP_FACTOR


def compute_refund(item: LineItem, threshold: float) -> float:
    """Overpayment against a threshold, never negative."""
    return max(0.0, round(item.total - threshold * item.quantity, 2))


def evaluate_line_item(item: LineItem, canonical_name: str,
                       price_a: ReferencePriceA | None = None,
                       price_b: ReferencePriceB | None = None,
                       special_limit: SpecialLimit | None = None,
                       match: MatchResult | None = None,
                       stock_mapping: StockMapping | None = None,
                       previously_approved: bool = False,
                       unmapped: bool = False) -> ComparisonOutcome:
    """
    Classify one line item.

    Returns a ComparisonOutcome with status:
        COMPLIANT               no rule violated, or previously approved
        REFUND_REQUIRED         at least one rule violated
        PENDING_MANUAL_REVIEW   no reference price resolvable; reason is
                                "no_mapping" when the name never resolved
                                to a product (`unmapped`), else
                                "both_missing"
    """
    common = {
        "line_item": item,
        "canonical_name": canonical_name,
        "match": match,
        "stock_mapping": stock_mapping,
    }

    if previously_approved:
        return ComparisonOutcome(status=Status.COMPLIANT, previously_approved=True, **common)

    if price_a is None or (special_limit is not None and not special_limit.active):
        special_limit = None

    threshold_a = list_a_threshold(price_a, special_limit)
    threshold_b = list_b_threshold(price_b)

    if threshold_a is None and threshold_b is None:
        return ComparisonOutcome(
            status=Status.PENDING_MANUAL_REVIEW,
            reason=NO_MAPPING if unmapped else BOTH_MISSING,
            **common,
        )

    violated_a = threshold_a is not None and item.unit_price > threshold_a
    violated_b = threshold_b is not None and item.unit_price > threshold_b

    refund = 0.0
    if violated_b:
        refund = compute_refund(item, threshold_b)
    elif violated_a:
        refund = compute_refund(item, threshold_a)

    status = Status.REFUND_REQUIRED if (violated_a or violated_b) else Status.COMPLIANT

    return ComparisonOutcome(
        status=status,
        match_a=price_a,
        match_b=price_b,
        threshold_a=threshold_a,
        threshold_b=threshold_b,
        violated_a=violated_a,
        violated_b=violated_b,
        refund_amount=refund,
        special_limit_applied=special_limit is not None,
        **common,
    )


# ── Reference Indexes ───────────────────────────────────────────────

def build_price_index(prices: list, matcher, system: System) -> dict:
    """
    Key reference prices by canonical key.

    Each catalog name is resolved once per run through the matcher (or
    falls back to its normalized form). The first row for a key wins.
    """
    index = {}
    for price in prices:
        key = matcher.find_match(price.product_name, system)
        if key and key not in index:
            index[key] = price
    return index


def build_special_limit_index(limits: list[SpecialLimit], normalize) -> dict:
    """Active special limits keyed by normalized product name."""
    return {normalize(limit.product_name): limit for limit in limits if limit.active}
