"""
Report generation, two outputs per invoice:
  1. Structured JSON payload (outcomes + summary)
  2. Human-readable reconciliation report

Automatically classified lines and lines that need manual attention are
always listed separately.
"""

import json
import os
from datetime import datetime, timezone

from models import BOTH_MISSING, NO_MAPPING, ComparisonOutcome, Status


def build_summary(outcomes: list[ComparisonOutcome]) -> dict:
    """Aggregate counts for one invoice (or one run's worth of outcomes)."""
    automatic = [o for o in outcomes if not o.needs_manual_review]
    manual = [o for o in outcomes if o.needs_manual_review]

    def count(status: Status) -> int:
        return sum(1 for o in outcomes if o.status == status)

    return {
        "total_products": len(outcomes),
        "automatic_processed": len(automatic),
        "manual_review_required": len(manual),
        "previously_approved": sum(1 for o in outcomes if o.previously_approved),
        "compliant": count(Status.COMPLIANT),
        "warnings": count(Status.WARNING),
        "refunds_required": count(Status.REFUND_REQUIRED),
        "pending_manual_review": count(Status.PENDING_MANUAL_REVIEW),
        "total_refund_amount": round(sum(o.refund_amount for o in outcomes), 2),
        "products_with_mapping": sum(1 for o in outcomes if o.stock_mapping is not None),
        "products_with_price_a": sum(1 for o in outcomes if o.match_a is not None),
        "products_with_price_b": sum(1 for o in outcomes if o.match_b is not None),
        "products_with_special_limit": sum(1 for o in outcomes if o.special_limit_applied),
        "manual_review_breakdown": {
            NO_MAPPING: sum(1 for o in manual if o.reason == NO_MAPPING),
            BOTH_MISSING: sum(1 for o in manual if o.reason == BOTH_MISSING),
        },
    }


def build_json_payload(result: dict) -> dict:
    """Build the structured decision payload for one reconciled invoice."""
    invoice = result["invoice"]
    outcomes = result["outcomes"]
    return {
        "invoice_number": invoice.invoice_number,
        "invoice_date": invoice.invoice_date.isoformat(),
        "invoice_date_defaulted": invoice.date_defaulted,
        "duplicate": result.get("duplicate", False),
        "warnings": list(invoice.warnings),
        "parse_stats": invoice.stats.to_dict(),
        "summary": result["summary"],
        "automatic": [o.to_dict() for o in outcomes if not o.needs_manual_review],
        "manual_review": [o.to_dict() for o in outcomes if o.needs_manual_review],
        "generated_at": datetime.now(timezone.utc).isoformat(),
    }


def _money(value: float | None) -> str:
    return "-" if value is None else f"₺{value:,.2f}"


def build_reconciliation_report(result: dict) -> str:
    """Plain text report a reviewer can read top to bottom."""
    invoice = result["invoice"]
    outcomes = result["outcomes"]
    summary = result["summary"]
    stats = invoice.stats

    lines = []
    lines.append("=" * 70)
    lines.append(f"PRICE RECONCILIATION — Invoice {invoice.invoice_number}")
    lines.append("=" * 70)
    date_note = " (not found on invoice, defaulted)" if invoice.date_defaulted else ""
    lines.append(f"Invoice date: {invoice.invoice_date.isoformat()}{date_note}")
    if result.get("duplicate"):
        lines.append("NOTE: this invoice number was already processed in an earlier run.")
    if invoice.warnings:
        lines.append(f"Extraction notes: {', '.join(invoice.warnings)}")
    lines.append("")

    lines.append("EXTRACTION:")
    lines.append(f"  Lines scanned: {stats.lines_scanned}, product codes found: {stats.codes_found}")
    lines.append(f"  Parsed: {stats.parsed}, failed: {stats.failed}, "
                 f"multi-line recovered: {stats.multiline_recovered}")
    if stats.tiers:
        tiers = ", ".join(f"{tier}: {n}" for tier, n in sorted(stats.tiers.items()))
        lines.append(f"  Code tiers: {tiers}")
    lines.append("")

    automatic = [o for o in outcomes if not o.needs_manual_review]
    manual = [o for o in outcomes if o.needs_manual_review]

    lines.append(f"AUTOMATICALLY CLASSIFIED ({len(automatic)}):")
    if not automatic:
        lines.append("  (none)")
    for o in automatic:
        item = o.line_item
        lines.append(f"  [{o.status.value}] {item.code} {item.name} — "
                     f"{item.quantity:g} {item.unit} x {_money(item.unit_price)} = {_money(item.total)}")
        if o.previously_approved:
            lines.append("      Previously approved by a reviewer; rules not re-evaluated.")
            continue
        rule_a = f"A limit {_money(o.threshold_a)}"
        if o.special_limit_applied:
            rule_a += " (special limit)"
        if o.violated_a:
            rule_a += " VIOLATED"
        rule_b = f"B limit {_money(o.threshold_b)}" + (" VIOLATED" if o.violated_b else "")
        lines.append(f"      {rule_a}; {rule_b}")
        if o.status == Status.REFUND_REQUIRED:
            lines.append(f"      Refund: {_money(o.refund_amount)}")
    lines.append("")

    lines.append(f"NEEDS MANUAL ATTENTION ({len(manual)}):")
    if not manual:
        lines.append("  (none)")
    for o in manual:
        item = o.line_item
        reason = "no catalog mapping" if o.reason == NO_MAPPING else "both reference prices missing"
        lines.append(f"  {item.code} {item.name} — {_money(item.unit_price)} ({reason})")
        if o.match and o.match.suggestions:
            lines.append(f"      Possible matches: {', '.join(o.match.suggestions)}")
    lines.append("")

    lines.append("SUMMARY:")
    lines.append(f"  Compliant: {summary['compliant']}, refund required: {summary['refunds_required']}, "
                 f"pending review: {summary['pending_manual_review']}")
    lines.append(f"  Previously approved: {summary['previously_approved']}")
    breakdown = summary["manual_review_breakdown"]
    lines.append(f"  Pending by reason: no mapping {breakdown[NO_MAPPING]}, "
                 f"both prices missing {breakdown[BOTH_MISSING]}")
    lines.append(f"  Total refund: {_money(summary['total_refund_amount'])}")

    return "\n".join(lines)


def save_outputs(invoice_name: str, json_payload: dict, report: str, output_dir: str = "output") -> list[str]:
    """Save both outputs to files. Returns the written paths."""
    os.makedirs(output_dir, exist_ok=True)

    base = os.path.join(output_dir, invoice_name)
    decision_path = f"{base}_decision.json"
    report_path = f"{base}_report.txt"

    with open(decision_path, "w", encoding="utf-8") as f:
        json.dump(json_payload, f, indent=2, ensure_ascii=False)

    with open(report_path, "w", encoding="utf-8") as f:
        f.write(report)

    return [decision_path, report_path]
