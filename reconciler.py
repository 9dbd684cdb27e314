"""
Reconciliation orchestrator.

Wires the pipeline linearly per invoice:

  fragments -> text -> header + line items -> name matching
            -> rule evaluation -> classified outcomes + summary

Collaborators (the snapshot store and settings) are passed in; a run
loads its catalogs once through start_run() and the resulting
ReconciliationRun owns the only mutable state (the matcher's memo and
unmatched accumulator).
"""

import logging

from comparator import build_price_index, build_special_limit_index, evaluate_line_item
from config import Settings
from extractor import extract_from_fragments
from matcher import ProductMatcher
from models import ComparisonOutcome, LineItem, PositionedFragment, System
from reference_db import CatalogSnapshot, ReferenceStore
from report import build_summary

logger = logging.getLogger(__name__)


class ReconciliationRun:
    """Read-only catalog snapshot plus the matcher built for one run."""

    def __init__(self, snapshot: CatalogSnapshot, settings: Settings | None = None):
        settings = settings or Settings()
        self.snapshot = snapshot
        self.matcher = ProductMatcher(
            snapshot.product_mappings,
            confidence_threshold=settings.confidence_threshold,
            max_candidates=settings.max_fuzzy_candidates,
        )
        self.index_a = build_price_index(snapshot.reference_a, self.matcher, System.LIST_A)
        self.index_b = build_price_index(snapshot.reference_b, self.matcher, System.LIST_B)
        self.special_limits = build_special_limit_index(snapshot.special_limits, self.matcher.normalize)

    def evaluate(self, invoice_number: str, item: LineItem) -> ComparisonOutcome:
        """Match one line item's product and apply the price rules."""
        if (invoice_number, item.code) in self.snapshot.approved_items:
            return evaluate_line_item(
                item, self.matcher.normalize(item.name), previously_approved=True,
            )

        stock_mapping = self.snapshot.stock_mappings.get(item.code)
        origin_name = stock_mapping.origin_name if stock_mapping else item.name

        match = self.matcher.find_match_with_confidence(origin_name, System.ORIGIN)
        canonical = match.canonical_key or self.matcher.normalize(origin_name)

        return evaluate_line_item(
            item,
            canonical,
            price_a=self.index_a.get(canonical),
            price_b=self.index_b.get(canonical),
            special_limit=self.special_limits.get(self.matcher.normalize(canonical)),
            match=match,
            stock_mapping=stock_mapping,
            unmapped=stock_mapping is None and not match.matched,
        )

    def evaluate_all(self, invoice_number: str, items: list[LineItem]) -> list[ComparisonOutcome]:
        return [self.evaluate(invoice_number, item) for item in items]


class Reconciler:
    def __init__(self, store: ReferenceStore, settings: Settings | None = None):
        self.store = store
        self.settings = settings or Settings()

    def start_run(self) -> ReconciliationRun:
        """Load a fresh catalog snapshot and build the run's matcher."""
        return ReconciliationRun(self.store.load_snapshot(), self.settings)

    def reconcile_invoice(self, pages: list[list[PositionedFragment]],
                          run: ReconciliationRun | None = None) -> dict:
        """
        Extract and classify one invoice.

        Raises ExtractionError when the invoice has no usable text or no
        invoice number.

        Returns:
            invoice: the ExtractedInvoice
            outcomes: ComparisonOutcome per parsed line, in invoice order
            summary: aggregate counts (see report.build_summary)
            duplicate: True if this invoice number was processed before
        """
        run = run or self.start_run()
        invoice = extract_from_fragments(
            pages,
            tolerance=self.settings.line_tolerance,
            max_parse_attempts=self.settings.max_parse_attempts,
        )

        duplicate = invoice.invoice_number in self.store.processed_invoice_numbers()
        if duplicate:
            logger.warning("Invoice %s was already processed", invoice.invoice_number)

        outcomes = run.evaluate_all(invoice.invoice_number, invoice.line_items)
        summary = build_summary(outcomes)
        return {
            "invoice": invoice,
            "outcomes": outcomes,
            "summary": summary,
            "duplicate": duplicate,
        }

    def finish_run(self, run: ReconciliationRun) -> int:
        """Persist the run's unmatched origin products."""
        return self.store.save_unmatched_products(run.matcher.unmatched_products())
