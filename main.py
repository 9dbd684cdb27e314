"""
Invoice Price Audit: main entry point

Pipeline per invoice: read text layer -> rebuild lines -> header + line
items -> match products -> apply price rules -> write reports.

Catalogs are read once per run from the snapshot directory
(PRICE_AUDIT_DATA_DIR, default ./data).

Usage:
    price-audit                              # Process all in ./invoices/
    python main.py path/to/invoice.pdf       # Process a single file
    python main.py path/to/fragments.json    # Process a text-layer dump
"""

import logging
import os
import sys

from config import load_settings
from extractor import load_pages
from models import ExtractionError
from reconciler import Reconciler
from reference_db import ReferenceStore
from report import build_json_payload, build_reconciliation_report, save_outputs

SUPPORTED_EXTENSIONS = (".pdf", ".json")


def process_invoice(path: str, reconciler: Reconciler, run, output_dir: str = "output") -> dict:
    """Run the full pipeline on a single invoice file."""
    invoice_name = os.path.splitext(os.path.basename(path))[0]
    print(f"\n{'='*60}")
    print(f"Processing: {path}")
    print(f"{'='*60}")

    # Step 1: Read text layer
    print("  [1/4] Reading text layer...")
    pages = load_pages(path)
    print(f"        Pages: {len(pages)}, fragments: {sum(len(p) for p in pages)}")

    # Step 2 + 3: Extract and classify
    print("  [2/4] Extracting header and line items...")
    try:
        result = reconciler.reconcile_invoice(pages, run)
    except ExtractionError as e:
        print(f"  ERROR ({e.stage} stage): {e.reason}")
        if e.context.get("fallbacks_attempted"):
            print(f"        Attempted: {', '.join(e.context['fallbacks_attempted'])}")
        print(f"        Text length: {e.context.get('text_length', 0)}")
        for line in e.context.get("first_lines", [])[:5]:
            print(f"        | {line}")
        if e.context.get("suggestion"):
            print(f"        {e.context['suggestion']}")
        return {"file": path, "error": str(e), "stage": e.stage}

    invoice = result["invoice"]
    stats = invoice.stats
    print(f"        Invoice #: {invoice.invoice_number}")
    print(f"        Date: {invoice.invoice_date.isoformat()}"
          f"{' (defaulted)' if invoice.date_defaulted else ''}")
    print(f"        Line items: {stats.parsed} parsed, {stats.failed} failed, "
          f"{stats.multiline_recovered} multi-line")
    if invoice.warnings:
        print(f"        Warnings: {', '.join(invoice.warnings)}")
    if result["duplicate"]:
        print("        NOTE: invoice number already processed before")

    print("  [3/4] Matching products and applying price rules...")
    summary = result["summary"]
    print(f"        Compliant: {summary['compliant']}, Refund: {summary['refunds_required']}, "
          f"Pending review: {summary['pending_manual_review']}")
    if summary["refunds_required"]:
        print(f"        Total refund: {summary['total_refund_amount']:.2f}")

    # Step 4: Outputs
    print("  [4/4] Generating reports...")
    payload = build_json_payload(result)
    report = build_reconciliation_report(result)
    for saved in save_outputs(invoice_name, payload, report, output_dir):
        print(f"  Saved: {saved}")

    reconciler.store.record_processed_invoice(
        invoice.invoice_number, invoice.invoice_date.isoformat(), summary,
    )
    return payload


def main():
    settings = load_settings()
    logging.basicConfig(
        format="%(levelname)s %(name)s: %(message)s",
        level=getattr(logging, settings.log_level, logging.WARNING),
    )

    store = ReferenceStore(settings.data_dir)
    reconciler = Reconciler(store, settings)

    if len(sys.argv) > 1:
        paths = []
        for path in sys.argv[1:]:
            if os.path.isfile(path):
                paths.append(path)
            else:
                print(f"File not found: {path}")
    else:
        invoices_dir = os.path.join(os.getcwd(), "invoices")
        if not os.path.isdir(invoices_dir):
            print(f"No invoices directory found at {invoices_dir}")
            print("Usage: python main.py [invoice.pdf|fragments.json ...]")
            sys.exit(1)
        paths = [
            os.path.join(invoices_dir, f) for f in sorted(os.listdir(invoices_dir))
            if f.lower().endswith(SUPPORTED_EXTENSIONS)
        ]

    if not paths:
        print("No invoices to process.")
        sys.exit(1)

    print(f"Loading reference snapshot from {settings.data_dir}...")
    run = reconciler.start_run()
    print(f"  List A: {len(run.snapshot.reference_a)}, List B: {len(run.snapshot.reference_b)}, "
          f"mappings: {len(run.snapshot.product_mappings)}, "
          f"special limits: {len(run.snapshot.special_limits)}")

    results = [process_invoice(path, reconciler, run, settings.output_dir) for path in paths]
    saved = reconciler.finish_run(run)

    # Summary
    print(f"\n{'='*60}")
    print("SUMMARY")
    print(f"{'='*60}")
    failed = [r for r in results if r.get("error")]
    done = [r for r in results if not r.get("error")]
    print(f"  Processed: {len(results)}")
    print(f"  Extraction failures: {len(failed)}")
    print(f"  Compliant lines:   {sum(r['summary']['compliant'] for r in done)}")
    print(f"  Refund lines:      {sum(r['summary']['refunds_required'] for r in done)}")
    print(f"  Pending review:    {sum(r['summary']['pending_manual_review'] for r in done)}")
    print(f"  Total refund:      {sum(r['summary']['total_refund_amount'] for r in done):.2f}")
    if saved:
        print(f"  Unmatched products recorded: {saved}")

    print(f"\nAll outputs saved to {settings.output_dir}/")


if __name__ == "__main__":
    main()
