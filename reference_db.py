"""
Reference snapshot store: read-only catalogs in, unmatched products out.

A reconciliation run loads its catalogs once, up front, from a directory
of JSON tables. Nothing here is cached between runs: every run gets a
fresh snapshot of whatever the tables hold at that moment.

Storage: <data_dir>/<table>.json, one JSON array of rows per table.
  reference_a.json        {productName, unitPrice, effectiveDate}
  reference_b.json        {productName, maxPrice, observedDate}
  special_limits.json     {productName, fixedMaxPrice, active}
  product_mappings.json   {canonicalKey, originName, listAName, listBName, alternateNames}
  stock_mappings.json     {supplierCode, originCode, originName}
  approved_items.json     {invoiceNumber, productCode}
  processed_invoices.json {invoiceNumber, invoiceDate, recordedAt, ...}
  unmatched_products.json {source_system, source_name, normalized_name, last_seen_at}
Missing tables read as empty.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone

from models import ReferencePriceA, ReferencePriceB, SpecialLimit, StockMapping

logger = logging.getLogger(__name__)


@dataclass
class CatalogSnapshot:
    """Everything a run reads, loaded once at run start."""
    reference_a: list = field(default_factory=list)
    reference_b: list = field(default_factory=list)
    special_limits: list = field(default_factory=list)
    product_mappings: list = field(default_factory=list)
    stock_mappings: dict = field(default_factory=dict)
    approved_items: set = field(default_factory=set)


def latest_by_name(rows: list, date_attr: str) -> list:
    """
    Keep the most recent row per product name.

    Dates are ISO strings (YYYY-MM-DD...), so they order as text.
    First-seen order of names is preserved.
    """
    latest = {}
    for row in rows:
        current = latest.get(row.product_name)
        if current is None or getattr(current, date_attr) < getattr(row, date_attr):
            latest[row.product_name] = row
    return list(latest.values())


def _float(value) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class ReferenceStore:
    """JSON-file storage collaborator for one data directory."""

    def __init__(self, data_dir: str = "data"):
        self.data_dir = data_dir

    def _path(self, table: str) -> str:
        return os.path.join(self.data_dir, f"{table}.json")

    def _load_table(self, table: str) -> list[dict]:
        """Load a table from disk, or an empty table when the file is missing."""
        path = self._path(table)
        if not os.path.exists(path):
            return []
        with open(path, "r", encoding="utf-8") as f:
            rows = json.load(f)
        if not isinstance(rows, list):
            raise ValueError(f"{path} must hold a JSON array of rows")
        return rows

    def _save_table(self, table: str, rows: list[dict]):
        os.makedirs(self.data_dir, exist_ok=True)
        with open(self._path(table), "w", encoding="utf-8") as f:
            json.dump(rows, f, indent=2, ensure_ascii=False)

    # ── Catalogs ────────────────────────────────────────────────────

    def load_reference_a(self) -> list[ReferencePriceA]:
        prices = []
        for row in self._load_table("reference_a"):
            price = _float(row.get("unitPrice"))
            if not row.get("productName") or price is None:
                logger.warning("Skipping malformed reference A row: %r", row)
                continue
            prices.append(ReferencePriceA(row["productName"], price, str(row.get("effectiveDate") or "")))
        return latest_by_name(prices, "effective_date")

    def load_reference_b(self) -> list[ReferencePriceB]:
        prices = []
        for row in self._load_table("reference_b"):
            price = _float(row.get("maxPrice"))
            if not row.get("productName") or price is None:
                logger.warning("Skipping malformed reference B row: %r", row)
                continue
            prices.append(ReferencePriceB(row["productName"], price, str(row.get("observedDate") or "")))
        return latest_by_name(prices, "observed_date")

    def load_special_limits(self) -> list[SpecialLimit]:
        """Active special limits only."""
        limits = []
        for row in self._load_table("special_limits"):
            price = _float(row.get("fixedMaxPrice"))
            if not row.get("productName") or price is None:
                logger.warning("Skipping malformed special limit row: %r", row)
                continue
            if row.get("active", True):
                limits.append(SpecialLimit(row["productName"], price, True))
        return limits

    def load_product_mappings(self) -> list[dict]:
        return self._load_table("product_mappings")

    def load_stock_mappings(self) -> dict[str, StockMapping]:
        """Supplier product code -> origin-system product."""
        mappings = {}
        for row in self._load_table("stock_mappings"):
            code = str(row.get("supplierCode") or "").strip()
            name = row.get("originName")
            if not code or not name:
                continue
            mappings.setdefault(code, StockMapping(code, row.get("originCode"), name))
        return mappings

    def load_approved_items(self) -> set[tuple]:
        """(invoice number, product code) pairs a human already adjudicated."""
        return {
            (str(row.get("invoiceNumber")), str(row.get("productCode")))
            for row in self._load_table("approved_items")
            if row.get("invoiceNumber") and row.get("productCode")
        }

    def load_snapshot(self) -> CatalogSnapshot:
        snapshot = CatalogSnapshot(
            reference_a=self.load_reference_a(),
            reference_b=self.load_reference_b(),
            special_limits=self.load_special_limits(),
            product_mappings=self.load_product_mappings(),
            stock_mappings=self.load_stock_mappings(),
            approved_items=self.load_approved_items(),
        )
        logger.info("Snapshot loaded: %d list A, %d list B, %d special limits, %d mappings, "
                    "%d stock codes, %d approved items",
                    len(snapshot.reference_a), len(snapshot.reference_b),
                    len(snapshot.special_limits), len(snapshot.product_mappings),
                    len(snapshot.stock_mappings), len(snapshot.approved_items))
        return snapshot

    # ── Run Outputs ─────────────────────────────────────────────────

    def processed_invoice_numbers(self) -> set[str]:
        return {str(row.get("invoiceNumber")) for row in self._load_table("processed_invoices")}

    def record_processed_invoice(self, invoice_number: str, invoice_date: str, summary: dict):
        """Remember an invoice so a later upload of it can be reported as a duplicate."""
        rows = self._load_table("processed_invoices")
        if invoice_number in {str(row.get("invoiceNumber")) for row in rows}:
            return
        rows.append({
            "invoiceNumber": invoice_number,
            "invoiceDate": invoice_date,
            "totalItems": summary.get("total_products", 0),
            "totalRefundAmount": summary.get("total_refund_amount", 0.0),
            "recordedAt": datetime.now(timezone.utc).isoformat(),
        })
        self._save_table("processed_invoices", rows)

    def save_unmatched_products(self, products: list[dict]) -> int:
        """
        Upsert unmatched products by (source_system, source_name).

        Returns the number of distinct products written.
        """
        if not products:
            return 0

        rows = self._load_table("unmatched_products")
        by_key = {(row.get("source_system"), row.get("source_name")): row for row in rows}
        seen_at = datetime.now(timezone.utc).isoformat()

        written = set()
        for product in products:
            key = (product["source_system"], product["source_name"])
            by_key[key] = {**by_key.get(key, {}), **product, "last_seen_at": seen_at}
            written.add(key)

        self._save_table("unmatched_products", list(by_key.values()))
        logger.info("Saved %d unmatched product(s)", len(written))
        return len(written)
