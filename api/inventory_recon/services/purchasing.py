# inventory_recon/services/purchasing.py
"""
Purchasing service - purchase orders in, transit records out.

Saving a PO creates the supplier (if new), the PO header and its lines, then
books every line into the transit ledger in the same unit of work.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from inventory_recon.database import store_errors
from inventory_recon.db_models import POLine, PurchaseOrder, Supplier, TransitRecord
from inventory_recon.errors import NotFound, ValidationError
from inventory_recon.services.ledger import Clock, quantize_cost, quantize_qty, to_decimal, utcnow
from inventory_recon.services.matching import ProductMatcher
from inventory_recon.services.transit import BookingResult, TransitLedger
from inventory_recon.settings import settings

logger = logging.getLogger(__name__)

DUPLICATE_SCORE_THRESHOLD = 30
_DESCRIPTION_PREFIX = 20


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


@dataclass
class SavedPurchaseOrder:
    supplier_id: int
    purchase_order_id: int
    saved_lines: int
    booking: BookingResult


@dataclass
class DuplicateMatch:
    purchase_order: PurchaseOrder
    supplier: Supplier
    score: int
    reasons: List[str] = field(default_factory=list)
    line_count: int = 0


class PurchasingService:
    def __init__(self, db: AsyncSession, clock: Clock = utcnow):
        self.db = db
        self.clock = clock

    # =========================================================================
    # Suppliers
    # =========================================================================

    async def find_supplier(self, name: Optional[str]) -> Optional[Supplier]:
        key = (name or "").strip().lower()
        if not key:
            return None
        stmt = select(Supplier).where(func.lower(Supplier.name) == key).order_by(Supplier.id).limit(1)
        return (await self.db.execute(stmt)).scalar_one_or_none()

    @store_errors("find or create supplier")
    async def find_or_create_supplier(self, data: Mapping[str, Any]) -> Supplier:
        name = _clean(data.get("name"))
        if not name:
            raise ValidationError("Supplier name is required")

        supplier = await self.find_supplier(name)
        if supplier is not None:
            return supplier

        supplier = Supplier(
            name=name,
            address=_clean(data.get("address")),
            email=_clean(data.get("email")),
            phone=_clean(data.get("phone")),
            vat_number=_clean(data.get("vat_number")),
        )
        self.db.add(supplier)
        await self.db.flush()
        logger.info("Created supplier %s (%s)", supplier.id, name)
        return supplier

    # =========================================================================
    # Purchase orders
    # =========================================================================

    @store_errors("save purchase order")
    async def save_purchase_order(
        self,
        supplier: Mapping[str, Any],
        header: Mapping[str, Any],
        lines: Sequence[Mapping[str, Any]],
        notes: Optional[str] = None,
    ) -> SavedPurchaseOrder:
        if not lines:
            raise ValidationError("At least one line item is required")
        supplier_row = await self.find_or_create_supplier(supplier)

        po = PurchaseOrder(
            supplier_id=supplier_row.id,
            invoice_number=_clean(header.get("invoice_number")),
            invoice_date=_clean(header.get("invoice_date")),
            currency=_clean(header.get("currency")) or settings.DEFAULT_CURRENCY,
            payment_terms=_clean(header.get("payment_terms")),
            notes=_clean(notes),
        )
        self.db.add(po)
        await self.db.flush()

        po_lines: List[POLine] = []
        for number, line in enumerate(lines, start=1):
            qty = quantize_qty(line.get("quantity"))
            unit_cost = quantize_cost(line.get("unit_cost"))
            line_total = line.get("line_total")
            po_line = POLine(
                purchase_order_id=po.id,
                line_number=number,
                description=(line.get("description") or "").strip(),
                supplier_sku=_clean(line.get("supplier_sku")),
                quantity=qty,
                unit_cost=unit_cost,
                line_total=quantize_cost(qty * unit_cost if line_total is None else line_total),
                rrp=quantize_cost(line["rrp"]) if line.get("rrp") is not None else None,
            )
            self.db.add(po_line)
            po_lines.append(po_line)
        await self.db.flush()

        booking = await TransitLedger(self.db, clock=self.clock).book_purchase_order(
            supplier_row.id, po.id, po_lines
        )
        logger.info(
            "Saved PO %s for supplier %s with %s lines", po.id, supplier_row.name, len(po_lines)
        )
        return SavedPurchaseOrder(
            supplier_id=supplier_row.id,
            purchase_order_id=po.id,
            saved_lines=len(po_lines),
            booking=booking,
        )

    @store_errors("delete purchase order")
    async def delete_purchase_order(self, purchase_order_id: int) -> Dict[str, int]:
        """Delete a PO with its lines and transit records; returns the deleted line count."""
        po = await self.db.get(PurchaseOrder, purchase_order_id)
        if po is None:
            raise NotFound("Purchase order", purchase_order_id)

        transit = await self.db.execute(
            delete(TransitRecord).where(TransitRecord.purchase_order_id == purchase_order_id)
        )
        lines = await self.db.execute(delete(POLine).where(POLine.purchase_order_id == purchase_order_id))
        await self.db.delete(po)
        await self.db.flush()

        deleted_lines = lines.rowcount or 0
        logger.info(
            "Deleted PO %s (%s lines, %s transit records)",
            purchase_order_id, deleted_lines, transit.rowcount or 0,
        )
        return {"purchase_order_id": purchase_order_id, "deleted_lines": deleted_lines}

    # =========================================================================
    # Backfill
    # =========================================================================

    @store_errors("backfill transit")
    async def backfill_transit(self) -> Dict[str, int]:
        """Book every PO that has lines but no transit records yet."""
        booked = select(TransitRecord.purchase_order_id).distinct()
        stmt = (
            select(PurchaseOrder)
            .where(PurchaseOrder.id.not_in(booked))
            .order_by(PurchaseOrder.id)
        )
        purchase_orders = list((await self.db.execute(stmt)).scalars())

        matcher = ProductMatcher(self.db)
        ledger = TransitLedger(self.db, clock=self.clock, matcher=matcher)
        total = BookingResult()
        processed = 0

        for po in purchase_orders:
            lines = list(
                (
                    await self.db.execute(
                        select(POLine).where(POLine.purchase_order_id == po.id).order_by(POLine.line_number)
                    )
                ).scalars()
            )
            if not lines:
                continue
            total += await ledger.book_purchase_order(po.supplier_id, po.id, lines)
            processed += 1

        logger.info("Backfill booked %s purchase orders: %s", processed, total.as_dict())
        return {"purchase_orders_processed": processed, **total.as_dict()}

    # =========================================================================
    # Duplicate detection
    # =========================================================================

    @staticmethod
    def _lines_similar(existing: POLine, new: Mapping[str, Any]) -> bool:
        old_desc = (existing.description or "").lower()
        new_desc = (new.get("description") or "").lower()
        if old_desc and new_desc and (
            new_desc[:_DESCRIPTION_PREFIX] in old_desc or old_desc[:_DESCRIPTION_PREFIX] in new_desc
        ):
            return True
        cost_delta = abs(to_decimal(existing.unit_cost) - to_decimal(new.get("unit_cost")))
        return cost_delta < Decimal("0.01") and to_decimal(existing.quantity) == to_decimal(new.get("quantity"))

    @store_errors("check for duplicate purchase orders")
    async def find_duplicate_purchase_orders(
        self,
        supplier_name: str,
        invoice_number: Optional[str],
        invoice_date: Optional[str],
        lines: Sequence[Mapping[str, Any]],
    ) -> List[DuplicateMatch]:
        """
        Score this supplier's existing POs against a PO about to be saved.

        +50 same invoice number, +20 same invoice date, +10 same line count,
        up to +20 for the share of similar lines. Scores below 30 are dropped.
        """
        if not _clean(supplier_name):
            raise ValidationError("Supplier name is required")
        if not lines:
            raise ValidationError("At least one line item is required")

        supplier = await self.find_supplier(supplier_name)
        if supplier is None:
            return []

        invoice_number = _clean(invoice_number)
        invoice_date = _clean(invoice_date)
        stmt = select(PurchaseOrder).where(PurchaseOrder.supplier_id == supplier.id).order_by(PurchaseOrder.id)
        matches: List[DuplicateMatch] = []

        for po in (await self.db.execute(stmt)).scalars():
            reasons: List[str] = []
            score = 0.0

            if invoice_number and po.invoice_number and invoice_number.lower() == po.invoice_number.lower():
                reasons.append("Same invoice number")
                score += 50
            if invoice_date and po.invoice_date and invoice_date == po.invoice_date:
                reasons.append("Same invoice date")
                score += 20

            existing_lines = list(
                (await self.db.execute(select(POLine).where(POLine.purchase_order_id == po.id))).scalars()
            )
            if len(existing_lines) == len(lines):
                reasons.append("Same number of line items")
                score += 10
                similar = sum(
                    1 for new in lines if any(self._lines_similar(old, new) for old in existing_lines)
                )
                if similar:
                    reasons.append(f"{similar}/{len(lines)} similar line items")
                    score += 20 * similar / len(lines)

            if score >= DUPLICATE_SCORE_THRESHOLD:
                matches.append(
                    DuplicateMatch(
                        purchase_order=po,
                        supplier=supplier,
                        score=int(score + 0.5),
                        reasons=reasons,
                        line_count=len(existing_lines),
                    )
                )

        matches.sort(key=lambda m: (-m.score, m.purchase_order.id))
        if matches:
            logger.info("Found %s possible duplicates for %s / %s", len(matches), supplier.name, invoice_number)
        return matches
