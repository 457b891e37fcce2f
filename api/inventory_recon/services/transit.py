# inventory_recon/services/transit.py
"""
Transit Ledger - quantity ordered from suppliers but not yet received.

One record per PO line, created when a purchase order is booked. Only the
receiving engine changes ``remaining_quantity`` / ``status`` afterwards.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, asdict
from decimal import Decimal
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from inventory_recon.database import store_errors
from inventory_recon.db_models import POLine, TransitRecord, TransitStatus
from inventory_recon.services.ledger import Clock, quantize_cost, quantize_qty, utcnow
from inventory_recon.services.matching import ProductMatcher

logger = logging.getLogger(__name__)


def transit_status(ordered: Decimal, remaining: Decimal) -> TransitStatus:
    """Status is derived from remaining vs ordered, never stored independently."""
    if remaining <= 0:
        return TransitStatus.received
    if remaining >= ordered:
        return TransitStatus.in_transit
    return TransitStatus.partially_received


@dataclass
class BookingResult:
    products_created: int = 0
    products_matched: int = 0
    transit_created: int = 0

    def __iadd__(self, other: "BookingResult") -> "BookingResult":
        self.products_created += other.products_created
        self.products_matched += other.products_matched
        self.transit_created += other.transit_created
        return self

    def as_dict(self) -> dict:
        return asdict(self)


class TransitLedger:
    def __init__(self, db: AsyncSession, clock: Clock = utcnow, matcher: Optional[ProductMatcher] = None):
        self.db = db
        self.clock = clock
        self.matcher = matcher

    # =========================================================================
    # Ingestion
    # =========================================================================

    @store_errors("book purchase order")
    async def book_purchase_order(
        self,
        supplier_id: Optional[int],
        purchase_order_id: int,
        lines: Sequence[POLine],
    ) -> BookingResult:
        """
        Resolve each line to a product and open one transit record for it.

        Lines with quantity <= 0 or an empty description are skipped.
        """
        matcher = self.matcher or ProductMatcher(self.db)
        result = BookingResult()

        for line in lines:
            qty = quantize_qty(line.quantity)
            description = (line.description or "").strip()
            if qty <= 0 or not description:
                logger.debug("Skipping PO line %s (qty=%s, description=%r)", line.id, qty, description)
                continue

            match = await matcher.match_or_create_product(description, line.supplier_sku, supplier_id)
            if match.created:
                result.products_created += 1
            else:
                result.products_matched += 1

            self.db.add(
                TransitRecord(
                    product_id=match.product_id,
                    purchase_order_id=purchase_order_id,
                    po_line_id=line.id,
                    supplier_id=supplier_id,
                    quantity=qty,
                    remaining_quantity=qty,
                    unit_cost=quantize_cost(line.unit_cost),
                    status=TransitStatus.in_transit,
                    created_at=self.clock(),
                )
            )
            result.transit_created += 1

        await self.db.flush()
        logger.info(
            "Booked PO %s: %s transit records (%s products created, %s matched)",
            purchase_order_id, result.transit_created, result.products_created, result.products_matched,
        )
        return result

    # =========================================================================
    # Queries
    # =========================================================================

    async def open_records(
        self,
        product_id: int,
        po_line_id: Optional[int] = None,
        for_update: bool = False,
    ) -> List[TransitRecord]:
        """Records with remaining quantity, oldest first (FIFO)."""
        stmt = select(TransitRecord).where(
            TransitRecord.product_id == product_id,
            TransitRecord.remaining_quantity > 0,
        )
        if po_line_id is not None:
            stmt = stmt.where(TransitRecord.po_line_id == po_line_id)
        stmt = stmt.order_by(TransitRecord.created_at, TransitRecord.id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return list(result.scalars())

    async def open_records_for_purchase_order(
        self,
        purchase_order_id: int,
        for_update: bool = False,
    ) -> List[TransitRecord]:
        stmt = (
            select(TransitRecord)
            .where(
                TransitRecord.purchase_order_id == purchase_order_id,
                TransitRecord.remaining_quantity > 0,
            )
            .order_by(TransitRecord.created_at, TransitRecord.id)
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return list(result.scalars())
