# inventory_recon/services/snapshot.py
"""
Snapshot Builder - read-only stock view per product.

Each row carries on-hand stock plus what is still in transit, and a
*blended* expected average cost: on-hand value plus the value of open
transit records, divided by on-hand + in-transit quantity.
"""
from __future__ import annotations
import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from inventory_recon.database import store_errors
from inventory_recon.db_models import (
    InventoryRecord, POLine, Product, PurchaseOrder, Supplier, TransitRecord,
)
from inventory_recon.errors import NotFound
from inventory_recon.services.ledger import ZERO, quantize_cost, quantize_qty, to_decimal
from inventory_recon.settings import settings

logger = logging.getLogger(__name__)


# ============================================================================
# Blending
# ============================================================================

def effective_unit_cost(stored: Optional[Decimal], po_line_cost: Optional[Decimal]) -> Decimal:
    """Stored transit cost, or the PO line's cost when the stored one is missing or <= 0."""
    cost = to_decimal(stored)
    if cost <= 0:
        cost = to_decimal(po_line_cost)
    return cost if cost > 0 else ZERO


def blended_cost(
    on_hand: Decimal,
    average_cost: Decimal,
    open_lots: Iterable[Tuple[Decimal, Decimal]],
) -> Decimal:
    """
    Blend on-hand average with open ``(remaining, unit_cost)`` lots.

    Falls back to the on-hand average when there is nothing to blend.
    """
    total_qty = to_decimal(on_hand)
    total_cost = total_qty * to_decimal(average_cost)
    for qty, unit_cost in open_lots:
        if qty <= 0:
            continue
        total_qty += qty
        total_cost += qty * unit_cost
    if total_qty > 0 and total_cost > 0:
        return quantize_cost(total_cost / total_qty)
    return quantize_cost(average_cost)


@dataclass
class InventoryView:
    product_id: int
    quantity_on_hand: Decimal
    average_cost: Decimal
    last_updated: Optional[datetime]
    synthesized: bool = False


def inventory_view(
    product: Product,
    record: Optional[InventoryRecord],
    open_lots: List[Tuple[Decimal, Decimal]],
) -> Optional[InventoryView]:
    on_hand = to_decimal(record.quantity_on_hand) if record else ZERO
    average = to_decimal(record.average_cost) if record else ZERO
    display_cost = blended_cost(on_hand, average, open_lots)

    if record is not None:
        return InventoryView(
            product_id=product.id,
            quantity_on_hand=on_hand,
            average_cost=display_cost,
            last_updated=record.last_updated,
        )
    if display_cost > 0:
        return InventoryView(
            product_id=product.id,
            quantity_on_hand=ZERO,
            average_cost=display_cost,
            last_updated=product.updated_at or product.created_at,
            synthesized=True,
        )
    return None


# ============================================================================
# Snapshot
# ============================================================================

@dataclass
class SnapshotRow:
    product: Product
    inventory: Optional[InventoryView]
    quantity_in_transit: Decimal
    supplier: Optional[Supplier] = None


async def _open_lots_by_product(
    db: AsyncSession,
    product_id: Optional[int] = None,
) -> Dict[int, List[Tuple[Decimal, Decimal]]]:
    stmt = (
        select(TransitRecord.product_id, TransitRecord.remaining_quantity, TransitRecord.unit_cost, POLine.unit_cost)
        .outerjoin(POLine, POLine.id == TransitRecord.po_line_id)
        .where(TransitRecord.remaining_quantity > 0)
        .order_by(TransitRecord.created_at, TransitRecord.id)
    )
    if product_id is not None:
        stmt = stmt.where(TransitRecord.product_id == product_id)

    lots: Dict[int, List[Tuple[Decimal, Decimal]]] = {}
    for pid, remaining, stored_cost, line_cost in await db.execute(stmt):
        lots.setdefault(pid, []).append(
            (to_decimal(remaining), effective_unit_cost(stored_cost, line_cost))
        )
    return lots


@store_errors("build snapshot")
async def build_snapshot(db: AsyncSession) -> List[SnapshotRow]:
    """One row per product, ordered by name then id. Pure read."""
    products = list((await db.execute(select(Product).order_by(Product.name, Product.id))).scalars())
    inventory = {
        r.product_id: r for r in (await db.execute(select(InventoryRecord))).scalars()
    }
    suppliers = {s.id: s for s in (await db.execute(select(Supplier))).scalars()}
    lots = await _open_lots_by_product(db)

    rows: List[SnapshotRow] = []
    for product in products:
        product_lots = lots.get(product.id, [])
        rows.append(
            SnapshotRow(
                product=product,
                inventory=inventory_view(product, inventory.get(product.id), product_lots),
                quantity_in_transit=quantize_qty(sum((qty for qty, _ in product_lots), ZERO)),
                supplier=suppliers.get(product.supplier_id) if product.supplier_id else None,
            )
        )
    logger.debug("Built snapshot of %s products", len(rows))
    return rows


# ============================================================================
# Product history
# ============================================================================

@dataclass
class TransitHistoryEntry:
    transit: TransitRecord
    po_line: Optional[POLine]
    purchase_order: Optional[PurchaseOrder]


@dataclass
class ProductHistory:
    product: Product
    inventory: Optional[InventoryView]
    supplier: Optional[Supplier]
    quantity_in_transit: Decimal
    transit: List[TransitHistoryEntry] = field(default_factory=list)


@store_errors("load product history")
async def product_history(db: AsyncSession, product_id: int) -> ProductHistory:
    """Product, blended inventory, supplier and every transit record newest first."""
    product = await db.get(Product, product_id)
    if product is None:
        raise NotFound("Product", product_id)

    record = (
        await db.execute(select(InventoryRecord).where(InventoryRecord.product_id == product_id))
    ).scalar_one_or_none()
    supplier = await db.get(Supplier, product.supplier_id) if product.supplier_id else None
    product_lots = (await _open_lots_by_product(db, product_id)).get(product_id, [])

    stmt = (
        select(TransitRecord, POLine, PurchaseOrder)
        .outerjoin(POLine, POLine.id == TransitRecord.po_line_id)
        .outerjoin(PurchaseOrder, PurchaseOrder.id == TransitRecord.purchase_order_id)
        .where(TransitRecord.product_id == product_id)
        .order_by(TransitRecord.created_at.desc(), TransitRecord.id.desc())
    )
    entries = [
        TransitHistoryEntry(transit=t, po_line=line, purchase_order=po)
        for t, line, po in await db.execute(stmt)
    ]

    return ProductHistory(
        product=product,
        inventory=inventory_view(product, record, product_lots),
        supplier=supplier,
        quantity_in_transit=quantize_qty(sum((qty for qty, _ in product_lots), ZERO)),
        transit=entries,
    )


# ============================================================================
# Cache
# ============================================================================

class SnapshotCache:
    """
    In-process TTL cache with de-duplication of concurrent loads.

    A load started before ``clear()`` never repopulates the cache, so a
    mutation always invalidates what readers see next.
    """

    def __init__(self, ttl: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.ttl = settings.SNAPSHOT_CACHE_TTL_SEC if ttl is None else ttl
        self.clock = clock
        self._entries: Dict[str, Tuple[Any, float]] = {}
        self._in_flight: Dict[str, "asyncio.Future[Any]"] = {}

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self.clock():
            del self._entries[key]
            return None
        return value

    def clear(self, key: Optional[str] = None) -> None:
        if key is None:
            self._entries.clear()
            self._in_flight.clear()
        else:
            self._entries.pop(key, None)
            self._in_flight.pop(key, None)

    async def get_or_load(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        refresh: bool = False,
    ) -> Any:
        if refresh:
            self.clear(key)
        else:
            cached = self.get(key)
            if cached is not None:
                return cached
            pending = self._in_flight.get(key)
            if pending is not None:
                return await asyncio.shield(pending)

        task = asyncio.ensure_future(loader())
        self._in_flight[key] = task
        try:
            value = await task
        finally:
            current = self._in_flight.get(key) is task
            if current:
                del self._in_flight[key]

        if current:
            self._entries[key] = (value, self.clock() + self.ttl)
        return value


snapshot_cache = SnapshotCache()
