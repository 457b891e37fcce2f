# inventory_recon/services/ledger.py
"""
Inventory Ledger - per-product on-hand quantity and weighted-average cost.

Only the receiving engine mutates these rows.
"""
from __future__ import annotations
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from inventory_recon.db_models import InventoryRecord

Number = Union[Decimal, int, float, str]
Clock = Callable[[], datetime]

COST_PLACES = Decimal("0.0001")
QTY_PLACES = Decimal("0.001")
ZERO = Decimal("0")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_decimal(value: Optional[Number]) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize_cost(value: Optional[Number]) -> Decimal:
    return to_decimal(value).quantize(COST_PLACES, rounding=ROUND_HALF_UP)


def quantize_qty(value: Optional[Number]) -> Decimal:
    return to_decimal(value).quantize(QTY_PLACES, rounding=ROUND_HALF_UP)


def weighted_average(
    on_hand: Number,
    average_cost: Number,
    received_qty: Number,
    received_value: Number,
) -> Decimal:
    """
    Running weighted-average unit cost after a receipt.

    ``received_value`` is the total cost of what was received (sum of
    qty * unit cost per transit record), not a unit cost.
    """
    on_hand = to_decimal(on_hand)
    received_qty = to_decimal(received_qty)
    total_qty = on_hand + received_qty
    if total_qty <= 0:
        return quantize_cost(average_cost)
    total_value = on_hand * to_decimal(average_cost) + to_decimal(received_value)
    return quantize_cost(total_value / total_qty)


class InventoryLedger:
    def __init__(self, db: AsyncSession, clock: Clock = utcnow):
        self.db = db
        self.clock = clock

    async def get(self, product_id: int, for_update: bool = False) -> Optional[InventoryRecord]:
        stmt = select(InventoryRecord).where(InventoryRecord.product_id == product_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def apply_receipt(self, product_id: int, received_qty: Decimal, received_value: Decimal) -> InventoryRecord:
        """Upsert the product's row and fold the receipt into its average cost."""
        record = await self.get(product_id, for_update=True)
        if record is None:
            record = InventoryRecord(
                product_id=product_id,
                quantity_on_hand=ZERO,
                average_cost=ZERO,
                last_updated=self.clock(),
            )
            self.db.add(record)

        on_hand = to_decimal(record.quantity_on_hand)
        record.average_cost = weighted_average(on_hand, record.average_cost, received_qty, received_value)
        record.quantity_on_hand = quantize_qty(on_hand + received_qty)
        record.last_updated = self.clock()
        return record
