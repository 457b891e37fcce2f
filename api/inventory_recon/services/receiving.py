# inventory_recon/services/receiving.py
"""
Receiving Engine - moves received quantity from transit into on-hand stock.

Transit records are consumed oldest first (FIFO). The inventory row absorbs
exactly the value of what was taken from those records (qty * that record's
unit cost), using a running weighted average.

Concurrency: receives for the same product are serialised by an in-process
lock per product and, on PostgreSQL, by SELECT ... FOR UPDATE row locks.
Both are held until the transaction commits, so the read-modify-write of
remaining quantity and average cost never interleaves.
"""
from __future__ import annotations
import asyncio
import logging
import weakref
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass, field, asdict
from decimal import Decimal, InvalidOperation
from typing import AsyncIterator, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from inventory_recon.database import transaction
from inventory_recon.db_models import POLine, Product, PurchaseOrder, TransitRecord
from inventory_recon.errors import (
    InsufficientTransitQuantity, NoQuantityReceived, NotFound, StoreFailure, ValidationError,
)
from inventory_recon.services.ledger import (
    Clock, InventoryLedger, Number, ZERO, quantize_qty, to_decimal, utcnow,
)
from inventory_recon.services.transit import TransitLedger, transit_status

logger = logging.getLogger(__name__)


# ============================================================================
# Per-product locks
# ============================================================================

class ProductLocks:
    """asyncio.Lock per product id; unused locks are garbage collected."""

    def __init__(self) -> None:
        self._locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = weakref.WeakValueDictionary()

    def get(self, product_id: int) -> asyncio.Lock:
        lock = self._locks.get(product_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[product_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, product_ids: Iterable[int]) -> AsyncIterator[None]:
        """Acquire locks in ascending id order so multi-product holders never deadlock."""
        async with AsyncExitStack() as stack:
            for product_id in sorted(set(product_ids)):
                await stack.enter_async_context(self.get(product_id))
            yield


default_locks = ProductLocks()


# ============================================================================
# Results
# ============================================================================

@dataclass
class ReceiveResult:
    product_id: int
    received_quantity: Decimal
    remaining_requested_quantity: Decimal
    new_on_hand: Decimal
    new_average_cost: Decimal
    affected_transit_ids: List[int] = field(default_factory=list)
    po_line_id: Optional[int] = None

    def as_dict(self) -> dict:
        return asdict(self)


# ============================================================================
# Engine
# ============================================================================

class ReceivingEngine:
    def __init__(
        self,
        db: AsyncSession,
        clock: Clock = utcnow,
        locks: Optional[ProductLocks] = None,
    ):
        self.db = db
        self.clock = clock
        self.locks = locks or default_locks
        self.transit = TransitLedger(db, clock=clock)
        self.inventory = InventoryLedger(db, clock=clock)

    @staticmethod
    def validate_quantity(quantity: Number) -> Decimal:
        if isinstance(quantity, bool):
            raise ValidationError("quantity must be a positive number")
        try:
            value = to_decimal(quantity)
        except (InvalidOperation, ValueError, TypeError):
            raise ValidationError("quantity must be a positive number")
        if not value.is_finite():
            raise ValidationError("quantity must be a finite number")
        if value <= 0:
            raise ValidationError("quantity must be a positive number")
        if value != quantize_qty(value):
            raise ValidationError("quantity supports at most 3 decimal places")
        return quantize_qty(value)

    async def receive(
        self,
        product_id: int,
        quantity: Number,
        po_line_id: Optional[int] = None,
    ) -> ReceiveResult:
        """
        Receive up to ``quantity`` of a product from transit into stock.

        A request larger than what is in transit succeeds for the available
        amount and reports the shortfall in ``remaining_requested_quantity``.
        """
        if product_id is None:
            raise ValidationError("product_id is required")
        requested = self.validate_quantity(quantity)

        async with self.locks.hold([product_id]):
            try:
                async with transaction(self.db):
                    if await self.db.get(Product, product_id) is None:
                        raise NotFound("Product", product_id)
                    if po_line_id is not None and await self.db.get(POLine, po_line_id) is None:
                        raise NotFound("PO line", po_line_id)
                    records = await self.transit.open_records(product_id, po_line_id, for_update=True)
                    if not records:
                        raise InsufficientTransitQuantity(product_id, po_line_id)
                    result = await self._consume(product_id, requested, records, po_line_id)
            except SQLAlchemyError as e:
                logger.error("Receive failed for product %s: %s", product_id, e)
                raise StoreFailure(f"Failed to receive stock for product {product_id}") from e

        self._log_result(result)
        return result

    async def receive_purchase_order(self, purchase_order_id: int) -> List[ReceiveResult]:
        """
        Receive everything still in transit for a purchase order, atomically.

        Only the PO's own transit records are consumed, one result per record.
        """
        try:
            if await self.db.get(PurchaseOrder, purchase_order_id) is None:
                raise NotFound("Purchase order", purchase_order_id)
            pending = await self.transit.open_records_for_purchase_order(purchase_order_id)
            product_ids = [r.product_id for r in pending]
            # end the read before waiting on product locks; a lock holder may need to commit
            await self.db.rollback()
        except SQLAlchemyError as e:
            raise StoreFailure(f"Failed to load purchase order {purchase_order_id}") from e
        if not product_ids:
            raise InsufficientTransitQuantity(
                None, message=f"No stock in transit for purchase order {purchase_order_id}"
            )

        results: List[ReceiveResult] = []
        async with self.locks.hold(product_ids):
            try:
                async with transaction(self.db):
                    # re-read under the locks; another receive may have run meanwhile
                    records = await self.transit.open_records_for_purchase_order(
                        purchase_order_id, for_update=True
                    )
                    if not records:
                        raise InsufficientTransitQuantity(
                            None, message=f"No stock in transit for purchase order {purchase_order_id}"
                        )
                    for record in records:
                        if record.product_id not in product_ids:
                            # booked after the pre-read, so its product lock is not held
                            continue
                        results.append(
                            await self._consume(
                                record.product_id,
                                to_decimal(record.remaining_quantity),
                                [record],
                                record.po_line_id,
                            )
                        )
            except SQLAlchemyError as e:
                logger.error("Receive failed for purchase order %s: %s", purchase_order_id, e)
                raise StoreFailure(f"Failed to receive purchase order {purchase_order_id}") from e

        for result in results:
            self._log_result(result)
        return results

    async def _consume(
        self,
        product_id: int,
        requested: Decimal,
        records: List[TransitRecord],
        po_line_id: Optional[int],
    ) -> ReceiveResult:
        """Take ``requested`` from ``records`` in order and fold it into inventory."""
        outstanding = requested
        received = ZERO
        received_value = ZERO
        affected: List[int] = []

        for record in records:
            if outstanding <= 0:
                break
            available = to_decimal(record.remaining_quantity)
            take = min(outstanding, available)
            if take <= 0:
                continue
            record.remaining_quantity = quantize_qty(available - take)
            record.status = transit_status(to_decimal(record.quantity), record.remaining_quantity)
            received += take
            received_value += take * to_decimal(record.unit_cost)
            outstanding -= take
            affected.append(record.id)

        if received <= 0:
            raise NoQuantityReceived(product_id)

        inventory = await self.inventory.apply_receipt(product_id, received, received_value)
        await self.db.flush()

        return ReceiveResult(
            product_id=product_id,
            received_quantity=received,
            remaining_requested_quantity=quantize_qty(outstanding),
            new_on_hand=to_decimal(inventory.quantity_on_hand),
            new_average_cost=to_decimal(inventory.average_cost),
            affected_transit_ids=affected,
            po_line_id=po_line_id,
        )

    @staticmethod
    def _log_result(result: ReceiveResult) -> None:
        if result.remaining_requested_quantity > 0:
            logger.warning(
                "Partial receipt for product %s: received %s, %s not in transit",
                result.product_id, result.received_quantity, result.remaining_requested_quantity,
            )
        else:
            logger.info(
                "Received %s of product %s (on hand %s @ %s)",
                result.received_quantity, result.product_id, result.new_on_hand, result.new_average_cost,
            )
