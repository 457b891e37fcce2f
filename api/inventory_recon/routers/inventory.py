# inventory_recon/routers/inventory.py
"""
Inventory Router - receiving, snapshot, barcodes and catalog maintenance.

Every mutation commits before the snapshot cache is cleared, so the next
snapshot read never repopulates from pre-commit state.
"""
from __future__ import annotations
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from inventory_recon.database import get_session
from inventory_recon.models import (
    AddBarcodeIn, BackfillOut, DeleteProductOut, ProductCreateIn, ProductHistoryOut,
    ProductOut, ProductUpdateIn, ReceiveIn, ReceiveLineIn, ReceiveOut,
    ReceivePurchaseOrderOut, SnapshotRowOut,
)
from inventory_recon.services.catalog import CatalogService
from inventory_recon.services.identifiers import ProductIdentifierService
from inventory_recon.services.purchasing import PurchasingService
from inventory_recon.services.receiving import ReceivingEngine
from inventory_recon.services.snapshot import build_snapshot, product_history, snapshot_cache

router = APIRouter(prefix="/inventory", tags=["Inventory"])

SNAPSHOT_CACHE_KEY = "inventory_snapshot"


async def _commit(db: AsyncSession) -> None:
    await db.commit()
    snapshot_cache.clear()


# ============================================================================
# Receiving
# ============================================================================

@router.post("/receive", response_model=ReceiveOut)
async def receive_stock(body: ReceiveIn, db: AsyncSession = Depends(get_session)):
    """Receive quantity for a product, oldest transit first."""
    result = await ReceivingEngine(db).receive(body.product_id, body.quantity)
    snapshot_cache.clear()
    return ReceiveOut.model_validate(result)


@router.post("/receive-line", response_model=ReceiveOut)
async def receive_line(body: ReceiveLineIn, db: AsyncSession = Depends(get_session)):
    """Receive quantity restricted to one PO line."""
    result = await ReceivingEngine(db).receive(body.product_id, body.quantity, po_line_id=body.po_line_id)
    snapshot_cache.clear()
    return ReceiveOut.model_validate(result)


@router.post("/receive-po/{po_id}", response_model=ReceivePurchaseOrderOut)
async def receive_purchase_order(po_id: int, db: AsyncSession = Depends(get_session)):
    """Receive everything still in transit for a purchase order."""
    results = await ReceivingEngine(db).receive_purchase_order(po_id)
    snapshot_cache.clear()
    return ReceivePurchaseOrderOut(
        purchase_order_id=po_id,
        results=[ReceiveOut.model_validate(r) for r in results],
    )


@router.post("/backfill", response_model=BackfillOut)
async def backfill(db: AsyncSession = Depends(get_session)):
    """Book transit for purchase orders saved without it."""
    result = await PurchasingService(db).backfill_transit()
    await _commit(db)
    return result


# ============================================================================
# Snapshot
# ============================================================================

@router.get("/snapshot", response_model=List[SnapshotRowOut])
async def get_snapshot(
    refresh: bool = Query(False, description="Bypass the cache"),
    db: AsyncSession = Depends(get_session),
):
    async def load() -> List[SnapshotRowOut]:
        rows = await build_snapshot(db)
        return [SnapshotRowOut.model_validate(row) for row in rows]

    return await snapshot_cache.get_or_load(SNAPSHOT_CACHE_KEY, load, refresh=refresh)


# ============================================================================
# Barcodes
# ============================================================================

@router.post("/add-barcode", response_model=ProductOut)
async def add_barcode(body: AddBarcodeIn, db: AsyncSession = Depends(get_session)):
    product = await ProductIdentifierService(db).add_barcode(body.product_id, body.barcode)
    await _commit(db)
    return ProductOut.model_validate(product)


# ============================================================================
# Products
# ============================================================================

@router.get("/products/{product_id}", response_model=ProductHistoryOut)
async def get_product(product_id: int, db: AsyncSession = Depends(get_session)):
    """Product with blended inventory, supplier and transit history."""
    history = await product_history(db, product_id)
    return ProductHistoryOut.model_validate(history)


@router.post("/products", response_model=ProductOut, status_code=201)
async def create_product(body: ProductCreateIn, db: AsyncSession = Depends(get_session)):
    product = await CatalogService(db).create_product(**body.model_dump())
    await _commit(db)
    return ProductOut.model_validate(product)


@router.put("/products/{product_id}", response_model=ProductOut)
async def update_product(product_id: int, body: ProductUpdateIn, db: AsyncSession = Depends(get_session)):
    product = await CatalogService(db).update_product(product_id, body.model_dump(exclude_unset=True))
    await _commit(db)
    return ProductOut.model_validate(product)


@router.delete("/products/{product_id}", response_model=DeleteProductOut)
async def delete_product(product_id: int, db: AsyncSession = Depends(get_session)):
    """Admin delete; cascades to the product's inventory and transit rows."""
    result = await CatalogService(db).delete_product(product_id)
    await _commit(db)
    return result
