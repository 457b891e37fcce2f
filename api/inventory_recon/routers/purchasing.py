# inventory_recon/routers/purchasing.py
"""
Purchasing Router - save purchase orders (books transit), duplicate check, delete.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from inventory_recon.database import get_session
from inventory_recon.models import (
    CheckDuplicatesIn, CheckDuplicatesOut, DeletePurchaseOrderOut, DuplicateOut,
    SavePurchaseOrderIn, SavePurchaseOrderOut,
)
from inventory_recon.services.purchasing import PurchasingService
from inventory_recon.services.snapshot import snapshot_cache

router = APIRouter(prefix="/purchasing", tags=["Purchasing"])


@router.post("/po/save", response_model=SavePurchaseOrderOut)
async def save_purchase_order(body: SavePurchaseOrderIn, db: AsyncSession = Depends(get_session)):
    """Create supplier/PO/lines and book every line into transit, atomically."""
    saved = await PurchasingService(db).save_purchase_order(
        supplier=body.supplier.model_dump(),
        header=body.purchase_order.model_dump(),
        lines=[line.model_dump() for line in body.lines],
        notes=body.notes,
    )
    await db.commit()
    snapshot_cache.clear()
    return SavePurchaseOrderOut.model_validate(saved)


@router.post("/po/check-duplicates", response_model=CheckDuplicatesOut)
async def check_duplicates(body: CheckDuplicatesIn, db: AsyncSession = Depends(get_session)):
    matches = await PurchasingService(db).find_duplicate_purchase_orders(
        body.supplier_name,
        body.invoice_number,
        body.invoice_date,
        [line.model_dump() for line in body.lines],
    )
    return CheckDuplicatesOut(
        has_duplicates=bool(matches),
        duplicates=[
            DuplicateOut(
                id=m.purchase_order.id,
                invoice_number=m.purchase_order.invoice_number,
                invoice_date=m.purchase_order.invoice_date,
                supplier_name=m.supplier.name,
                match_score=m.score,
                match_reasons=m.reasons,
                line_count=m.line_count,
                created_at=m.purchase_order.created_at,
            )
            for m in matches
        ],
    )


@router.delete("/po/{po_id}", response_model=DeletePurchaseOrderOut)
async def delete_purchase_order(po_id: int, db: AsyncSession = Depends(get_session)):
    result = await PurchasingService(db).delete_purchase_order(po_id)
    await db.commit()
    snapshot_cache.clear()
    return result
