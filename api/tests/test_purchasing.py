"""
Tests for purchase order save, transit backfill, delete and duplicate
detection.
"""
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from inventory_recon.db_models import POLine, PurchaseOrder, Supplier, TransitRecord, TransitStatus
from inventory_recon.errors import NotFound, ValidationError
from inventory_recon.services.purchasing import PurchasingService


def _line(description, quantity, unit_cost, **extra):
    return {"description": description, "quantity": quantity, "unit_cost": unit_cost, **extra}


async def _count(db, model):
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


class TestSavePurchaseOrder:
    @pytest.mark.asyncio
    async def test_creates_supplier_po_lines_and_transit(self, db, clock):
        saved = await PurchasingService(db, clock=clock).save_purchase_order(
            {"name": "Acme Supplies", "email": "sales@acme.test"},
            {"invoice_number": "INV-100", "invoice_date": "2026-01-05", "payment_terms": "30 days"},
            [_line("Widget A", 10, "5.00"), _line("Trail Helmet", 2, "31.255", rrp="59.99")],
            notes="first order",
        )

        assert saved.saved_lines == 2
        assert saved.booking.products_created == 2
        assert saved.booking.transit_created == 2

        po = await db.get(PurchaseOrder, saved.purchase_order_id)
        assert po.currency == "GBP"
        assert po.invoice_number == "INV-100"
        lines = list((await db.execute(select(POLine).order_by(POLine.line_number))).scalars())
        assert [l.line_number for l in lines] == [1, 2]
        assert lines[0].line_total == Decimal("50.0000")
        assert lines[1].unit_cost == Decimal("31.2550")

        records = list((await db.execute(select(TransitRecord).order_by(TransitRecord.id))).scalars())
        assert [r.po_line_id for r in records] == [l.id for l in lines]
        assert all(r.status == TransitStatus.in_transit for r in records)
        assert all(r.supplier_id == saved.supplier_id for r in records)

    @pytest.mark.asyncio
    async def test_supplier_reused_case_insensitively(self, db, save_po):
        first = await save_po([_line("Widget A", 1, 1)], supplier="Acme Supplies")
        second = await save_po([_line("Widget B", 1, 1)], supplier="ACME SUPPLIES")

        assert first.supplier_id == second.supplier_id
        assert await _count(db, Supplier) == 1

    @pytest.mark.asyncio
    async def test_non_positive_lines_are_saved_but_not_booked(self, db, save_po):
        saved = await save_po([_line("Widget A", 3, 1), _line("Freebie", 0, 0)])

        assert saved.saved_lines == 2
        assert saved.booking.transit_created == 1
        assert await _count(db, TransitRecord) == 1

    @pytest.mark.asyncio
    async def test_requires_lines(self, db):
        with pytest.raises(ValidationError):
            await PurchasingService(db).save_purchase_order({"name": "Acme"}, {}, [])

    @pytest.mark.asyncio
    async def test_requires_supplier_name(self, db):
        with pytest.raises(ValidationError):
            await PurchasingService(db).save_purchase_order({"name": "  "}, {}, [_line("Widget A", 1, 1)])


class TestBackfill:
    @pytest.mark.asyncio
    async def test_books_only_unbooked_purchase_orders(self, db, clock, save_po):
        await save_po([_line("Widget A", 5, 2)])

        supplier = Supplier(name="Legacy Supplier")
        db.add(supplier)
        await db.flush()
        legacy = PurchaseOrder(supplier_id=supplier.id, invoice_number="OLD-1", currency="GBP")
        db.add(legacy)
        await db.flush()
        db.add_all([
            POLine(purchase_order_id=legacy.id, line_number=1, description="Widget A",
                   quantity=Decimal("4"), unit_cost=Decimal("2.5"), line_total=Decimal("10")),
            POLine(purchase_order_id=legacy.id, line_number=2, description="Chain Lube",
                   quantity=Decimal("1"), unit_cost=Decimal("3"), line_total=Decimal("3")),
        ])
        await db.commit()

        result = await PurchasingService(db, clock=clock).backfill_transit()

        assert result == {
            "purchase_orders_processed": 1,
            "products_created": 1,
            "products_matched": 1,
            "transit_created": 2,
        }
        await db.commit()

        again = await PurchasingService(db, clock=clock).backfill_transit()
        assert again["purchase_orders_processed"] == 0
        assert again["transit_created"] == 0


class TestDeletePurchaseOrder:
    @pytest.mark.asyncio
    async def test_deletes_lines_and_transit(self, db, save_po):
        saved = await save_po([_line("Widget A", 5, 2), _line("Widget B Deluxe", 1, 9)])
        keep = await save_po([_line("Chain Lube", 1, 3)])

        result = await PurchasingService(db).delete_purchase_order(saved.purchase_order_id)
        await db.commit()

        assert result == {"purchase_order_id": saved.purchase_order_id, "deleted_lines": 2}
        assert await db.get(PurchaseOrder, saved.purchase_order_id) is None
        remaining = list((await db.execute(select(TransitRecord.purchase_order_id))).scalars())
        assert remaining == [keep.purchase_order_id]
        assert await _count(db, POLine) == 1

    @pytest.mark.asyncio
    async def test_unknown_purchase_order(self, db):
        with pytest.raises(NotFound):
            await PurchasingService(db).delete_purchase_order(999)


class TestFindDuplicates:
    @pytest.mark.asyncio
    async def test_identical_invoice_scores_highest(self, db, save_po):
        saved = await save_po(
            [_line("Widget A", 10, 5)], invoice_number="INV-9", invoice_date="2026-02-01"
        )

        matches = await PurchasingService(db).find_duplicate_purchase_orders(
            "acme supplies", "inv-9", "2026-02-01", [_line("Widget A", 10, 5)]
        )

        (match,) = matches
        assert match.purchase_order.id == saved.purchase_order_id
        assert match.score == 100
        assert match.reasons == [
            "Same invoice number",
            "Same invoice date",
            "Same number of line items",
            "1/1 similar line items",
        ]
        assert match.line_count == 1

    @pytest.mark.asyncio
    async def test_similar_lines_without_invoice_number(self, db, save_po):
        await save_po([_line("Widget A", 10, 5), _line("Trail Helmet", 1, 30)], invoice_date="2026-02-01")

        (match,) = await PurchasingService(db).find_duplicate_purchase_orders(
            "Acme Supplies", None, "2026-02-01",
            [_line("Something else", 10, "5.001"), _line("Unrelated", 7, 1)],
        )
        # date 20 + line count 10 + half the lines similar 10
        assert match.score == 40

    @pytest.mark.asyncio
    async def test_weak_matches_are_dropped(self, db, save_po):
        await save_po([_line("Widget A", 10, 5)], invoice_number="INV-1")

        matches = await PurchasingService(db).find_duplicate_purchase_orders(
            "Acme Supplies", "INV-2", None, [_line("Other", 1, 1)]
        )
        assert matches == []

    @pytest.mark.asyncio
    async def test_unknown_supplier_has_no_duplicates(self, db, save_po):
        await save_po([_line("Widget A", 10, 5)], invoice_number="INV-1")
        assert await PurchasingService(db).find_duplicate_purchase_orders(
            "Someone Else", "INV-1", None, [_line("Widget A", 10, 5)]
        ) == []
