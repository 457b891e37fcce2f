"""
Tests for barcode classification, identifier lookup and the barcode
uniqueness guard.
"""
import pytest

from inventory_recon.db_models import BarcodeType, Product
from inventory_recon.errors import DuplicateBarcode, NotFound, ValidationError
from inventory_recon.services.identifiers import ProductIdentifierService


async def _products(db, *names):
    products = [Product(name=n, aliases=[], tags=[], barcode_entries=[]) for n in names]
    db.add_all(products)
    await db.commit()
    return products


class TestClassifyBarcode:
    @pytest.mark.parametrize(
        "code, expected",
        [
            ("4006381333931", BarcodeType.ean),   # EAN-13, valid check digit
            ("96385074", BarcodeType.ean),        # EAN-8
            ("036000291452", BarcodeType.upc),    # UPC-A
            ("4006381333932", BarcodeType.custom),
            ("12345678", BarcodeType.unverified),
            ("12345", BarcodeType.unverified),
            ("ABC-123", BarcodeType.custom),
        ],
    )
    def test_classification(self, code, expected):
        assert ProductIdentifierService.classify_barcode(code) == expected


class TestAddBarcode:
    @pytest.mark.asyncio
    async def test_attaches_and_classifies(self, db):
        (product,) = await _products(db, "Trail Helmet")
        service = ProductIdentifierService(db)

        updated = await service.add_barcode(product.id, "  4006381333931 ")

        assert updated.barcodes == ["4006381333931"]
        assert updated.barcode_entries[0].barcode_type == BarcodeType.ean

    @pytest.mark.asyncio
    async def test_idempotent_for_same_product(self, db):
        (product,) = await _products(db, "Trail Helmet")
        service = ProductIdentifierService(db)

        await service.add_barcode(product.id, "ABC-123")
        await service.add_barcode(product.id, "ABC-123")
        await service.add_barcode(product.id, "abc-123")

        assert product.barcodes == ["ABC-123"]

    @pytest.mark.asyncio
    async def test_duplicate_on_other_product_mutates_neither(self, db):
        product_a, product_b = await _products(db, "Product A", "Product B")
        a_id, b_id = product_a.id, product_b.id
        service = ProductIdentifierService(db)
        await service.add_barcode(b_id, "5901234123457")
        await db.commit()

        with pytest.raises(DuplicateBarcode) as exc_info:
            await service.add_barcode(a_id, "5901234123457")

        assert exc_info.value.product_id == b_id
        assert exc_info.value.product_name == "Product B"
        assert (await db.get(Product, a_id)).barcodes == []
        assert (await db.get(Product, b_id)).barcodes == ["5901234123457"]

    @pytest.mark.asyncio
    async def test_uniqueness_is_case_insensitive(self, db):
        product_a, product_b = await _products(db, "Product A", "Product B")
        service = ProductIdentifierService(db)
        await service.add_barcode(product_b.id, "xyz-777")

        with pytest.raises(DuplicateBarcode):
            await service.add_barcode(product_a.id, "XYZ-777")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("barcode", ["", "   ", "9" * 129])
    async def test_rejects_empty_or_too_long(self, db, barcode):
        (product,) = await _products(db, "Trail Helmet")
        with pytest.raises(ValidationError):
            await ProductIdentifierService(db).add_barcode(product.id, barcode)

    @pytest.mark.asyncio
    async def test_accepts_max_length(self, db):
        (product,) = await _products(db, "Trail Helmet")
        updated = await ProductIdentifierService(db).add_barcode(product.id, "9" * 128)
        assert len(updated.barcodes[0]) == 128

    @pytest.mark.asyncio
    async def test_unknown_product(self, db):
        with pytest.raises(NotFound):
            await ProductIdentifierService(db).add_barcode(404, "ABC-123")


class TestFindProductByIdentifier:
    @pytest.mark.asyncio
    async def test_finds_by_barcode_case_insensitively(self, db):
        (product,) = await _products(db, "Trail Helmet")
        service = ProductIdentifierService(db)
        await service.add_barcode(product.id, "TH-BLUE-M")

        found = await service.find_product_by_identifier("th-blue-m")
        assert found.id == product.id

    @pytest.mark.asyncio
    async def test_finds_by_supplier_sku(self, db):
        product = Product(name="Chain", supplier_sku="CN-HG71", aliases=[], tags=[], barcode_entries=[])
        db.add(product)
        await db.flush()

        found = await ProductIdentifierService(db).find_product_by_identifier(" cn-hg71 ")
        assert found.id == product.id

    @pytest.mark.asyncio
    async def test_blank_code_finds_nothing(self, db):
        assert await ProductIdentifierService(db).find_product_by_identifier("  ") is None
