# inventory_recon/services/identifiers.py
"""
Product identifier service.

Handles:
- Barcode classification (EAN-13, EAN-8, UPC-A, unverified, custom)
- Case-insensitive identifier lookup (primary SKU, supplier SKU, barcodes)
- Barcode attachment with global uniqueness
"""
from __future__ import annotations
import logging
import re
from typing import Iterable, Optional, List

from sqlalchemy import select, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from inventory_recon.database import store_errors
from inventory_recon.db_models import Product, ProductBarcode, BarcodeType
from inventory_recon.errors import DuplicateBarcode, NotFound, ValidationError
from inventory_recon.settings import settings

logger = logging.getLogger(__name__)


def normalize_identifier(value: Optional[str]) -> str:
    return (value or "").strip().lower()


class ProductIdentifierService:
    """Service for product identifiers: SKU/barcode lookup and barcode attachment."""

    def __init__(self, db: AsyncSession, max_barcode_length: Optional[int] = None):
        self.db = db
        self.max_barcode_length = max_barcode_length or settings.BARCODE_MAX_LENGTH

    # =========================================================================
    # Classification
    # =========================================================================

    @staticmethod
    def _check_digit_ok(code: str, first_weight: int) -> bool:
        weights = (first_weight, 4 - first_weight)
        total = sum(int(d) * weights[i % 2] for i, d in enumerate(code[:-1]))
        return int(code[-1]) == (10 - (total % 10)) % 10

    @classmethod
    def classify_barcode(cls, code: str) -> BarcodeType:
        """
        Classify barcode by pattern and checksum.

        EAN-13 weights digits 1,3,1,3...; EAN-8 and UPC-A weight 3,1,3,1...
        """
        code = (code or "").strip()
        if re.fullmatch(r"\d{13}", code) and cls._check_digit_ok(code, 1):
            return BarcodeType.ean
        if re.fullmatch(r"\d{8}", code) and cls._check_digit_ok(code, 3):
            return BarcodeType.ean
        if re.fullmatch(r"\d{12}", code) and cls._check_digit_ok(code, 3):
            return BarcodeType.upc
        if re.fullmatch(r"\d{4,10}", code):
            return BarcodeType.unverified
        return BarcodeType.custom

    def clean_barcode(self, barcode: Optional[str]) -> str:
        value = (barcode or "").strip()
        if not value:
            raise ValidationError("barcode is required")
        if len(value) > self.max_barcode_length:
            raise ValidationError(f"barcode must be at most {self.max_barcode_length} characters")
        return value

    # =========================================================================
    # Lookup
    # =========================================================================

    async def find_product_by_identifier(self, code: Optional[str]) -> Optional[Product]:
        """
        Find product whose primary SKU, supplier SKU or any barcode equals
        ``code`` case-insensitively. Lowest product id wins on (unexpected) ties.
        """
        key = normalize_identifier(code)
        if not key:
            return None

        barcode_owners = select(ProductBarcode.product_id).where(ProductBarcode.normalized == key)
        stmt = (
            select(Product)
            .where(
                or_(
                    func.lower(Product.primary_sku) == key,
                    func.lower(Product.supplier_sku) == key,
                    Product.id.in_(barcode_owners),
                )
            )
            .order_by(Product.id)
            .limit(1)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def find_barcode_owner(self, barcode: str) -> Optional[Product]:
        stmt = (
            select(Product)
            .join(ProductBarcode)
            .where(ProductBarcode.normalized == normalize_identifier(barcode))
            .limit(1)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    # =========================================================================
    # Barcode attachment
    # =========================================================================

    @store_errors("add barcode")
    async def add_barcode(self, product_id: int, barcode: str) -> Product:
        """
        Attach a barcode to a product.

        Idempotent for the owning product; raises DuplicateBarcode naming the
        other product when the barcode is taken. Neither product is mutated on
        failure.
        """
        value = self.clean_barcode(barcode)
        product = await self.db.get(Product, product_id)
        if product is None:
            raise NotFound("Product", product_id)

        await self.attach_barcodes(product, [value])
        return product

    async def attach_barcodes(self, product: Product, values: Iterable[str]) -> None:
        """Attach each value to ``product``; all values are checked before any is added."""
        product_id = product.id
        existing = {b.normalized for b in product.barcode_entries}
        pending: List[str] = []
        for raw in values:
            value = self.clean_barcode(raw)
            key = normalize_identifier(value)
            if key in existing or key in {normalize_identifier(p) for p in pending}:
                continue
            owner = await self.find_barcode_owner(value)
            if owner is not None and owner.id != product_id:
                raise DuplicateBarcode(value, owner.id, owner.name)
            pending.append(value)

        if not pending:
            return

        try:
            async with self.db.begin_nested():
                for value in pending:
                    product.barcode_entries.append(
                        ProductBarcode(
                            value=value,
                            normalized=normalize_identifier(value),
                            barcode_type=self.classify_barcode(value),
                        )
                    )
                await self.db.flush()
        except IntegrityError:
            # Lost a race against a concurrent insert of the same barcode
            for value in pending:
                owner = await self.find_barcode_owner(value)
                if owner is not None and owner.id != product_id:
                    raise DuplicateBarcode(value, owner.id, owner.name)
            raise
        logger.info("Attached barcodes %s to product %s", pending, product_id)

    async def replace_barcodes(self, product: Product, values: Iterable[str]) -> None:
        """Make ``values`` the product's complete barcode list."""
        cleaned = [self.clean_barcode(v) for v in values]
        keep = {normalize_identifier(v) for v in cleaned}
        for entry in list(product.barcode_entries):
            if entry.normalized not in keep:
                product.barcode_entries.remove(entry)
        await self.db.flush()
        await self.attach_barcodes(product, cleaned)
