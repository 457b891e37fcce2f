# inventory_recon/services/catalog.py
"""
Catalog maintenance: explicit create / update / delete of products.

Barcodes always go through ProductIdentifierService so the global
uniqueness guard applies here exactly as it does for add-barcode.
"""
from __future__ import annotations
import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from inventory_recon.database import store_errors
from inventory_recon.db_models import InventoryRecord, Product, Supplier, TransitRecord
from inventory_recon.errors import NotFound, ValidationError
from inventory_recon.services.identifiers import ProductIdentifierService

logger = logging.getLogger(__name__)

_OPTIONAL_TEXT_FIELDS = ("primary_sku", "supplier_sku", "category", "image_url")
_LIST_FIELDS = ("tags", "aliases")


def _optional_text(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def _string_list(values: Optional[Iterable[Any]]) -> List[str]:
    """Trimmed, non-empty, first occurrence kept."""
    out: List[str] = []
    for v in values or []:
        if not isinstance(v, str):
            continue
        v = v.strip()
        if v and v not in out:
            out.append(v)
    return out


class CatalogService:
    def __init__(self, db: AsyncSession, identifiers: Optional[ProductIdentifierService] = None):
        self.db = db
        self.identifiers = identifiers or ProductIdentifierService(db)

    async def _require_product(self, product_id: int) -> Product:
        product = await self.db.get(Product, product_id)
        if product is None:
            raise NotFound("Product", product_id)
        return product

    async def _check_supplier(self, supplier_id: Optional[int]) -> Optional[int]:
        if supplier_id is None:
            return None
        if await self.db.get(Supplier, supplier_id) is None:
            raise NotFound("Supplier", supplier_id)
        return supplier_id

    @store_errors("create product")
    async def create_product(
        self,
        name: str,
        primary_sku: Optional[str] = None,
        supplier_sku: Optional[str] = None,
        supplier_id: Optional[int] = None,
        category: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
        aliases: Optional[Iterable[str]] = None,
        barcodes: Optional[Iterable[str]] = None,
        image_url: Optional[str] = None,
    ) -> Product:
        name = (name or "").strip()
        if not name:
            raise ValidationError("name is required")

        barcode_values = _string_list(barcodes)
        for value in barcode_values:
            self.identifiers.clean_barcode(value)

        product = Product(
            name=name,
            primary_sku=_optional_text(primary_sku),
            supplier_sku=_optional_text(supplier_sku),
            supplier_id=await self._check_supplier(supplier_id),
            category=_optional_text(category),
            tags=_string_list(tags),
            aliases=_string_list(aliases),
            image_url=_optional_text(image_url),
            barcode_entries=[],
        )
        self.db.add(product)
        await self.db.flush()

        if barcode_values:
            await self.identifiers.attach_barcodes(product, barcode_values)
        await self.db.refresh(product)

        logger.info("Created product %s (%s)", product.id, product.name)
        return product

    @store_errors("update product")
    async def update_product(self, product_id: int, changes: Dict[str, Any]) -> Product:
        """
        Partial update. Only keys present in ``changes`` are touched;
        ``barcodes`` replaces the whole list.
        """
        product = await self._require_product(product_id)

        updates: Dict[str, Any] = {}
        if "name" in changes and changes["name"] is not None:
            name = str(changes["name"]).strip()
            if not name:
                raise ValidationError("name cannot be empty")
            updates["name"] = name
        for key in _OPTIONAL_TEXT_FIELDS:
            if key in changes:
                updates[key] = _optional_text(changes[key])
        for key in _LIST_FIELDS:
            if changes.get(key) is not None:
                updates[key] = _string_list(changes[key])
        if "supplier_id" in changes:
            updates["supplier_id"] = await self._check_supplier(changes["supplier_id"])

        barcodes = changes.get("barcodes")
        if not updates and barcodes is None:
            raise ValidationError("No valid fields provided for update")

        if barcodes is not None:
            await self.identifiers.replace_barcodes(product, _string_list(barcodes))
        for key, value in updates.items():
            setattr(product, key, value)
        product.updated_at = func.now()
        await self.db.flush()
        await self.db.refresh(product)

        changed = sorted(updates) + (["barcodes"] if barcodes is not None else [])
        logger.info("Updated product %s: %s", product_id, changed)
        return product

    @store_errors("delete product")
    async def delete_product(self, product_id: int) -> Dict[str, Any]:
        """Admin delete; removes the product's inventory and transit rows too."""
        product = await self._require_product(product_id)
        name = product.name

        transit = await self.db.execute(delete(TransitRecord).where(TransitRecord.product_id == product_id))
        inventory = await self.db.execute(delete(InventoryRecord).where(InventoryRecord.product_id == product_id))
        await self.db.delete(product)
        await self.db.flush()

        result = {
            "product_id": product_id,
            "product_name": name,
            "inventory_rows": inventory.rowcount or 0,
            "transit_rows": transit.rowcount or 0,
        }
        logger.info("Deleted product %s (%s): %s", product_id, name, result)
        return result
