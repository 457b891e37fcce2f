# inventory_recon/db_models.py
"""
SQLAlchemy ORM Models for Inventory Recon.

Purchasing (suppliers, purchase orders, PO lines), catalog (products,
barcodes) and the two linked ledgers: transit (ordered, not yet received)
and inventory (on-hand quantity + weighted-average cost).
"""
from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
import enum

from sqlalchemy import (
    String, Integer, BigInteger, Text, DateTime,
    Numeric, ForeignKey, Index, CheckConstraint, UniqueConstraint,
    Enum as SQLEnum, JSON, func
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import JSONB

from inventory_recon.database import Base, BigIntPK

# JSONB on PostgreSQL, plain JSON elsewhere
JSONList = JSON().with_variant(JSONB, "postgresql")

QTY = Numeric(14, 3)
MONEY = Numeric(14, 4)

# ============================================================================
# ENUMS
# ============================================================================

class TransitStatus(str, enum.Enum):
    in_transit = "in_transit"
    partially_received = "partially_received"
    received = "received"


class BarcodeType(str, enum.Enum):
    ean = "ean"
    upc = "upc"
    unverified = "unverified"
    custom = "custom"


# ============================================================================
# MIXIN for updated_at
# ============================================================================

class TimestampMixin:
    """Mixin for created_at and updated_at columns."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=func.now(),
        onupdate=func.now(),
        nullable=False
    )


# ============================================================================
# 1. SUPPLIERS
# ============================================================================

class Supplier(TimestampMixin, Base):
    __tablename__ = "suppliers"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    address: Mapped[Optional[str]] = mapped_column(Text)
    email: Mapped[Optional[str]] = mapped_column(String(255))
    phone: Mapped[Optional[str]] = mapped_column(String(64))
    vat_number: Mapped[Optional[str]] = mapped_column(String(64))

    purchase_orders: Mapped[List["PurchaseOrder"]] = relationship(
        back_populates="supplier",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("idx_suppliers_name", "name"),
    )


# ============================================================================
# 2. PURCHASE ORDERS
# ============================================================================

class PurchaseOrder(TimestampMixin, Base):
    __tablename__ = "purchase_orders"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    supplier_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("suppliers.id", ondelete="CASCADE"), nullable=False)
    invoice_number: Mapped[Optional[str]] = mapped_column(String(100))
    invoice_date: Mapped[Optional[str]] = mapped_column(String(20))
    currency: Mapped[str] = mapped_column(String(3), default="GBP", nullable=False)
    payment_terms: Mapped[Optional[str]] = mapped_column(String(255))
    notes: Mapped[Optional[str]] = mapped_column(Text)

    supplier: Mapped["Supplier"] = relationship(back_populates="purchase_orders")
    lines: Mapped[List["POLine"]] = relationship(
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="POLine.line_number",
    )
    transit_records: Mapped[List["TransitRecord"]] = relationship(
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("idx_purchase_orders_supplier", "supplier_id"),
    )


# ============================================================================
# 3. PO LINES
# ============================================================================

class POLine(Base):
    __tablename__ = "po_lines"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    purchase_order_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    supplier_sku: Mapped[Optional[str]] = mapped_column(String(100))
    quantity: Mapped[Decimal] = mapped_column(QTY, nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    line_total: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    rrp: Mapped[Optional[Decimal]] = mapped_column(MONEY)

    purchase_order: Mapped["PurchaseOrder"] = relationship(back_populates="lines")

    __table_args__ = (
        UniqueConstraint("purchase_order_id", "line_number", name="uq_po_lines_number"),
        Index("idx_po_lines_purchase_order", "purchase_order_id"),
    )


# ============================================================================
# 4. PRODUCTS
# ============================================================================

class Product(TimestampMixin, Base):
    __tablename__ = "products"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    primary_sku: Mapped[Optional[str]] = mapped_column(String(100))
    supplier_sku: Mapped[Optional[str]] = mapped_column(String(100))
    supplier_id: Mapped[Optional[int]] = mapped_column(BigInteger, ForeignKey("suppliers.id", ondelete="SET NULL"))
    category: Mapped[Optional[str]] = mapped_column(String(255))
    aliases: Mapped[list] = mapped_column(JSONList, default=list, nullable=False)
    tags: Mapped[list] = mapped_column(JSONList, default=list, nullable=False)
    image_url: Mapped[Optional[str]] = mapped_column(Text)

    supplier: Mapped[Optional["Supplier"]] = relationship()
    barcode_entries: Mapped[List["ProductBarcode"]] = relationship(
        back_populates="product",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ProductBarcode.id",
        lazy="selectin",
    )

    __table_args__ = (
        Index("idx_products_primary_sku", "primary_sku"),
        Index("idx_products_supplier_sku", "supplier_sku"),
        Index("idx_products_supplier", "supplier_id"),
    )

    @property
    def barcodes(self) -> List[str]:
        """Barcode values in insertion order."""
        return [b.value for b in self.barcode_entries]


# ============================================================================
# 5. PRODUCT BARCODES (globally unique, case-insensitive)
# ============================================================================

class ProductBarcode(Base):
    __tablename__ = "product_barcodes"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    value: Mapped[str] = mapped_column(String(128), nullable=False)
    normalized: Mapped[str] = mapped_column(String(128), nullable=False)
    barcode_type: Mapped[BarcodeType] = mapped_column(
        SQLEnum(BarcodeType, name="barcode_type"),
        default=BarcodeType.custom,
        nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now(), nullable=False)

    product: Mapped["Product"] = relationship(back_populates="barcode_entries")

    __table_args__ = (
        UniqueConstraint("normalized", name="uq_product_barcodes_normalized"),
        Index("idx_product_barcodes_product", "product_id"),
    )


# ============================================================================
# 6. INVENTORY (one row per product)
# ============================================================================

class InventoryRecord(Base):
    __tablename__ = "inventory"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    quantity_on_hand: Mapped[Decimal] = mapped_column(QTY, default=0, nullable=False)
    average_cost: Mapped[Decimal] = mapped_column(MONEY, default=0, nullable=False)
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now(), nullable=False)

    product: Mapped["Product"] = relationship()

    __table_args__ = (
        UniqueConstraint("product_id", name="uq_inventory_product"),
        CheckConstraint("quantity_on_hand >= 0", name="chk_inventory_on_hand_non_negative"),
        CheckConstraint("average_cost >= 0", name="chk_inventory_avg_cost_non_negative"),
    )


# ============================================================================
# 7. TRANSIT (ordered-but-not-received, one per PO line)
# ============================================================================

class TransitRecord(TimestampMixin, Base):
    __tablename__ = "transit"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    purchase_order_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False
    )
    po_line_id: Mapped[Optional[int]] = mapped_column(BigInteger, ForeignKey("po_lines.id", ondelete="CASCADE"))
    supplier_id: Mapped[Optional[int]] = mapped_column(BigInteger, ForeignKey("suppliers.id", ondelete="CASCADE"))
    quantity: Mapped[Decimal] = mapped_column(QTY, nullable=False)
    remaining_quantity: Mapped[Decimal] = mapped_column(QTY, nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    status: Mapped[TransitStatus] = mapped_column(
        SQLEnum(TransitStatus, name="transit_status"),
        default=TransitStatus.in_transit,
        nullable=False
    )

    product: Mapped["Product"] = relationship()
    purchase_order: Mapped["PurchaseOrder"] = relationship(back_populates="transit_records")
    po_line: Mapped[Optional["POLine"]] = relationship()

    __table_args__ = (
        CheckConstraint("quantity > 0", name="chk_transit_quantity_positive"),
        CheckConstraint("remaining_quantity >= 0", name="chk_transit_remaining_non_negative"),
        CheckConstraint("remaining_quantity <= quantity", name="chk_transit_remaining_le_ordered"),
        Index("idx_transit_product", "product_id"),
        Index("idx_transit_purchase_order", "purchase_order_id"),
        Index("idx_transit_open", "product_id", "created_at", "id"),
    )
