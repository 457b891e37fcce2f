from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from pydantic import BaseModel, ConfigDict, Field

from inventory_recon.db_models import TransitStatus

class RequestModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

# ----------------------------------------------------------------------------
# Requests
# ----------------------------------------------------------------------------

class SupplierIn(RequestModel):
    name: str
    address: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    vat_number: Optional[str] = None

class PurchaseOrderHeaderIn(RequestModel):
    invoice_number: Optional[str] = None
    invoice_date: Optional[str] = None
    currency: Optional[str] = None
    payment_terms: Optional[str] = None

class POLineIn(RequestModel):
    description: str
    supplier_sku: Optional[str] = None
    quantity: Decimal
    unit_cost: Decimal = Decimal("0")
    line_total: Optional[Decimal] = None
    rrp: Optional[Decimal] = None

class SavePurchaseOrderIn(RequestModel):
    supplier: SupplierIn
    purchase_order: PurchaseOrderHeaderIn = Field(default_factory=PurchaseOrderHeaderIn)
    lines: List[POLineIn]
    notes: Optional[str] = None

class CheckDuplicatesIn(RequestModel):
    supplier_name: str
    invoice_number: Optional[str] = None
    invoice_date: Optional[str] = None
    lines: List[POLineIn]

class ReceiveIn(RequestModel):
    product_id: int
    quantity: Decimal

class ReceiveLineIn(ReceiveIn):
    po_line_id: int

class AddBarcodeIn(RequestModel):
    product_id: int
    barcode: str

class ProductCreateIn(RequestModel):
    name: str
    primary_sku: Optional[str] = None
    supplier_sku: Optional[str] = None
    supplier_id: Optional[int] = None
    category: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    aliases: List[str] = Field(default_factory=list)
    barcodes: List[str] = Field(default_factory=list)
    image_url: Optional[str] = None

class ProductUpdateIn(RequestModel):
    name: Optional[str] = None
    primary_sku: Optional[str] = None
    supplier_sku: Optional[str] = None
    supplier_id: Optional[int] = None
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    aliases: Optional[List[str]] = None
    barcodes: Optional[List[str]] = None
    image_url: Optional[str] = None

# ----------------------------------------------------------------------------
# Responses
# ----------------------------------------------------------------------------

class SupplierOut(ORMModel):
    id: int
    name: str
    address: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    vat_number: Optional[str] = None

class ProductOut(ORMModel):
    id: int
    name: str
    primary_sku: Optional[str] = None
    supplier_sku: Optional[str] = None
    supplier_id: Optional[int] = None
    category: Optional[str] = None
    barcodes: List[str] = Field(default_factory=list)
    aliases: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    image_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class InventoryOut(ORMModel):
    product_id: int
    quantity_on_hand: float
    average_cost: float
    last_updated: Optional[datetime] = None
    synthesized: bool = False

class POLineOut(ORMModel):
    id: int
    purchase_order_id: int
    line_number: int
    description: str
    supplier_sku: Optional[str] = None
    quantity: float
    unit_cost: float
    line_total: float
    rrp: Optional[float] = None

class PurchaseOrderOut(ORMModel):
    id: int
    supplier_id: int
    invoice_number: Optional[str] = None
    invoice_date: Optional[str] = None
    currency: str
    payment_terms: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

class TransitOut(ORMModel):
    id: int
    product_id: int
    purchase_order_id: int
    po_line_id: Optional[int] = None
    supplier_id: Optional[int] = None
    quantity: float
    remaining_quantity: float
    unit_cost: float
    status: TransitStatus
    created_at: Optional[datetime] = None

class TransitHistoryOut(ORMModel):
    transit: TransitOut
    po_line: Optional[POLineOut] = None
    purchase_order: Optional[PurchaseOrderOut] = None

class ProductHistoryOut(ORMModel):
    product: ProductOut
    inventory: Optional[InventoryOut] = None
    supplier: Optional[SupplierOut] = None
    quantity_in_transit: float
    transit: List[TransitHistoryOut] = Field(default_factory=list)

class SnapshotRowOut(ORMModel):
    product: ProductOut
    inventory: Optional[InventoryOut] = None
    quantity_in_transit: float
    supplier: Optional[SupplierOut] = None

class ReceiveOut(ORMModel):
    product_id: int
    po_line_id: Optional[int] = None
    received_quantity: float
    remaining_requested_quantity: float
    new_on_hand: float
    new_average_cost: float
    affected_transit_ids: List[int] = Field(default_factory=list)

class ReceivePurchaseOrderOut(BaseModel):
    purchase_order_id: int
    results: List[ReceiveOut]

class BookingOut(ORMModel):
    products_created: int
    products_matched: int
    transit_created: int

class BackfillOut(BookingOut):
    purchase_orders_processed: int

class SavePurchaseOrderOut(ORMModel):
    supplier_id: int
    purchase_order_id: int
    saved_lines: int
    booking: BookingOut

class DuplicateOut(BaseModel):
    id: int
    invoice_number: Optional[str] = None
    invoice_date: Optional[str] = None
    supplier_name: str
    match_score: int
    match_reasons: List[str]
    line_count: int
    created_at: Optional[datetime] = None

class CheckDuplicatesOut(BaseModel):
    has_duplicates: bool
    duplicates: List[DuplicateOut]

class DeleteProductOut(BaseModel):
    product_id: int
    product_name: str
    inventory_rows: int
    transit_rows: int

class DeletePurchaseOrderOut(BaseModel):
    purchase_order_id: int
    deleted_lines: int
