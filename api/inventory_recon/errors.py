# inventory_recon/errors.py
"""
Typed errors for the reconciliation core.

Every error carries a machine-readable ``code`` and the HTTP status the API
layer renders it with, so callers catch by type rather than by message.

    ReconciliationError
    +-- ValidationError              400
    +-- NotFound                     404
    +-- DuplicateBarcode             409
    +-- InsufficientTransitQuantity  409
    +-- NoQuantityReceived           409
    +-- StoreFailure                 503
"""
from __future__ import annotations
from typing import Any, Dict, Optional


class ReconciliationError(Exception):
    code: str = "RECONCILIATION_ERROR"
    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code}


class ValidationError(ReconciliationError):
    """Malformed input: no retry, no partial effect."""
    code = "VALIDATION_ERROR"
    status_code = 400


class NotFound(ReconciliationError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(entity=self.entity, entity_id=self.entity_id)
        return data


class DuplicateBarcode(ReconciliationError):
    """Barcode already belongs to a different product."""
    code = "DUPLICATE_BARCODE"
    status_code = 409

    def __init__(self, barcode: str, product_id: int, product_name: str):
        super().__init__(f"Barcode '{barcode}' is already assigned to product '{product_name}'")
        self.barcode = barcode
        self.product_id = product_id
        self.product_name = product_name

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(barcode=self.barcode, product_id=self.product_id, product_name=self.product_name)
        return data


class InsufficientTransitQuantity(ReconciliationError):
    """No eligible transit records at all for a receive request."""
    code = "INSUFFICIENT_TRANSIT_QUANTITY"
    status_code = 409

    def __init__(self, product_id: Optional[int], po_line_id: Optional[int] = None, message: Optional[str] = None):
        if message is None:
            message = f"No stock in transit for product {product_id}"
            if po_line_id is not None:
                message += f" on PO line {po_line_id}"
        super().__init__(message)
        self.product_id = product_id
        self.po_line_id = po_line_id


class NoQuantityReceived(ReconciliationError):
    code = "NO_QUANTITY_RECEIVED"
    status_code = 409

    def __init__(self, product_id: int):
        super().__init__(f"No quantity could be received for product {product_id}")
        self.product_id = product_id


class StoreFailure(ReconciliationError):
    """Underlying store I/O error; the caller may retry the whole operation."""
    code = "STORE_FAILURE"
    status_code = 503
