# inventory_recon/services/__init__.py
"""
Business logic services for Inventory Recon.
"""
from inventory_recon.services.identifiers import ProductIdentifierService
from inventory_recon.services.matching import ProductMatcher
from inventory_recon.services.transit import TransitLedger
from inventory_recon.services.ledger import InventoryLedger
from inventory_recon.services.receiving import ReceivingEngine
from inventory_recon.services.catalog import CatalogService
from inventory_recon.services.purchasing import PurchasingService

__all__ = [
    "ProductIdentifierService",
    "ProductMatcher",
    "TransitLedger",
    "InventoryLedger",
    "ReceivingEngine",
    "CatalogService",
    "PurchasingService",
]
