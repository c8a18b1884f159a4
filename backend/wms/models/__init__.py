from .auth import User
from .catalog import Category, Brand, Warehouse, Location
from .customers import Customer
from .inventory import Product, StockMovement
from .documents import StockAdjustment, StockAdjustmentItem, StockTransfer, StockTransferItem, DocumentSequence
from .sales import Sale, SaleItem, Payment, SaleTemplate
from .invoicing import ElectronicInvoice

__all__ = [
    'User',
    'Category', 'Brand', 'Warehouse', 'Location',
    'Customer',
    'Product', 'StockMovement',
    'StockAdjustment', 'StockAdjustmentItem', 'StockTransfer', 'StockTransferItem', 'DocumentSequence',
    'Sale', 'SaleItem', 'Payment', 'SaleTemplate',
    'ElectronicInvoice',
]
