from .inventory import Product, InventoryLocation, StockLevel, InventoryTransfer, InventoryAdjustment
from .purchasing import Supplier, PurchaseOrder, PurchaseOrderItem
from .sales import Transaction, TransactionItem
from .customers import Customer, CustomerLoyaltyTransaction

__all__ = [
    'Product', 'InventoryLocation', 'StockLevel', 'InventoryTransfer', 'InventoryAdjustment',
    'Supplier', 'PurchaseOrder', 'PurchaseOrderItem',
    'Transaction', 'TransactionItem',
    'Customer', 'CustomerLoyaltyTransaction',
]
