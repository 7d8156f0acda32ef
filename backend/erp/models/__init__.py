from .auth import User, SessionToken
from .catalog import Supplier, Category, Product, ProductVariant, ProductImage, Customer
from .units import StoreUnit, UnitStock
from .stock import StockMovement, StockAlert
from .orders import DocumentSequence, PurchaseOrder, PurchaseOrderItem, SalesOrder, SalesOrderItem
from .documents import StockTransfer, TransferItem, Return, ReturnItem
from .finance import AccountPayable, AccountReceivable, FinancialTransaction, PricingRule
from .audit import AuditLog

__all__ = [
    'User', 'SessionToken',
    'Supplier', 'Category', 'Product', 'ProductVariant', 'ProductImage', 'Customer',
    'StoreUnit', 'UnitStock',
    'StockMovement', 'StockAlert',
    'DocumentSequence', 'PurchaseOrder', 'PurchaseOrderItem', 'SalesOrder', 'SalesOrderItem',
    'StockTransfer', 'TransferItem', 'Return', 'ReturnItem',
    'AccountPayable', 'AccountReceivable', 'FinancialTransaction', 'PricingRule',
    'AuditLog',
]
