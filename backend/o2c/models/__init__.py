from .customers import Customer
from .inventory import Product, InventoryMovement
from .orders import Order, OrderItem
from .invoices import Invoice, Payment
from .audit import AuditEvent, BusinessKeySequence

__all__ = [
    'Customer',
    'Product', 'InventoryMovement',
    'Order', 'OrderItem',
    'Invoice', 'Payment',
    'AuditEvent', 'BusinessKeySequence',
]
