from .catalog import Product, Category, Supplier
from .customers import Customer
from .stock import StockMovement
from .invoices import Invoice, InvoiceItem, Payment, INVOICE_KINDS, INVOICE_STATUSES, PAYMENT_METHODS

__all__ = [
    'Product', 'Category', 'Supplier',
    'Customer',
    'StockMovement',
    'Invoice', 'InvoiceItem', 'Payment',
    'INVOICE_KINDS', 'INVOICE_STATUSES', 'PAYMENT_METHODS',
]
