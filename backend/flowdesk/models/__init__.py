from .owners import Owner
from .inventory import Product
from .customers import Customer
from .invoices import Invoice, InvoiceLine
from .sales import Sale, SaleLine
from .documents import DocumentSequence

__all__ = [
    'Owner',
    'Product',
    'Customer',
    'Invoice', 'InvoiceLine',
    'Sale', 'SaleLine',
    'DocumentSequence',
]
