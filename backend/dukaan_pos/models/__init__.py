from .catalog import Product
from .inventory import InventoryDelta
from .invoices import Invoice, InvoiceLine
from .analytics import InvoiceEvent, RollupBucket

__all__ = [
    'Product',
    'InventoryDelta',
    'Invoice', 'InvoiceLine',
    'InvoiceEvent', 'RollupBucket',
]
