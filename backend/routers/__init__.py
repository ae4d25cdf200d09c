from .domains import router as domains_router
from .invoices import router as invoices_router

__all__ = [
    'domains_router',
    'invoices_router',
]
