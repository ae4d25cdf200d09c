from .connection import get_db, get_engine, get_session_factory, init_db, ping, Base

from .invoice_models import (
    CompanyDB, CompanyUserDB, InvoiceDB,
    InvoiceStatus, CompanyRole
)

__all__ = [
    'get_db', 'get_engine', 'get_session_factory', 'init_db', 'ping', 'Base',
    'CompanyDB', 'CompanyUserDB', 'InvoiceDB',
    'InvoiceStatus', 'CompanyRole',
]
