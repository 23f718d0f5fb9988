"""
API routers. All are mounted under /api/v1.
"""

from .subscriptions import router as subscriptions_router
from .payments import router as payments_router
from .invoices import router as invoices_router
from .usage import router as usage_router
from .plans import router as plans_router


__all__ = [
    'subscriptions_router',
    'payments_router',
    'invoices_router',
    'usage_router',
    'plans_router',
]
