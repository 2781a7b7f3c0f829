# routers/v1/__init__.py
from fastapi import APIRouter

from . import (
    element_types, elements, drawings, bom,
    production, precast_stock, invoices, qr,
)

api_v1 = APIRouter()
api_v1.include_router(element_types.router)
api_v1.include_router(elements.router)
api_v1.include_router(drawings.router)
api_v1.include_router(bom.router)
api_v1.include_router(production.router)
api_v1.include_router(precast_stock.router)
# invoices: main + work order payment terms
api_v1.include_router(invoices.router)
api_v1.include_router(invoices.work_orders_router)
api_v1.include_router(qr.router)

__all__ = ["api_v1"]
