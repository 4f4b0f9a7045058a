from fastapi import APIRouter

from ledger.interfaces.api.v1.routes.gateway import router as gateway_router
from ledger.interfaces.api.v1.routes.installments import router as installments_router
from ledger.interfaces.api.v1.routes.invoices import router as invoices_router
from ledger.interfaces.api.v1.routes.payments import router as payments_router
from ledger.interfaces.api.v1.routes.ping import router as ping_router
from ledger.interfaces.api.v1.routes.refunds import router as refunds_router

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(ping_router)
api_router.include_router(invoices_router)
api_router.include_router(payments_router)
api_router.include_router(refunds_router)
api_router.include_router(installments_router)
api_router.include_router(gateway_router)
