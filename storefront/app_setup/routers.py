"""
Registre central des routers.
- API: payments (checkout intent, intent legacy, webhook Stripe)
- Health: health_router
"""
from fastapi import FastAPI
from storefront.payments import views as payments_views
from storefront.health.router import router as health_router

def register_routers(app: FastAPI) -> None:
    app.include_router(payments_views.router)
    # Health & monitoring
    app.include_router(health_router)
