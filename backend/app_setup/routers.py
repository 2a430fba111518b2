"""
Registre central des routers (API v1 payments, health).
"""
from fastapi import FastAPI
from backend.payments import views as payments_views
from backend.health.router import router as health_router

def register_routers(app: FastAPI) -> None:
    """
    Agrège tous les routers de l'application.
    - API v1: checkout, webhook Stripe, portail client
    - Health & monitoring
    """
    app.include_router(payments_views.router)
    app.include_router(health_router)
