# module backend.app
"""
Instance ASGI globale de la boutique / adhésion club.
Toute la construction (middlewares, handlers, routers, lifespan) vit dans backend.app_setup.factory.
"""
from backend.app_setup.factory import create_app

# App globale
app = create_app()
