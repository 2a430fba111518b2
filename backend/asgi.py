"""
ASGI entrypoint: expose `app` for process managers / deployments.

- En production, un process manager (ex: uvicorn, gunicorn avec UvicornWorker) importe `backend.asgi:app`.
- La configuration FastAPI (routes, middlewares, handlers d'erreurs, rate limiting) est centralisée
  dans backend.app_setup, ce fichier ne fait qu'exposer l'instance `app`.
"""

from backend.app import app

if __name__ == "__main__":
    import os
    import uvicorn
    uvicorn.run(
        "backend.asgi:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=True,     # rechargement automatique en dev
    )
