"""
ASGI entrypoint: expose `app` for process managers / deployments.

- En production, un process manager (ex: gunicorn/uvicorn-workers) importe `paycore.asgi:app`.
- Toute la configuration FastAPI (routes, middlewares, exceptions) est centralisée dans
  paycore.app_setup.factory, ce fichier ne fait qu'exposer l'instance `app`.
"""

from paycore.app import app

if __name__ == "__main__":
    import os
    import uvicorn
    uvicorn.run(
        "paycore.asgi:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=True,     # rechargement automatique en dev
    )
