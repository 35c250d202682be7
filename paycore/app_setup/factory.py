"""
Factory d'application recommandée pour les entrypoints (ex: paycore.asgi).
Ordonne les étapes d'initialisation de manière lisible et testable.
"""
from fastapi import FastAPI
from .lifespan import lifespan
from .log_config import configure_logging
from .middlewares import register_basic_middlewares, register_security_middleware
from .exceptions import register_exception_handlers
from .routers import register_routers

def create_app() -> FastAPI:
    """
    Construit l'app FastAPI avec le lifespan et enregistre:
      - logging, middlewares de base et en-têtes de sécurité
      - gestionnaires d'exceptions
      - tous les routers (API payments, health)
    Retour:
      FastAPI prêt à être utilisé par le serveur ASGI.
    """
    configure_logging()
    app = FastAPI(title="Paycore", lifespan=lifespan)
    register_basic_middlewares(app)
    register_security_middleware(app)
    register_exception_handlers(app)
    register_routers(app)
    return app
