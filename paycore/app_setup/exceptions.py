"""
Gestionnaires d'exceptions utilisés par la factory.
- PaymentError (et sous-classes): JSON { success: false, error_code, detail, transaction_id? }
  avec le statut HTTP porté par l'erreur.
- RequestValidationError sur /api/v1/payments/*: même enveloppe, code 'validation_error' (422).
- HTTPException: JSON FastAPI standard { detail }.
"""
import logging
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from paycore.payments.errors import PaymentError, ValidationError

logger = logging.getLogger(__name__)


def payment_error_body(exc: PaymentError) -> dict:
    body = {"success": False, "error_code": exc.error_code, "detail": exc.detail}
    if exc.transaction_id:
        body["transaction_id"] = exc.transaction_id
    return body


def register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(PaymentError)
    async def payment_error_handler(request: Request, exc: PaymentError):
        if exc.http_status >= 500:
            logger.error("payments error %s on %s: %s", exc.error_code, request.url.path, exc.detail)
        else:
            logger.info("payments error %s on %s: %s", exc.error_code, request.url.path, exc.detail)
        return JSONResponse(status_code=exc.http_status, content=payment_error_body(exc))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        body = payment_error_body(ValidationError("Requête invalide"))
        body["errors"] = jsonable_encoder(exc.errors(), exclude={"ctx", "url", "input"})
        return JSONResponse(status_code=ValidationError.http_status, content=body)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=exc.headers)
