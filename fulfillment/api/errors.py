from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from fulfillment.errors import FulfillmentError
from shared.core.logging_config import get_logger

logger = get_logger(__name__)


async def fulfillment_error_handler(request: Request, exc: FulfillmentError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}", exc_info=exc)
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.code}", status_code=exc.status_code)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error", "code": "internal_error"})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(FulfillmentError, fulfillment_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
