import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from checkout.database import Base, engine
from checkout.errors import OrderError, ValidationError
from checkout.routes import admin_router, router

logger = logging.getLogger(__name__)

app = FastAPI(title="Shop Checkout Service")

app.include_router(router)
app.include_router(admin_router)

Base.metadata.create_all(bind=engine)


@app.exception_handler(OrderError)
async def order_error_handler(request: Request, exc: OrderError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.detail, exc.kind)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    error = ValidationError("Invalid request body", errors=jsonable_encoder(exc.errors()))
    return JSONResponse(status_code=error.status_code, content=error.to_dict())
