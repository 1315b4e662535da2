import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from cloudus import reports, routes, webhooks
from cloudus.config import get_settings
from cloudus.database import Base, engine
from cloudus.errors import PaymentError
from cloudus.log import configure_logging

configure_logging(get_settings())
logger = structlog.get_logger(__name__)

app = FastAPI(title="Cloudus Payment Settlement Service")

app.include_router(routes.router)
app.include_router(webhooks.router)
app.include_router(reports.router)

Base.metadata.create_all(bind=engine)


@app.exception_handler(PaymentError)
async def payment_error_handler(request: Request, exc: PaymentError):
    if exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, status_code=exc.status_code, error=exc.message)
    else:
        logger.info("request_rejected", path=request.url.path, status_code=exc.status_code, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"error": "Invalid request", "details": details})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@app.get("/health")
def health():
    return {"ok": True}
