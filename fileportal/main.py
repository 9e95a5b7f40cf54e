import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from fileportal.api.endpoints.admin import router as admin_router
from fileportal.api.endpoints.files import router as files_router
from fileportal.api.endpoints.upload import router as upload_router
from fileportal.core.config import settings
from fileportal.core.exceptions import PortalError
from fileportal.db.session import dispose_db, init_db
from fileportal.schemas.common import ErrorResponse
from fileportal.services.storage.factory import get_storage

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting file portal (storage backend: {get_storage().get_backend_name()})")
    await init_db()
    yield
    await dispose_db()
    logger.info("Shutdown")


app = FastAPI(
    title="File Portal",
    version="1.0.0",
    lifespan=lifespan,
    openapi_url=None if settings.ENV == "production" else "/openapi.json",
    docs_url=None if settings.ENV == "production" else "/docs",
    redoc_url=None if settings.ENV == "production" else "/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=[
        "Accept",
        "Content-Type",
        "Origin",
        "Authorization",
        "X-Requested-With",
        "X-Delete-Orphaned",
    ],
)


def _error(status_code: int, error: str, details: str = "") -> JSONResponse:
    body = ErrorResponse(error=error, details=details)
    return JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True))


@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.error} ({exc.details})")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc.error} ({exc.details})")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    response = _error(exc.status_code, str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    messages = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        messages.append(f"{location}: {err.get('msg')}" if location else str(err.get("msg")))
    return _error(400, "Invalid request", "; ".join(messages))


@app.exception_handler(Exception)
async def generic_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}")
    return _error(500, "Internal server error")


app.include_router(upload_router, prefix="/upload", tags=["upload"])
app.include_router(files_router, prefix="/files", tags=["files"])
app.include_router(admin_router, prefix="/admin", tags=["admin"])


@app.get("/health")
async def health():
    return {"success": True, "status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.SERVICE_PORT)
