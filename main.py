import asyncio
import logging
import time
import uuid

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import config
from database import init_database
from exceptions import (
    Expired,
    NotFound,
    NotReady,
    ProviderFailure,
    TransferError,
    Unauthorized,
    ValidationError,
)
from logging_config import setup_logging
from transfer_routes import get_document_store, get_storage, router as transfer_router

setup_logging()
logger = logging.getLogger("transfers.api")

app = FastAPI(
    title="Swift Transfer API",
    description="Time-limited multi-file transfers with direct-to-bucket uploads",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id
    start_time = time.time()

    response = await call_next(request)

    duration = time.time() - start_time
    logger.info(
        f"{request.method} {request.url.path} status={response.status_code} "
        f"duration={duration:.3f}s [request_id={request_id}]"
    )
    response.headers["X-Request-ID"] = request_id
    return response


@app.on_event("startup")
async def startup_event():
    await asyncio.to_thread(init_database)
    logger.info("Document store initialized")


# ─── Exception handlers ───────────────────────────────────────────────────────

def _error(request: Request, status_code: int, exc: TransferError, **extra) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "unknown")
    logger.warning(f"{type(exc).__name__}: {exc} [request_id={request_id}] path={request.url.path}")
    return JSONResponse(
        status_code=status_code,
        content={"ok": False, "error": str(exc), "code": exc.code, **extra},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    fields = {
        ".".join(str(part) for part in err["loc"][1:]) or "body": err["msg"]
        for err in exc.errors()
    }
    return _error(request, status.HTTP_400_BAD_REQUEST, ValidationError("Invalid request", fields), fields=fields)


@app.exception_handler(ValidationError)
async def validation_handler(request: Request, exc: ValidationError):
    return _error(request, status.HTTP_400_BAD_REQUEST, exc, fields=exc.fields)


@app.exception_handler(Unauthorized)
async def unauthorized_handler(request: Request, exc: Unauthorized):
    return _error(request, status.HTTP_401_UNAUTHORIZED, exc)


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return _error(request, status.HTTP_404_NOT_FOUND, exc)


@app.exception_handler(NotReady)
async def not_ready_handler(request: Request, exc: NotReady):
    return _error(request, status.HTTP_409_CONFLICT, exc)


@app.exception_handler(Expired)
async def expired_handler(request: Request, exc: Expired):
    return _error(request, status.HTTP_410_GONE, exc)


@app.exception_handler(ProviderFailure)
async def provider_failure_handler(request: Request, exc: ProviderFailure):
    request_id = getattr(request.state, "request_id", "unknown")
    logger.error(f"Provider failure: {exc} [request_id={request_id}] path={request.url.path}", exc_info=exc)
    status_code = status.HTTP_502_BAD_GATEWAY if exc.status is not None else status.HTTP_500_INTERNAL_SERVER_ERROR
    return JSONResponse(
        status_code=status_code,
        content={"ok": False, "error": str(exc), "code": exc.code, "provider": exc.provider, "providerStatus": exc.status},
    )


@app.exception_handler(TransferError)
async def transfer_error_handler(request: Request, exc: TransferError):
    return _error(request, status.HTTP_500_INTERNAL_SERVER_ERROR, exc)


app.include_router(transfer_router)


# ─── Health ───────────────────────────────────────────────────────────────────

@app.get("/health", tags=["System"])
def health():
    return {"ok": True, "service": "swift-transfer-backend", "version": "1.0.0"}


@app.get("/ready", tags=["System"])
async def ready():
    try:
        await asyncio.to_thread(get_document_store().ping)
        db_status = "ok"
    except Exception as e:
        db_status = f"error: {e}"

    storage_health = await asyncio.to_thread(get_storage().get_health)

    is_ready = db_status == "ok" and storage_health["status"] == "healthy"
    return JSONResponse(
        status_code=status.HTTP_200_OK if is_ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"ready": is_ready, "database": db_status, "storage": storage_health},
    )


def main() -> None:
    uvicorn.run("main:app", host="0.0.0.0", port=int(config.PORT))


if __name__ == "__main__":
    main()
