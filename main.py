from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from db_models import ErrorResponse, FinalResponse, IdentifyRequest
from db_setup import ContactStore
from errors import AppError
from logging_config import get_logger, setup_logging
from reconciler import IdentityReconciler
from settings import settings

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    store = ContactStore(settings.database_path, timeout=settings.sqlite_timeout_seconds)
    store.init_db()
    app.state.store = store
    logger.info("Contact store ready", extra={"database_path": settings.database_path})
    yield


app = FastAPI(
    title="Bitespeed Contact Reconciliation API",
    version="1.0.0",
    lifespan=lifespan,
)


def get_store(request: Request) -> ContactStore:
    return request.app.state.store


def get_reconciler(store: ContactStore = Depends(get_store)) -> IdentityReconciler:
    return IdentityReconciler(store)


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=message).model_dump(),
    )


def _server_error_message(exc: Exception) -> str:
    if settings.is_production:
        return "Internal server error"
    return str(exc) or "Internal server error"


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("Request failed", exc_info=exc, extra={"path": request.url.path})
        return _error_response(exc.status_code, _server_error_message(exc))
    return _error_response(exc.status_code, exc.message)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Convert validation errors to 400 with readable messages."""
    messages = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        message = error.get("msg", "Invalid value")
        messages.append(f"{field}: {message}" if field else message)
    return _error_response(400, ", ".join(messages) or "Invalid request")


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("Unexpected error", exc_info=exc, extra={"path": request.url.path})
    return _error_response(500, _server_error_message(exc))


@app.get("/")
async def root():
    return {"status": "ok", "message": "Bitespeed Identity Reconciliation Service"}


@app.post("/identify", response_model=FinalResponse)
def identify(request: IdentifyRequest, reconciler: IdentityReconciler = Depends(get_reconciler)):
    contact = reconciler.resolve(request.email, request.phoneNumber)
    return FinalResponse(contact=contact)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port)
