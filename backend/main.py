import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from core.config import settings
from core.errors import DomainError
from core.logging_setup import setup_logging
from db.code_sequence import ensure_code_sequences
from db.database import async_session_maker, create_db_and_tables
from routers.articles import router as articles_router
from routers.deliveries import router as deliveries_router
from routers.inventory_operations import router as inventory_operations_router
from routers.payments import router as payments_router

setup_logging(settings)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await create_db_and_tables()
    async with async_session_maker() as session:
        await ensure_code_sequences(session)
    logger.info("Pastry back office started")
    yield


app = FastAPI(
    title="Pastry Back Office API",
    description="Delivery allocation, cancellation and payment reconciliation",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"message": str(exc.detail)}, headers=exc.headers)


def _describe(err: dict) -> str:
    loc = ".".join(str(x) for x in err.get("loc", ()) if x != "body")
    return f"{loc}: {err.get('msg')}" if loc else str(err.get("msg"))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [_describe(e) for e in exc.errors()]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"message": errors[0] if errors else "Invalid request", "errors": errors},
    )


app.include_router(articles_router, prefix="/api/articles", tags=["articles"])
app.include_router(deliveries_router, prefix="/api/deliveries", tags=["deliveries"])
app.include_router(payments_router, prefix="/api", tags=["payments"])
app.include_router(inventory_operations_router, prefix="/api/inventory-operations", tags=["inventory"])

if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
