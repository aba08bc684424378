import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.exceptions import LedgerError
from app.core.logging import configure_logging
from app.db.mongo import connect_to_mongo, close_mongo_connection
from app.api.v1.api import api_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await connect_to_mongo()
    yield
    await close_mongo_connection()


async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    """Stable error body: code, message, reason and the log id to quote in reports."""
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app() -> FastAPI:
    configure_logging(settings.LOG_LEVEL)

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description=settings.DESCRIPTION,
        version=settings.PROJECT_VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(LedgerError, ledger_error_handler)

    @app.get("/")
    async def root():
        return {"message": f"Welcome to {settings.PROJECT_NAME}"}

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    app.include_router(api_router, prefix=settings.API_V1_STR)
    return app


app = create_app()
