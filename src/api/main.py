"""
FastAPI application entry-point.
"""
from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.routers import catalog, insights
from src.core.errors import ExecutionError, InsightsError
from src.core.logging import get_logger
from src.db.audit_log import ensure_audit_table
from src.db.cache_store import ensure_cache_table

logger = get_logger(__name__)

GENERIC_SUGGESTION = "Tente reformular a pergunta ou use um dos relatórios prontos."


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Idempotent CREATE TABLE IF NOT EXISTS; the API still starts without a DB.
    try:
        ensure_audit_table()
        ensure_cache_table()
    except Exception:
        logger.warning("Could not ensure insights tables (DB may not be available)")
    yield


app = FastAPI(
    title="Insights Query Service",
    version="0.1.0",
    description="Natural-language questions over whitelisted CRM views, with SQL guardrails",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(insights.router, tags=["Insights"])
app.include_router(catalog.router, tags=["Catalog"])


# ── Error translation ────────────────────────────────────

@app.exception_handler(ExecutionError)
async def execution_error_handler(request: Request, exc: ExecutionError) -> JSONResponse:
    suggestion = exc.suggestion or GENERIC_SUGGESTION
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.message,
            "suggestion": suggestion,
            "textResponse": f"Desculpe, não consegui consultar os dados agora. {suggestion}",
        },
    )


@app.exception_handler(InsightsError)
async def insights_error_handler(request: Request, exc: InsightsError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s", request.url.path)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Erro interno ao processar a pergunta",
            "suggestion": GENERIC_SUGGESTION,
            "textResponse": f"Desculpe, ocorreu um erro inesperado. {GENERIC_SUGGESTION}",
        },
    )


@app.get("/health")
def health():
    return {"status": "ok"}
