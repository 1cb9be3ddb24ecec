"""
api/main.py

FastAPI application factory for the flow query surface.

State (repository, query engine) is injected once at startup through the
set_* helpers; routes fetch it through FastAPI dependencies so tests can
swap it with app.dependency_overrides or by calling the setters.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..query.engine import FlowQueryEngine
from ..storage.repository import FlowRepository
from .routes import flows as flows_router
from .routes import ingest as ingest_router

logger = logging.getLogger(__name__)

_repository: FlowRepository | None = None
_query_engine: FlowQueryEngine | None = None


def set_repository(repo: FlowRepository) -> None:
    global _repository
    _repository = repo


def get_repository() -> FlowRepository:
    if _repository is None:
        raise RuntimeError("Repository not initialised — call set_repository() first")
    return _repository


def set_query_engine(engine: FlowQueryEngine) -> None:
    global _query_engine
    _query_engine = engine


def get_query_engine() -> FlowQueryEngine:
    if _query_engine is None:
        raise RuntimeError("Query engine not initialised — call set_query_engine() first")
    return _query_engine


def create_app() -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("FastAPI startup")
        yield
        logger.info("FastAPI shutdown")

    app = FastAPI(
        title="FlowVault — NetFlow Traffic Store",
        version="1.0.0",
        description="nfcapd ingestion with 5-minute compaction and address-scoped traffic queries",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1:3000",
            "http://127.0.0.1:5173",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(flows_router.router,  prefix="/api")
    app.include_router(ingest_router.router, prefix="/api")

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    return app
