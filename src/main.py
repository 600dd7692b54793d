"""
TicketFlow Triage - Main Application
=====================================

Ticket triage decision engine service.

Modules:
- Triage: classify tickets, find similar resolved tickets, assess risk and
  decide between auto-resolve and human review, with a full audit trail

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Engine, services and DTOs
- Domain: Entities, value objects and decision rules
- Infrastructure: Database, in-memory stores, policy file loader
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

# Configuration and Core
from src.config import Settings, settings
from src.core import ApplicationException

# Infrastructure
from src.infrastructure.database import close_database, create_tables, init_database

# Triage Module
from src.triage.application import (
    AuditLogger,
    CorpusFeatureCache,
    IAuditLogRepository,
    ICorpusRepository,
    IDecisionRepository,
    ITicketRepository,
    KeywordClassifier,
    KeywordSimilarityIndex,
    TriageEngine,
)
from src.triage.infrastructure import (
    InMemoryAuditLogRepository,
    InMemoryCorpusRepository,
    InMemoryDecisionRepository,
    InMemoryTicketRepository,
    PolicyConfigManager,
    SQLAlchemyAuditLogRepository,
    SQLAlchemyCorpusRepository,
    SQLAlchemyDecisionRepository,
    SQLAlchemyTicketRepository,
)
from src.triage.interfaces import triage_router

# Shared
from src.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
)
from src.shared.infrastructure.logging import get_logger, setup_logging

logger = get_logger(__name__)


@dataclass
class Repositories:
    """Storage backing one engine instance."""
    tickets: ITicketRepository
    decisions: IDecisionRepository
    audit_log: IAuditLogRepository
    corpus: ICorpusRepository


def build_repositories(storage_backend: str) -> Repositories:
    if storage_backend == "memory":
        return Repositories(
            tickets=InMemoryTicketRepository(),
            decisions=InMemoryDecisionRepository(),
            audit_log=InMemoryAuditLogRepository(),
            corpus=InMemoryCorpusRepository(),
        )
    return Repositories(
        tickets=SQLAlchemyTicketRepository(),
        decisions=SQLAlchemyDecisionRepository(),
        audit_log=SQLAlchemyAuditLogRepository(),
        corpus=SQLAlchemyCorpusRepository(),
    )


def build_engine(
    repositories: Repositories,
    policy_manager: PolicyConfigManager,
    config: Settings = settings
) -> TriageEngine:
    """Wire the engine and its capabilities from settings."""
    def policy_provider():
        return policy_manager.config

    feature_cache = CorpusFeatureCache()
    return TriageEngine(
        tickets=repositories.tickets,
        decisions=repositories.decisions,
        corpus=repositories.corpus,
        audit_logger=AuditLogger(
            repositories.audit_log,
            retries=config.audit_write_retries,
            backoff_seconds=config.audit_retry_backoff_seconds,
        ),
        classifier=KeywordClassifier(repositories.corpus, policy_provider, feature_cache),
        similarity_index=KeywordSimilarityIndex(repositories.corpus, policy_provider, feature_cache),
        policy_provider=policy_provider,
        departments=config.departments,
        classification_timeout=config.classification_timeout_seconds,
        similarity_timeout=config.similarity_timeout_seconds,
        actor=config.engine_actor,
        id_prefix=config.ticket_id_prefix,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Load engine policy and start watching it
    3. Initialize storage (database tables or in-memory stores)
    4. Build the triage engine

    SHUTDOWN:
    1. Stop policy watcher
    2. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Triage Service", extra={
        "version": settings.app_version,
        "environment": settings.environment,
        "storage_backend": settings.storage_backend
    })
    app.state.settings = settings

    logger.info("Loading engine policy")
    policy_manager = PolicyConfigManager()
    policy_manager.load(settings.policy_config_path)
    if settings.policy_hot_reload:
        policy_manager.start_watching()
    app.state.policy_manager = policy_manager

    if settings.storage_backend == "database":
        logger.info("Initializing database")
        init_database()
        # Tables for development; production schemas come from migrations
        try:
            await create_tables()
        except (SQLAlchemyError, OSError) as e:
            logger.warning(f"Database not available - requests will fail until it is: {e}")

    app.state.engine = build_engine(build_repositories(settings.storage_backend), policy_manager)

    logger.info("Triage Service started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Triage Service")
    policy_manager.stop_watching()
    if settings.storage_backend == "database":
        await close_database()
    logger.info("Triage Service shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="TicketFlow Triage API",
    description="""
    ## Ticket Triage Decision Engine

    Classifies incoming IT support tickets, compares them with previously
    resolved tickets and decides whether the ticket can be auto-resolved or
    needs human review. Every decision carries an explainable decision path
    and is recorded in an append-only audit log.

    ---

    ### Decision Rules (first match wins)

    1. Business critical → escalate to a human
    2. Confidence ≥ 80, SLA risk low and similarity ≥ 65 → auto resolve
    3. Otherwise → escalate to a human

    ---

    ### Endpoints

    - `POST /triage/tickets` - Submit a ticket for a decision
    - `GET /triage/tickets/{id}/decision` - Get the decision
    - `POST /triage/tickets/{id}/actions` - Approve, modify or override
    - `GET /triage/tickets/{id}/audit` - Audit trail
    - `GET /triage/analytics/summary` - Aggregate analytics
    - `POST /triage/analyze` - Preview a decision without recording it
    - `POST /triage/corpus` - Add a resolved ticket to the corpus
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)
app.state.settings = settings

# === CORS Middleware ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# === Custom Middleware (from shared) ===
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIDMiddleware)
app.add_exception_handler(ApplicationException, application_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(triage_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"], responses={
    200: {
        "description": "Service is healthy",
        "content": {
            "application/json": {
                "example": {
                    "status": "healthy",
                    "version": "1.0.0",
                    "environment": "development",
                    "checks": {
                        "storage_backend": "database",
                        "engine": "ready",
                        "corpus": "available (42 entries)",
                        "policy": "triage_policy.yaml (watching)"
                    }
                }
            }
        }
    }
})
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Returns service health status including:
    - Storage backend in use
    - Engine readiness and corpus size
    - Policy source and whether it is hot-reloaded
    """
    engine = getattr(request.app.state, "engine", None)
    policy_manager = getattr(request.app.state, "policy_manager", None)

    checks = {
        "storage_backend": settings.storage_backend,
        "engine": "ready" if engine else "not_initialized",
        "corpus": "unknown",
        "policy": "not_loaded",
    }
    status = "healthy" if engine else "degraded"

    if engine is not None:
        try:
            checks["corpus"] = f"available ({await engine.corpus_size()} entries)"
        except ApplicationException as e:
            checks["corpus"] = f"error: {e.message}"
            status = "degraded"

    if policy_manager is not None:
        watching = "watching" if policy_manager.is_watching else "static"
        checks["policy"] = f"{policy_manager.source} ({watching})"

    return {
        "status": status,
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": "TicketFlow Triage",
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "triage": {
                "prefix": "/triage",
                "endpoints": [
                    "POST /triage/tickets - Submit ticket for a decision",
                    "GET /triage/tickets/{id}/decision - Get decision",
                    "POST /triage/tickets/{id}/actions - Record reviewer action",
                    "GET /triage/tickets/{id}/audit - Get audit trail",
                    "GET /triage/analytics/summary - Get analytics summary",
                    "POST /triage/analyze - Preview decision",
                    "POST /triage/corpus - Add corpus entry"
                ]
            }
        }
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
