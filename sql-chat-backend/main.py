"""
SQL Chat Gate - Natural-Language Questions over a Relational Database
=====================================================================

One question in, one gated SELECT out:

    question -> schema cache -> LLM (one-shot) -> sanitizer -> gate
             -> limit enforcer -> database -> rows

The LLM only drafts SQL. Whether it runs is decided by sql_validator:
read-only, single statement, known tables, bounded result size.

Endpoints:
- POST /api/chat     question -> rows
- GET  /api/schema   cached schema + samples (development diagnostics only)
- GET  /health       database + cache status
"""

from fastapi import FastAPI, HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel
from typing import Optional
import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass

from database import DatabaseManager
from query_pipeline import ErrorKind, PipelineResult, QueryPipeline
from schema_cache import SchemaCache, SchemaFetchError
from settings import Settings, load_settings
from sql_generator import SQLGenerator, create_groq_llm

APP_LOGGERS = [
    __name__,
    "database",
    "query_pipeline",
    "schema_cache",
    "sql_generator",
    "sql_validator",
]

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO"):
    """WARNING for libraries, configured level for our own modules"""
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    for name in APP_LOGGERS:
        logging.getLogger(name).setLevel(level)


@dataclass
class AppComponents:
    """Long-lived collaborators shared by all requests"""
    schema_cache: SchemaCache
    pipeline: QueryPipeline
    db_manager: Optional[DatabaseManager] = None


def build_components(settings: Settings) -> AppComponents:
    """Wire database, cache, generator and pipeline from settings"""
    if not settings.database_url:
        raise ValueError("DATABASE_URL not found in environment variables!")

    db_manager = DatabaseManager(settings.database_url, schema=settings.database_schema)
    llm = create_groq_llm(settings)

    schema_cache = SchemaCache(
        fetcher=lambda: db_manager.fetch_schema_and_samples(settings.schema_sample_rows),
        ttl_seconds=settings.schema_cache_ttl_seconds,
    )
    generator = SQLGenerator(
        llm,
        dialect=db_manager.dialect_name,
        row_limit=settings.default_row_limit,
    )
    pipeline = QueryPipeline(
        schema_cache=schema_cache,
        generator=generator,
        execute_fn=db_manager.execute_query,
        default_row_limit=settings.default_row_limit,
        log_full_sql=settings.log_full_sql,
    )
    return AppComponents(schema_cache=schema_cache, pipeline=pipeline, db_manager=db_manager)


class ChatRequest(BaseModel):
    question: Optional[str] = None
    refreshSchema: bool = False


def pipeline_response(result: PipelineResult) -> JSONResponse:
    """Map a pipeline outcome onto the HTTP contract"""
    if result.success:
        return JSONResponse(
            status_code=200,
            content=jsonable_encoder({
                "question": result.question,
                "query": result.sql_query,
                "rows": result.rows,
                "rowCount": result.row_count,
            }),
        )

    if result.error_kind == ErrorKind.INPUT:
        return JSONResponse(status_code=400, content={"error": result.error})

    if result.error_kind == ErrorKind.OUT_OF_SCOPE:
        return JSONResponse(
            status_code=400,
            content={"question": result.question, "message": result.error},
        )

    if result.error_kind == ErrorKind.VALIDATION:
        return JSONResponse(
            status_code=400,
            content={
                "question": result.question,
                "generated": result.generated_sql,
                "reason": result.reason,
                "error": result.error,
            },
        )

    # SCHEMA_FETCH, GENERATION, EXECUTION
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "details": result.error},
    )


def create_app(
    settings: Optional[Settings] = None,
    components: Optional[AppComponents] = None,
) -> FastAPI:
    """
    Build the FastAPI app.

    Args:
        settings: Configuration (loaded from the environment when None)
        components: Pre-built collaborators; when None they are built at startup
    """
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Initialize system on startup, cleanup on shutdown"""
        if app.state.components is None:
            try:
                logger.info("Initializing SQL Chat Gate...")
                app.state.components = build_components(settings)
                logger.info("=" * 60)
                logger.info("SQL Chat Gate Ready!")
                logger.info(f"Model: {settings.groq_model}")
                logger.info(f"Schema cache TTL: {settings.schema_cache_ttl_seconds}s")
                logger.info(f"Schema endpoint: {'ON' if settings.enable_schema_endpoint else 'OFF'}")
                logger.info("=" * 60)
            except Exception as e:
                logger.error(f"Startup failed: {str(e)}")
                raise

        yield  # Server is running

        logger.info("Shutting down SQL Chat Gate...")
        db_manager = app.state.components.db_manager if app.state.components else None
        if db_manager is not None:
            db_manager.dispose()

    app = FastAPI(
        title="SQL Chat Gate API",
        description="Natural-language questions answered by gated, read-only SQL",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.components = components

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def get_components() -> AppComponents:
        if app.state.components is None:
            raise HTTPException(status_code=503, detail="Service not initialized")
        return app.state.components

    @app.get("/", response_class=PlainTextResponse)
    async def root():
        return "SQL Chatbot Server is Running"

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        if app.state.components is None:
            return {"status": "unhealthy", "error": "Service not initialized"}

        current = app.state.components
        if current.db_manager is None:
            database = "not configured"
        else:
            reachable = await asyncio.to_thread(current.db_manager.ping)
            database = "connected" if reachable else "unreachable"

        return {
            "status": "healthy" if database != "unreachable" else "degraded",
            "database": database,
            "schemaCache": current.schema_cache.get_stats(),
        }

    @app.post("/api/chat")
    async def chat(request: Optional[ChatRequest] = None):
        current = get_components()
        # An absent body is a missing question, not a malformed request
        request = request or ChatRequest()
        result = await current.pipeline.handle(request.question, refresh_schema=request.refreshSchema)
        return pipeline_response(result)

    @app.get("/api/schema")
    async def get_schema():
        """Cached schema and sample rows. Diagnostic only."""
        if not settings.enable_schema_endpoint:
            raise HTTPException(status_code=404, detail="Not Found")

        current = get_components()
        try:
            entry = await asyncio.to_thread(current.schema_cache.get)
        except SchemaFetchError as e:
            return JSONResponse(
                status_code=500,
                content={"error": "Internal server error", "details": str(e)},
            )
        return jsonable_encoder(entry.to_dict())

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    from env_guard import validate_environment

    validate_environment(strict=True)
    uvicorn.run(app, host=app.state.settings.host, port=app.state.settings.port)
