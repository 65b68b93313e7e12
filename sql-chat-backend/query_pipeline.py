"""
QueryPipeline - Orchestration Controller

Takes a single question through:
- Schema cache (grounding context + allow-list)
- SQL generation
- Sanitizer -> gate -> limit enforcer
- Execution

Contains NO safety logic of its own; sql_validator decides.
Every outcome, including collaborator failures, comes back as a
PipelineResult. Nothing raises out of handle().
"""

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from dataclasses import dataclass, field

from database import ExecutionError, QueryResult
from schema_cache import CacheEntry, SchemaFetchError
from sql_generator import OUT_OF_SCOPE_SENTINEL, GenerationError
from sql_validator import (
    SQLOutputSanitizer,
    SQLSafetyValidator,
    SQLLimitEnforcer,
    sql_preview,
)

logger = logging.getLogger(__name__)


# =============================================================================
# OUTCOME TYPES
# =============================================================================

class PipelineStage(str, Enum):
    """Last state a request reached."""
    RECEIVED = "received"
    SCHEMA_READY = "schema-ready"
    SQL_GENERATED = "sql-generated"
    OUT_OF_SCOPE = "out-of-scope"
    SQL_SANITIZED = "sql-sanitized"
    SQL_REJECTED = "sql-rejected"
    SQL_VALIDATED = "sql-validated"
    LIMIT_APPLIED = "limit-applied"
    EXECUTED = "executed"
    EXECUTION_FAILED = "execution-failed"


class ErrorKind(str, Enum):
    INPUT = "input"
    OUT_OF_SCOPE = "out_of_scope"
    VALIDATION = "validation"
    SCHEMA_FETCH = "schema_fetch"
    GENERATION = "generation"
    EXECUTION = "execution"


@dataclass
class PipelineResult:
    """Result from pipeline."""
    success: bool
    question: str
    stage: Optional[PipelineStage]
    execution_time: float
    sql_query: Optional[str] = None
    columns: List[str] = field(default_factory=list)
    rows: List[Dict[str, Any]] = field(default_factory=list)
    error_kind: Optional[ErrorKind] = None
    error: Optional[str] = None
    # Gate rejections only
    generated_sql: Optional[str] = None
    reason: Optional[str] = None

    @property
    def row_count(self) -> int:
        return len(self.rows)


# =============================================================================
# QUERY PIPELINE
# =============================================================================

class QueryPipeline:
    """
    Pure orchestration.

    FLOW:
    1. Reject blank questions
    2. Schema from cache (optionally forced refresh)
    3. Generate SQL; sentinel -> out of scope
    4. Sanitize -> validate against cached tables -> enforce LIMIT
    5. Execute

    Blocking collaborators (cache fetch, LLM, database) run on worker
    threads so concurrent requests don't serialize on the event loop.
    """

    def __init__(
        self,
        schema_cache: Any,
        generator: Any,
        execute_fn: Callable[[str], QueryResult],
        default_row_limit: int = SQLLimitEnforcer.DEFAULT_LIMIT,
        log_full_sql: bool = False,
    ):
        """
        Args:
            schema_cache: Object with get(force_refresh) -> CacheEntry
            generator: Object with generate(question, entry) -> str
            execute_fn: Runs a gated statement, returns QueryResult
            default_row_limit: LIMIT appended to unbounded statements
            log_full_sql: Log generated SQL untruncated (development only)
        """
        self.schema_cache = schema_cache
        self.generator = generator
        self.execute = execute_fn
        self.sanitizer = SQLOutputSanitizer()
        self.validator = SQLSafetyValidator()
        self.limit_enforcer = SQLLimitEnforcer(default_row_limit)
        self.log_full_sql = log_full_sql

        logger.info(f"QueryPipeline initialized (default LIMIT {default_row_limit})")

    async def handle(self, question: Optional[str], refresh_schema: bool = False) -> PipelineResult:
        """
        Main entry point.

        Returns:
            PipelineResult; success only when the statement executed
        """
        start = datetime.now()

        if question is None or not question.strip():
            return self._failure(
                question or "", None, start, ErrorKind.INPUT, "question is required"
            )

        logger.info(f"[PIPELINE] Question received: {question[:60]}...")
        stage = PipelineStage.RECEIVED

        # =================================================================
        # SCHEMA
        # =================================================================
        try:
            entry: CacheEntry = await asyncio.to_thread(self.schema_cache.get, refresh_schema)
        except SchemaFetchError as e:
            return self._failure(question, stage, start, ErrorKind.SCHEMA_FETCH, str(e))
        except Exception as e:
            logger.exception("[PIPELINE] Schema cache raised unexpectedly")
            return self._failure(question, stage, start, ErrorKind.SCHEMA_FETCH, str(e))
        stage = PipelineStage.SCHEMA_READY

        # =================================================================
        # GENERATION
        # =================================================================
        try:
            raw = await asyncio.to_thread(self.generator.generate, question, entry)
        except GenerationError as e:
            return self._failure(question, stage, start, ErrorKind.GENERATION, str(e))
        except Exception as e:
            logger.exception("[PIPELINE] Generator raised unexpectedly")
            return self._failure(question, stage, start, ErrorKind.GENERATION, str(e))

        if not isinstance(raw, str) or not raw.strip():
            logger.warning(f"[PIPELINE] Generator returned no SQL text: {raw!r}")
            return self._failure(question, stage, start, ErrorKind.GENERATION, "No response from LLM")
        stage = PipelineStage.SQL_GENERATED

        if raw.strip() == OUT_OF_SCOPE_SENTINEL:
            logger.info("[PIPELINE] Generator declared question out of scope")
            return self._failure(
                question, PipelineStage.OUT_OF_SCOPE, start, ErrorKind.OUT_OF_SCOPE,
                "Sorry, this question is not related to the database schema.",
            )

        # =================================================================
        # GATE
        # =================================================================
        sql = self.sanitizer.sanitize(raw)
        stage = PipelineStage.SQL_SANITIZED
        logger.info(f"[PIPELINE] Generated SQL: {sql_preview(sql, self.log_full_sql)}")

        verdict = self.validator.validate(sql, entry.allowed_tables)
        if not verdict.ok:
            result = self._failure(
                question, PipelineStage.SQL_REJECTED, start, ErrorKind.VALIDATION,
                f"Blocked unsafe SQL: {verdict.reason}",
            )
            result.generated_sql = sql
            result.reason = verdict.reason
            return result
        stage = PipelineStage.SQL_VALIDATED

        bounded = self.limit_enforcer.enforce_limit(sql)
        sql = bounded.sql
        stage = PipelineStage.LIMIT_APPLIED
        if bounded.limit_applied:
            logger.info(f"[PIPELINE] Appended LIMIT {bounded.enforced_limit}")
        elif bounded.original_limit is not None:
            logger.info(f"[PIPELINE] Existing LIMIT {bounded.original_limit} kept")
        elif bounded.is_aggregate:
            logger.debug("[PIPELINE] Aggregate query, no LIMIT appended")

        # =================================================================
        # EXECUTION
        # =================================================================
        try:
            query_result: QueryResult = await asyncio.to_thread(self.execute, sql)
        except ExecutionError as e:
            return self._execution_failure(question, sql, start, str(e))
        except Exception as e:
            logger.exception("[PIPELINE] Executor raised unexpectedly")
            return self._execution_failure(question, sql, start, str(e))

        elapsed = self._elapsed(start)
        logger.info(f"[PIPELINE] Executed in {elapsed:.2f}s: {query_result.row_count} rows")
        return PipelineResult(
            success=True,
            question=question,
            stage=PipelineStage.EXECUTED,
            execution_time=elapsed,
            sql_query=sql,
            columns=query_result.columns,
            rows=query_result.rows,
        )

    def _execution_failure(self, question: str, sql: str, start: datetime, message: str) -> PipelineResult:
        result = self._failure(
            question, PipelineStage.EXECUTION_FAILED, start, ErrorKind.EXECUTION, message
        )
        result.sql_query = sql
        return result

    def _failure(
        self,
        question: str,
        stage: Optional[PipelineStage],
        start: datetime,
        kind: ErrorKind,
        message: str,
    ) -> PipelineResult:
        level = logging.ERROR if kind in (
            ErrorKind.SCHEMA_FETCH, ErrorKind.GENERATION, ErrorKind.EXECUTION
        ) else logging.INFO
        logger.log(level, f"[PIPELINE] Stopped at {stage.value if stage else 'input'} ({kind.value}): {message}")
        return PipelineResult(
            success=False,
            question=question,
            stage=stage,
            execution_time=self._elapsed(start),
            error_kind=kind,
            error=message,
        )

    def _elapsed(self, start: datetime) -> float:
        return (datetime.now() - start).total_seconds()
