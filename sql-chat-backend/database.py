"""
SQL Chat Gate - Database Access
===============================

Thin SQLAlchemy layer with two jobs:
1. Fetch table columns + a few sample rows (feeds the schema cache)
2. Execute one already-gated SELECT and return its rows

Every call opens a scoped connection and releases it on every exit path.
No validation happens here; statements arrive through the gate.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import column, create_engine, inspect, select, table, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from schema_cache import SampleSet, SchemaSnapshot

logger = logging.getLogger(__name__)


class ExecutionError(Exception):
    """Raised when the database rejects or fails a statement. Carries the driver message."""


@dataclass
class QueryResult:
    """Rows returned by an executed statement"""
    columns: List[str] = field(default_factory=list)
    rows: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)


def _driver_message(error: SQLAlchemyError) -> str:
    # DBAPI errors wrap the driver exception in .orig
    orig = getattr(error, "orig", None)
    return str(orig) if orig is not None else str(error)


class DatabaseManager:
    """Manages database connection and schema reflection"""

    def __init__(
        self,
        database_url: Optional[str] = None,
        schema: Optional[str] = None,
        engine: Optional[Engine] = None,
    ):
        """
        Initialize database connection

        Args:
            database_url: SQLAlchemy URL (ignored when engine is given)
            schema: Restrict reflection to this schema; names become "schema.table"
            engine: Pre-built engine (tests, custom pooling)
        """
        if engine is None and not database_url:
            raise ValueError("database_url or engine is required")
        self.engine = engine if engine is not None else create_engine(database_url, pool_pre_ping=True)
        self.schema = schema
        logger.info(f"Database engine ready (dialect: {self.dialect_name}, schema: {schema or 'default'})")

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    def _qualified(self, table_name: str) -> str:
        return f"{self.schema}.{table_name}" if self.schema else table_name

    def fetch_schema_and_samples(self, sample_limit: int = 3) -> Tuple[SchemaSnapshot, SampleSet]:
        """
        Enumerate tables visible to the configured credentials.

        For each table: ordered column names, then up to sample_limit rows.

        Returns:
            (schema, samples) keyed by table name
        """
        schema: SchemaSnapshot = {}
        samples: SampleSet = {}

        with self.engine.connect() as conn:
            inspector = inspect(conn)
            for table_name in inspector.get_table_names(schema=self.schema):
                column_names = [col["name"] for col in inspector.get_columns(table_name, schema=self.schema)]
                key = self._qualified(table_name)
                schema[key] = column_names

                if sample_limit > 0 and column_names:
                    sample_table = table(
                        table_name,
                        *[column(name) for name in column_names],
                        schema=self.schema,
                    )
                    rows = conn.execute(select(sample_table).limit(sample_limit)).mappings().all()
                    samples[key] = [dict(row) for row in rows]
                else:
                    samples[key] = []

        logger.info(f"Schema fetched: {len(schema)} tables, up to {sample_limit} sample rows each")
        return schema, samples

    def execute_query(self, sql: str) -> QueryResult:
        """
        Execute a gated SELECT statement

        Raises:
            ExecutionError: With the driver's message when the statement fails
        """
        try:
            with self.engine.connect() as conn:
                result = conn.execute(text(sql))
                columns = list(result.keys())
                rows = [dict(row._mapping) for row in result.fetchall()]
        except SQLAlchemyError as e:
            message = _driver_message(e)
            logger.error(f"Query execution failed: {message}")
            raise ExecutionError(message) from e

        logger.info(f"Query executed: {len(rows)} rows returned")
        return QueryResult(columns=columns, rows=rows)

    def ping(self) -> bool:
        """True when a trivial round trip succeeds"""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.warning(f"Database ping failed: {_driver_message(e)}")
            return False

    def dispose(self):
        self.engine.dispose()
