"""
SQL Chat Gate - SQL Safety Gate
===============================

Everything between the model's raw text and the database lives here:

    Generator output -> [SANITIZER] -> [GATE] -> [LIMIT ENFORCER] -> Database

1. SQLOutputSanitizer: strips code fences and surrounding whitespace
2. SQLSafetyValidator: single, read-only, schema-scoped SELECT or nothing
3. SQLLimitEnforcer:   appends a LIMIT to unbounded, non-aggregate queries

WHAT THIS IS NOT:
- NOT a SQL parser. The gate is a deny-list + allow-list heuristic.
  A keyword inside a string literal is rejected (false positive), and
  identifiers hidden behind unusual syntax can slip past the table scan
  (false negative). Deployments that need more should layer a real parser
  or fixed query templates on top, not widen these patterns.
- NOT SQL repair. Rejected statements are reported, never rewritten.
"""

import re
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

SQL_PREVIEW_CHARS = 80


def sql_preview(sql: Optional[str], full: bool = False) -> str:
    """Shorten generated SQL for log lines unless full logging is enabled."""
    if not sql:
        return ""
    flat = re.sub(r'\s+', ' ', sql).strip()
    if full or len(flat) <= SQL_PREVIEW_CHARS:
        return flat
    return flat[:SQL_PREVIEW_CHARS] + "..."


# =============================================================================
# SQL OUTPUT SANITIZER
# =============================================================================
# Models sometimes wrap the statement in markdown fences even when told not
# to. The sanitizer removes those presentation artifacts and nothing else.
# An empty or malformed result is passed on for the gate to reject.
# =============================================================================

class SQLOutputSanitizer:
    """Removes code-fence markers and surrounding whitespace from model output."""

    # ``` optionally followed by a language tag on its own line, or by "sql"
    LEADING_FENCE_PATTERN = re.compile(
        r'^```[ \t]*(?:[A-Za-z0-9_+.-]+[ \t]*(?:\r?\n|$)|sql\b)?',
        re.IGNORECASE
    )
    TRAILING_FENCE_PATTERN = re.compile(r'```$')

    def sanitize(self, raw_output: Optional[str]) -> str:
        """
        Strip fences and whitespace until nothing changes.

        Repeating to a fixed point makes the operation idempotent:
        sanitize(sanitize(x)) == sanitize(x).
        """
        if not raw_output:
            return ""

        text = raw_output.strip()
        while True:
            cleaned = self.LEADING_FENCE_PATTERN.sub("", text, count=1).strip()
            cleaned = self.TRAILING_FENCE_PATTERN.sub("", cleaned, count=1).strip()
            if cleaned == text:
                break
            text = cleaned

        if text != raw_output:
            logger.debug("[SANITIZER] Removed formatting artifacts from generator output")
        return text


# =============================================================================
# SQL SAFETY VALIDATOR (the gate)
# =============================================================================
# Decision procedure, first violation wins:
#   1. empty statement
#   2. more than one statement terminator
#   3. not a SELECT
#   4. forbidden keyword / comment introducer
#   5. FROM/JOIN target that is not a table or subquery
#   6. table outside the allow-list
# =============================================================================

@dataclass
class ValidationResult:
    """
    Outcome of a gate check.

    Attributes:
        ok: True when the statement may be executed
        reason: Why the statement was rejected (None when ok)
    """
    ok: bool
    reason: Optional[str] = None


# Identifier: back-tick quoted, double-quote quoted, or bare
_IDENT = r'(?:`[^`]+`|"[^"]+"|[A-Za-z0-9_$]+)'


class SQLSafetyValidator:
    """
    Rejects anything that is not a single, read-only, schema-scoped SELECT.

    Pure: no I/O, no state between calls.
    """

    READ_ONLY_PATTERN = re.compile(r'^SELECT\b', re.IGNORECASE)

    FORBIDDEN_KEYWORDS = (
        "INSERT", "UPDATE", "DELETE", "DROP", "ALTER",
        "CREATE", "TRUNCATE", "GRANT", "REVOKE",
        "SHOW", "DESCRIBE", "USE", "WITH",
    )
    # Comment introducers match anywhere, not as tokens
    FORBIDDEN_TOKENS = ("--", "/*", "*/")

    KEYWORD_PATTERNS = [
        (keyword, re.compile(rf'\b{keyword}\b', re.IGNORECASE))
        for keyword in FORBIDDEN_KEYWORDS
    ]

    # No whitespace required: FROM"t", FROM`t` and FROM(t) are all table references
    TABLE_CLAUSE_PATTERN = re.compile(r'\b(?:FROM|JOIN)\b', re.IGNORECASE)
    TABLE_NAME_PATTERN = re.compile(rf'{_IDENT}(?:\s*\.\s*{_IDENT})*')
    OPENING_PATTERN = re.compile(r'[\s(]*')
    SUBQUERY_PATTERN = re.compile(r'SELECT\b', re.IGNORECASE)
    # ", next_table" optionally preceded by an alias: FROM a x, (b) y
    TABLE_LIST_PATTERN = re.compile(rf'[\s)]*(?:(?:AS\s+)?{_IDENT}[\s)]*)?,', re.IGNORECASE)
    IDENT_PATTERN = re.compile(_IDENT)

    def validate(self, sql: Optional[str], allowed_tables: Iterable[str]) -> ValidationResult:
        """
        Run the gate.

        Args:
            sql: Sanitized candidate statement
            allowed_tables: Table names the statement may touch (any case)

        Returns:
            ValidationResult; reason names the offending keyword or tables
        """
        if not sql or not sql.strip():
            return self._reject("Empty SQL statement")

        statement = sql.strip()

        terminators = statement.count(";")
        if terminators > 1 or (terminators == 1 and not statement.endswith(";")):
            return self._reject("Multiple statements not allowed")

        if not self.READ_ONLY_PATTERN.match(statement):
            return self._reject("Only SELECT queries are allowed")

        forbidden = self.find_forbidden_keyword(statement)
        if forbidden:
            return self._reject(f"Forbidden keyword detected: {forbidden}")

        allowed = {t.lower() for t in allowed_tables}
        referenced, unresolved = self.scan_table_references(statement)
        if unresolved:
            return self._reject(f"Unrecognized table reference: {unresolved[0]}")

        not_allowed = [t for t in dict.fromkeys(referenced) if t not in allowed]
        if not_allowed:
            return self._reject(f"Disallowed table(s): {', '.join(not_allowed)}")

        logger.debug(f"[GATE] Accepted statement referencing {referenced or 'no tables'}")
        return ValidationResult(ok=True)

    def find_forbidden_keyword(self, sql: str) -> Optional[str]:
        """Return the first deny-listed keyword or token found, else None."""
        for keyword, pattern in self.KEYWORD_PATTERNS:
            if pattern.search(sql):
                return keyword
        for token in self.FORBIDDEN_TOKENS:
            if token in sql:
                return token
        return None

    def extract_table_references(self, sql: str) -> List[str]:
        """
        Collect the lower-cased table names that follow FROM or JOIN.

        Handles quoted identifiers, schema-qualified names (kept qualified,
        e.g. "shop.farmers"), parenthesized names ("FROM (t)") and comma
        lists ("FROM a x, b y"). A "(SELECT" is skipped here; its own FROM
        is picked up.
        """
        tables, _ = self.scan_table_references(sql)
        return tables

    def scan_table_references(self, sql: str) -> Tuple[List[str], List[str]]:
        """
        Scan every FROM/JOIN clause.

        Returns:
            (tables, unresolved) where unresolved holds the text following
            any FROM/JOIN that is neither a table name nor a subquery
        """
        tables: List[str] = []
        unresolved: List[str] = []
        for clause in self.TABLE_CLAUSE_PATTERN.finditer(sql):
            pos = clause.end()
            while True:
                opening = self.OPENING_PATTERN.match(sql, pos)
                pos = opening.end()
                if "(" in opening.group(0) and self.SUBQUERY_PATTERN.match(sql, pos):
                    break
                name_match = self.TABLE_NAME_PATTERN.match(sql, pos)
                if not name_match:
                    unresolved.append(sql[clause.start():pos + 20].strip())
                    break
                tables.append(self._normalize_table_name(name_match.group(0)))
                list_match = self.TABLE_LIST_PATTERN.match(sql, name_match.end())
                if not list_match:
                    break
                pos = list_match.end()
        return tables, unresolved

    def _normalize_table_name(self, raw_name: str) -> str:
        parts = [p.strip('`"').strip() for p in self.IDENT_PATTERN.findall(raw_name)]
        return ".".join(parts).lower()

    def _reject(self, reason: str) -> ValidationResult:
        logger.warning(f"[GATE] REJECTED: {reason}")
        return ValidationResult(ok=False, reason=reason)


# =============================================================================
# LIMIT ENFORCER
# =============================================================================
# Caps returned rows. Scalar aggregates and already-bounded statements are
# left alone; everything else gets LIMIT <default> appended. Idempotent.
# =============================================================================

@dataclass
class LimitEnforcementResult:
    """
    Result of LIMIT enforcement.

    Attributes:
        sql: The statement to execute
        limit_applied: Whether a LIMIT clause was appended
        is_aggregate: Whether an aggregate call was detected
        original_limit: The LIMIT already present (if any)
        enforced_limit: The LIMIT now in effect (None for unbounded aggregates)
    """
    sql: str
    limit_applied: bool
    is_aggregate: bool
    original_limit: Optional[int]
    enforced_limit: Optional[int]


class SQLLimitEnforcer:
    """Appends a default LIMIT to unbounded, non-aggregate statements."""

    DEFAULT_LIMIT = 100

    LIMIT_PATTERN = re.compile(r'\bLIMIT\s+(\d+)', re.IGNORECASE)
    AGGREGATION_PATTERN = re.compile(r'\b(COUNT|SUM|AVG|MIN|MAX)\s*\(', re.IGNORECASE)

    def __init__(self, default_limit: Optional[int] = None):
        limit = default_limit if default_limit is not None else self.DEFAULT_LIMIT
        if limit <= 0:
            raise ValueError(f"default_limit must be a positive integer, got {limit}")
        self.default_limit = limit

    def is_aggregate_query(self, sql: str) -> bool:
        return bool(self.AGGREGATION_PATTERN.search(sql or ""))

    def enforce_limit(self, sql: Optional[str]) -> LimitEnforcementResult:
        if not sql or not sql.strip():
            return LimitEnforcementResult(
                sql=sql or "",
                limit_applied=False,
                is_aggregate=False,
                original_limit=None,
                enforced_limit=None,
            )

        sql = sql.strip()
        is_aggregate = self.is_aggregate_query(sql)
        limit_match = self.LIMIT_PATTERN.search(sql)

        if limit_match or is_aggregate:
            original_limit = int(limit_match.group(1)) if limit_match else None
            return LimitEnforcementResult(
                sql=sql,
                limit_applied=False,
                is_aggregate=is_aggregate,
                original_limit=original_limit,
                enforced_limit=original_limit,
            )

        # Terminator goes away so the clause lands inside the statement
        sql_clean = sql.rstrip(";").rstrip()
        bounded_sql = f"{sql_clean} LIMIT {self.default_limit}"

        return LimitEnforcementResult(
            sql=bounded_sql,
            limit_applied=True,
            is_aggregate=False,
            original_limit=None,
            enforced_limit=self.default_limit,
        )


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def sanitize_sql(raw_output: Optional[str]) -> str:
    """Convenience function to strip formatting artifacts."""
    return SQLOutputSanitizer().sanitize(raw_output)


def validate_sql(sql: Optional[str], allowed_tables: Iterable[str]) -> ValidationResult:
    """Convenience function to run the safety gate."""
    return SQLSafetyValidator().validate(sql, allowed_tables)


def extract_table_references(sql: str) -> List[str]:
    """Table names referenced after FROM/JOIN, lower-cased."""
    return SQLSafetyValidator().extract_table_references(sql)


def enforce_limit(sql: Optional[str], default_limit: int = SQLLimitEnforcer.DEFAULT_LIMIT) -> str:
    """Convenience function returning only the bounded SQL text."""
    return SQLLimitEnforcer(default_limit).enforce_limit(sql).sql
