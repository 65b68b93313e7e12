"""
SQL Chat Gate - SQL Generator
=============================

One-shot LLM call: question + grounding context in, one SQL statement
(or the OUT_OF_SCOPE sentinel) out.

No agent, no tools, no retries. Whatever comes back is untrusted text;
the sanitizer and the gate decide what happens to it.
"""

import logging
from typing import Any

from llama_index.llms.groq import Groq

from schema_cache import CacheEntry
from settings import Settings

logger = logging.getLogger(__name__)

OUT_OF_SCOPE_SENTINEL = "OUT_OF_SCOPE"

DIALECT_LABELS = {
    "mysql": "MySQL",
    "mariadb": "MariaDB",
    "postgresql": "PostgreSQL",
    "sqlite": "SQLite",
    "mssql": "SQL Server",
    "oracle": "Oracle",
}

PROMPT_TEMPLATE = """You are a strict {dialect} SQL assistant. Use ONLY the schema and sample rows provided below.

{schema_text}

RULES:
- Return ONLY one valid {dialect} SELECT statement and nothing else (no explanation, no code fences).
- If the question cannot be answered using ONLY this schema, reply exactly: {sentinel}
- DO NOT output INSERT/UPDATE/DELETE/DROP/ALTER/CREATE/TRUNCATE/GRANT/REVOKE/SHOW/DESCRIBE/USE/WITH.
- For non-aggregate queries include LIMIT {row_limit} if not present.
- Use table and column names exactly as provided.

User question:
{question}"""


class GenerationError(Exception):
    """Raised when the model call fails or returns nothing."""


def create_groq_llm(settings: Settings) -> Groq:
    """Build the Groq LLM from settings"""
    if not settings.groq_api_key:
        raise ValueError(
            "GROQ_API_KEY not found! Set it in your environment. "
            "You can get one at: https://console.groq.com/keys"
        )
    llm = Groq(
        model=settings.groq_model,
        api_key=settings.groq_api_key,
        temperature=settings.llm_temperature,
        max_output_tokens=settings.llm_max_output_tokens,
    )
    logger.info(f"Groq LLM initialized: {settings.groq_model}")
    return llm


class SQLGenerator:
    """Drafts one SQL statement per question with a llama-index LLM"""

    def __init__(self, llm: Any, dialect: str = "sql", row_limit: int = 100):
        """
        Args:
            llm: Any llama-index LLM exposing complete(prompt)
            dialect: SQLAlchemy dialect name, used to phrase the prompt
            row_limit: LIMIT hint given to the model
        """
        self.llm = llm
        dialect = dialect or "sql"
        self.dialect = DIALECT_LABELS.get(dialect.lower(), dialect.upper())
        self.row_limit = row_limit

    def build_prompt(self, question: str, entry: CacheEntry) -> str:
        return PROMPT_TEMPLATE.format(
            dialect=self.dialect,
            schema_text=entry.to_prompt_text() or "(no tables visible)",
            sentinel=OUT_OF_SCOPE_SENTINEL,
            row_limit=self.row_limit,
            question=question.strip(),
        )

    def generate(self, question: str, entry: CacheEntry) -> str:
        """
        Ask the model for a statement.

        Returns:
            The model's text, whitespace-trimmed (may be the sentinel)

        Raises:
            GenerationError: Provider failure or empty response
        """
        prompt = self.build_prompt(question, entry)
        try:
            response = self.llm.complete(prompt)
        except Exception as e:
            logger.error(f"LLM call failed: {e}")
            raise GenerationError(f"LLM call failed: {e}") from e

        text = (getattr(response, "text", None) or "").strip()
        if not text:
            raise GenerationError("No response from LLM")
        return text
