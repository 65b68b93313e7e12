"""
Tests for SQLGenerator prompt construction and error handling.

The LLM is replaced by a fake exposing complete(); no network required.
"""

import unittest
from types import SimpleNamespace
from unittest.mock import patch

from schema_cache import CacheEntry
from settings import Settings
from sql_generator import (
    OUT_OF_SCOPE_SENTINEL,
    GenerationError,
    SQLGenerator,
    create_groq_llm,
)

ENTRY = CacheEntry(
    schema={"farmers": ["id", "name"]},
    samples={"farmers": [{"id": 1, "name": "Ana"}]},
    fetched_at=0.0,
)


class FakeLLM:
    def __init__(self, text="SELECT 1", error=None):
        self.text = text
        self.error = error
        self.prompts = []

    def complete(self, prompt):
        self.prompts.append(prompt)
        if self.error:
            raise self.error
        return SimpleNamespace(text=self.text)


class TestSQLGenerator(unittest.TestCase):

    def test_prompt_contains_grounding_and_rules(self):
        llm = FakeLLM()
        SQLGenerator(llm, dialect="mysql", row_limit=100).generate("  How many farmers? ", ENTRY)
        prompt = llm.prompts[0]
        self.assertIn("strict MySQL SQL assistant", prompt)
        self.assertIn("TABLE farmers (id, name)", prompt)
        self.assertIn("1. id=1, name=Ana", prompt)
        self.assertIn(f"reply exactly: {OUT_OF_SCOPE_SENTINEL}", prompt)
        self.assertIn("LIMIT 100", prompt)
        self.assertIn("no code fences", prompt)
        self.assertTrue(prompt.endswith("User question:\nHow many farmers?"))

    def test_unknown_dialect_upper_cased(self):
        self.assertEqual(SQLGenerator(FakeLLM(), dialect="duckdb").dialect, "DUCKDB")
        self.assertEqual(SQLGenerator(FakeLLM(), dialect="postgresql").dialect, "PostgreSQL")

    def test_empty_schema_still_prompts(self):
        llm = FakeLLM()
        SQLGenerator(llm).generate("anything", CacheEntry(schema={}, samples={}, fetched_at=0.0))
        self.assertIn("(no tables visible)", llm.prompts[0])

    def test_response_trimmed(self):
        llm = FakeLLM(text="\n  SELECT name FROM farmers \n")
        self.assertEqual(SQLGenerator(llm).generate("q", ENTRY), "SELECT name FROM farmers")

    def test_sentinel_returned_verbatim(self):
        llm = FakeLLM(text=" OUT_OF_SCOPE\n")
        self.assertEqual(SQLGenerator(llm).generate("q", ENTRY), OUT_OF_SCOPE_SENTINEL)

    def test_empty_response_raises(self):
        with self.assertRaises(GenerationError) as ctx:
            SQLGenerator(FakeLLM(text="   ")).generate("q", ENTRY)
        self.assertEqual(str(ctx.exception), "No response from LLM")

    def test_provider_failure_raises(self):
        llm = FakeLLM(error=TimeoutError("upstream timed out"))
        with self.assertRaises(GenerationError) as ctx:
            SQLGenerator(llm).generate("q", ENTRY)
        self.assertIn("upstream timed out", str(ctx.exception))


class TestCreateGroqLLM(unittest.TestCase):

    def test_missing_key_rejected(self):
        with self.assertRaises(ValueError):
            create_groq_llm(Settings(groq_api_key=None))

    @patch("sql_generator.Groq")
    def test_settings_forwarded(self, groq_cls):
        settings = Settings(groq_api_key="gsk_test", groq_model="m", llm_temperature=0.2, llm_max_output_tokens=64)
        create_groq_llm(settings)
        groq_cls.assert_called_once_with(
            model="m",
            api_key="gsk_test",
            temperature=0.2,
            max_output_tokens=64,
        )


if __name__ == "__main__":
    unittest.main()
