"""
Tests for DatabaseManager against an in-memory SQLite engine.
"""

import unittest

from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool

from database import DatabaseManager, ExecutionError, QueryResult


def make_farm_engine():
    """In-memory SQLite with two small tables, shared across threads."""
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE farmers (id INTEGER PRIMARY KEY, name TEXT, region TEXT)"))
        conn.execute(text("CREATE TABLE crops (id INTEGER PRIMARY KEY, farmer_id INTEGER, crop TEXT)"))
        conn.execute(text(
            "INSERT INTO farmers (id, name, region) VALUES "
            "(1, 'Ana', 'North'), (2, 'Ben', 'South'), (3, 'Caro', 'North'), "
            "(4, 'Dev', 'East'), (5, 'Eli', 'West')"
        ))
        conn.execute(text(
            "INSERT INTO crops (id, farmer_id, crop) VALUES (1, 1, 'wheat'), (2, 3, 'maize')"
        ))
    return engine


class TestDatabaseManager(unittest.TestCase):

    def setUp(self):
        self.engine = make_farm_engine()
        self.db = DatabaseManager(engine=self.engine)

    def tearDown(self):
        self.engine.dispose()

    def test_requires_url_or_engine(self):
        with self.assertRaises(ValueError):
            DatabaseManager()

    def test_dialect_name(self):
        self.assertEqual(self.db.dialect_name, "sqlite")

    def test_fetch_schema_lists_tables_and_columns(self):
        schema, _ = self.db.fetch_schema_and_samples()
        self.assertEqual(set(schema), {"farmers", "crops"})
        self.assertEqual(schema["farmers"], ["id", "name", "region"])
        self.assertEqual(schema["crops"], ["id", "farmer_id", "crop"])

    def test_fetch_samples_capped(self):
        _, samples = self.db.fetch_schema_and_samples(sample_limit=3)
        self.assertEqual(len(samples["farmers"]), 3)
        self.assertEqual(len(samples["crops"]), 2)
        self.assertEqual(set(samples["farmers"][0]), {"id", "name", "region"})

    def test_fetch_without_samples(self):
        _, samples = self.db.fetch_schema_and_samples(sample_limit=0)
        self.assertEqual(samples, {"farmers": [], "crops": []})

    def test_execute_query_returns_rows(self):
        result = self.db.execute_query("SELECT name FROM farmers WHERE region = 'North' ORDER BY id")
        self.assertIsInstance(result, QueryResult)
        self.assertEqual(result.columns, ["name"])
        self.assertEqual(result.rows, [{"name": "Ana"}, {"name": "Caro"}])
        self.assertEqual(result.row_count, 2)

    def test_execute_query_aggregate(self):
        result = self.db.execute_query("SELECT COUNT(*) AS n FROM farmers")
        self.assertEqual(result.rows, [{"n": 5}])

    def test_execute_failure_passes_driver_message(self):
        with self.assertRaises(ExecutionError) as ctx:
            self.db.execute_query("SELECT * FROM missing_table")
        self.assertIn("no such table", str(ctx.exception))

    def test_ping(self):
        self.assertTrue(self.db.ping())


if __name__ == "__main__":
    unittest.main()
