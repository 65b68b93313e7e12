"""
Tests for the startup environment guard.
"""

import os
import unittest
from unittest.mock import patch

import env_guard


def patched_env(env):
    return patch.dict(os.environ, env, clear=True)


class TestEnvGuard(unittest.TestCase):

    def setUp(self):
        patcher = patch.object(env_guard, "load_dotenv")
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_installed_packages_pass(self):
        errors, info = env_guard.validate_packages()
        self.assertEqual(errors, [])
        self.assertEqual(len(info), len(env_guard.REQUIRED_PACKAGES))

    def test_missing_env_vars_reported(self):
        with patched_env({}):
            errors = env_guard.validate_env_vars()
        self.assertEqual(len(errors), 2)
        self.assertIn("GROQ_API_KEY", errors[0])
        self.assertIn("DATABASE_URL", errors[1])

    def test_bad_key_format_reported(self):
        with patched_env({"GROQ_API_KEY": "sk-wrong", "DATABASE_URL": "sqlite://"}):
            errors = env_guard.validate_env_vars()
        self.assertEqual(len(errors), 1)
        self.assertIn("INVALID GROQ_API_KEY FORMAT", errors[0])

    def test_strict_raises(self):
        with patched_env({}), patch("builtins.print"):
            with self.assertRaises(EnvironmentError):
                env_guard.validate_environment(strict=True)

    def test_lenient_returns_status(self):
        with patched_env({}), patch("builtins.print"):
            self.assertFalse(env_guard.validate_environment(strict=False))
        with patched_env({"GROQ_API_KEY": "gsk_1234567890abcd", "DATABASE_URL": "sqlite://"}), patch("builtins.print"):
            self.assertTrue(env_guard.validate_environment(strict=False))

    def test_mask_secret(self):
        self.assertEqual(env_guard.mask_secret("gsk_1234567890abcd"), "gsk_...abcd")
        self.assertEqual(env_guard.mask_secret("short"), "***")


if __name__ == "__main__":
    unittest.main()
