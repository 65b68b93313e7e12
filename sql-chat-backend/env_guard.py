#!/usr/bin/env python3
"""
SQL Chat Gate Environment Guard - Fail-Fast Startup Validation

Run before the server starts (main.py does this when launched directly)
to make sure the environment is usable before binding a port.

GUARANTEES:
1. All critical dependencies are importable
2. The Groq LLM class is available
3. Required environment variables are set

USAGE:
    from env_guard import validate_environment
    validate_environment()  # Raises EnvironmentError if invalid

    python env_guard.py --strict
"""

import sys
import os
from typing import List, Tuple

from dotenv import load_dotenv

# ============================================================================
# CONFIGURATION
# ============================================================================
REQUIRED_PACKAGES = [
    # (module_name, package_name, verification_attribute)
    # Only llama-index-core and llama-index-llms-groq are needed, not the meta-package.
    ("llama_index.core", "llama-index-core", None),
    ("llama_index.llms.groq", "llama-index-llms-groq", "Groq"),
    ("fastapi", "fastapi", "__version__"),
    ("uvicorn", "uvicorn", "__version__"),
    ("sqlalchemy", "sqlalchemy", "__version__"),
    ("pydantic", "pydantic", "__version__"),
    ("dotenv", "python-dotenv", None),
]

REQUIRED_ENV_VARS = [
    "GROQ_API_KEY",
    "DATABASE_URL",
]


# ============================================================================
# VALIDATION FUNCTIONS
# ============================================================================

def validate_packages() -> Tuple[List[str], List[str]]:
    """
    Validate all required packages are importable.

    Returns:
        (errors, package_info)
    """
    errors = []
    info = []

    for module_name, package_name, verify_attr in REQUIRED_PACKAGES:
        try:
            module = __import__(module_name, fromlist=[''])
        except ImportError as e:
            errors.append(
                f"MISSING PACKAGE: {package_name}\n"
                f"  Import error: {e}\n"
                f"  Solution: pip install {package_name}"
            )
            continue

        if not verify_attr:
            info.append(f"  {package_name}: imported")
        elif not hasattr(module, verify_attr):
            if verify_attr == "__version__":
                info.append(f"  {package_name}: imported (no {verify_attr})")
            else:
                errors.append(f"{package_name} imported but {verify_attr} is missing - broken install")
        elif verify_attr == "__version__":
            info.append(f"  {package_name}: {getattr(module, verify_attr)}")
        else:
            info.append(f"  {package_name}: {verify_attr} found")

    return errors, info


def validate_env_vars() -> List[str]:
    """
    Validate required environment variables are set.

    Returns:
        List of errors (empty if valid)
    """
    errors = []
    load_dotenv()

    for var_name in REQUIRED_ENV_VARS:
        value = os.getenv(var_name)
        if not value:
            errors.append(
                f"MISSING ENVIRONMENT VARIABLE: {var_name}\n"
                f"  Solution: Add {var_name}=your_value to .env file"
            )
        elif var_name == "GROQ_API_KEY" and not value.startswith("gsk_"):
            errors.append(
                f"INVALID {var_name} FORMAT\n"
                f"  Expected format: gsk_... (Groq API keys start with 'gsk_')\n"
                f"  Get a valid key at: https://console.groq.com/keys"
            )

    return errors


def mask_secret(value: str) -> str:
    return value[:4] + "..." + value[-4:] if len(value) > 12 else "***"


def validate_environment(strict: bool = True) -> bool:
    """
    Run all environment validations.

    Args:
        strict: If True, raise EnvironmentError on any failure.
                If False, print warnings and return success status.

    Returns:
        True if environment is valid, False otherwise.

    Raises:
        EnvironmentError: If strict=True and validation fails.
    """
    print("=" * 70)
    print("SQL CHAT GATE ENVIRONMENT GUARD - Startup Validation")
    print("=" * 70)

    all_errors = []

    print(f"\n[1/2] Checking required packages (Python {sys.version.split()[0]})...")
    package_errors, package_info = validate_packages()
    all_errors.extend(package_errors)
    for info in package_info:
        print(info)

    print("\n[2/2] Checking environment variables...")
    env_errors = validate_env_vars()
    all_errors.extend(env_errors)
    for var in REQUIRED_ENV_VARS:
        value = os.getenv(var)
        print(f"  {var}: {mask_secret(value) if value else 'NOT SET'}")

    print("\n" + "=" * 70)

    if all_errors:
        print("ENVIRONMENT VALIDATION FAILED!")
        print("=" * 70)
        for i, error in enumerate(all_errors, 1):
            print(f"\nError {i}:")
            print(error)

        if strict:
            raise EnvironmentError(
                f"Environment validation failed with {len(all_errors)} error(s). "
                f"See above for details."
            )
        return False

    print("ENVIRONMENT VALIDATION PASSED!")
    print("=" * 70)
    return True


# ============================================================================
# MAIN (for standalone testing)
# ============================================================================
if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="SQL Chat Gate Environment Guard")
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Exit with error code on failure"
    )
    args = parser.parse_args()

    try:
        success = validate_environment(strict=args.strict)
        sys.exit(0 if success else 1)
    except EnvironmentError as e:
        print(f"\n\nFATAL: {e}")
        sys.exit(1)
