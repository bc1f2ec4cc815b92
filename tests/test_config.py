"""
tests/test_config.py -- Unit tests for core/config.py.

Covers:
  - DEBUG=true without SECRET_KEY generates a 64-char hex key
  - Production mode without SECRET_KEY refuses to start
  - Keys shorter than 32 characters are rejected in both modes
  - Leeway is bounded to 0..30 seconds
"""

import pytest
from pydantic import ValidationError

from core.config import Settings


def test_debug_generates_key() -> None:
    settings = Settings(debug=True, secret_key="")
    assert len(settings.secret_key) == 64


def test_production_requires_key() -> None:
    with pytest.raises(ValidationError, match="SECRET_KEY is required"):
        Settings(debug=False, secret_key="")


@pytest.mark.parametrize("debug", [True, False])
def test_short_key_rejected(debug: bool) -> None:
    with pytest.raises(ValidationError, match="at least 32 characters"):
        Settings(debug=debug, secret_key="too-short")


def test_explicit_key_kept() -> None:
    key = "k" * 40
    assert Settings(debug=False, secret_key=key).secret_key == key


@pytest.mark.parametrize("leeway", [-1, 31])
def test_leeway_bounds(leeway: int) -> None:
    with pytest.raises(ValidationError):
        Settings(debug=True, token_leeway_seconds=leeway)
