"""Pytest configuration and fixtures."""

import os

import pytest

# The app module reads settings at import time, before fixtures run
os.environ.setdefault("OPENAI_API_KEY", "test-openai-key")
os.environ.setdefault("PROOFMARK_ENV", "test")
os.environ.setdefault("GRAMMAR_API_TOKENS", "test-token")


@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """Set up test environment variables."""
    from proofmark.core.config import get_settings

    os.environ["OPENAI_API_KEY"] = "test-openai-key"
    os.environ["PROOFMARK_ENV"] = "test"
    os.environ["GRAMMAR_API_TOKENS"] = "test-token"
    get_settings.cache_clear()


@pytest.fixture
def spell_checker():
    """Spell checker that knows a small vocabulary and fixes a few typos."""
    from tests.fakes.fake_analyzers import make_spell_checker

    return make_spell_checker()
