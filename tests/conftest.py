"""Pytest configuration: set test env before any fileportal imports so settings use test values."""

import os
import tempfile

import pytest

_tmp = tempfile.mkdtemp(prefix="fileportal_test_")
os.environ.setdefault("ENV", "test")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-at-least-32-characters-long")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{os.path.join(_tmp, 'test.db')}")
os.environ.setdefault("STORAGE_BACKEND", "local")
os.environ.setdefault("LOCAL_STORAGE_PATH", os.path.join(_tmp, "blobs"))
os.environ.setdefault("SERVICE_BASE_URL", "http://testserver")


@pytest.fixture
def fake_sleep():
    """Records requested delays instead of sleeping."""
    from support import SleepRecorder

    return SleepRecorder()


@pytest.fixture
def storage():
    from support import InMemoryStorage

    return InMemoryStorage()
