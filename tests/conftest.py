"""Pytest configuration and shared fixtures."""

import asyncio

import pytest
import pytest_asyncio

from linkvault.config import PairingConfig


@pytest.fixture(autouse=True)
def reset_logging_state():
    """Reset logging state before each test."""
    from linkvault.logging import reset_logging

    reset_logging()
    yield
    reset_logging()


@pytest_asyncio.fixture(autouse=True, loop_scope="function")
async def cleanup_aiohttp_sessions():
    """Give aiohttp sessions time to clean up their connectors."""
    yield
    await asyncio.sleep(0)


@pytest.fixture
def fast_settings():
    """Pairing settings with every delay at zero."""
    return PairingConfig(
        settle_delay=0,
        snapshot_attempts=5,
        snapshot_interval=0,
        upload_attempts=4,
        upload_interval=0,
        reconnect_attempts=3,
        reconnect_delay=0,
        notify_grace=0,
        code_request_delay=0,
        issue_timeout=5.0,
        auth_timeout=5.0,
    )


@pytest.fixture
def sessions_dir(tmp_path):
    path = tmp_path / "sessions"
    path.mkdir()
    return path
