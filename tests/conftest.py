"""
Test Configuration and Fixtures

Central configuration for pytest including:
- Controllable clock for lockout timing
- In-memory attempt store and throttle fixtures
- Chainable Supabase client mocks
- Admin API client helpers

Usage:
    All fixtures defined here are automatically available to all tests.
"""

import pytest
from unittest.mock import MagicMock, patch
import os
import sys
from datetime import datetime, timedelta, timezone

# Ensure project root is in path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


# ==================== Clock ====================

class FakeClock:
    """Manually advanced clock returning aware UTC datetimes."""

    def __init__(self, start: datetime = None):
        self.now = start or datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    """A FakeClock starting at 2026-03-01 12:00 UTC."""
    return FakeClock()


# ==================== Configuration Fixtures ====================

@pytest.fixture
def mock_config():
    """Create a mock GuardConfig for testing.

    Returns:
        MagicMock: A mock configuration object with common attributes.
    """
    config = MagicMock()
    config.store_backend = "supabase"
    config.supabase_url = "https://test.supabase.co"
    config.supabase_service_key = "test-service-key"
    config.supabase_anon_key = "test-anon-key"
    config.ip_table = "login_attempts_ip"
    config.email_table = "login_attempts_email"
    config.window_minutes = 15
    config.store_retry_attempts = 1
    return config


@pytest.fixture
def mock_env_vars():
    """Set up common environment variables for testing."""
    env_vars = {
        'SUPABASE_URL': 'https://test.supabase.co',
        'SUPABASE_SERVICE_KEY': 'test-service-key',
        'SUPABASE_ANON_KEY': 'test-anon-key',
    }
    with patch.dict(os.environ, env_vars):
        yield env_vars


# ==================== Store / Throttle Fixtures ====================

@pytest.fixture
def memory_store():
    """A fresh in-memory attempt store."""
    from login_guard.services.attempt_store import InMemoryAttemptStore
    return InMemoryAttemptStore()


@pytest.fixture
def throttle(memory_store, clock):
    """LoginThrottle over the in-memory store with background writes enabled.

    Call `await throttle.drain()` before inspecting the store after a check.
    """
    from login_guard.services.login_throttle import LoginThrottle
    return LoginThrottle(memory_store, clock=clock)


@pytest.fixture
def make_record(clock):
    """Factory for AttemptRecord instances relative to the fake clock."""
    from login_guard.services.attempt_store import AttemptRecord

    def _make(key="1.2.3.4", count=1, last_ago=timedelta(0), lockout_until=None, is_locked=False,
              updated_at=None):
        last_attempt = clock.now - last_ago
        return AttemptRecord(
            key=key,
            attempt_count=count,
            first_attempt=last_attempt - timedelta(seconds=count),
            last_attempt=last_attempt,
            is_locked=is_locked,
            lockout_until=lockout_until,
            updated_at=updated_at or last_attempt,
        )

    return _make


# ==================== Database Fixtures ====================

def create_chainable_mock():
    """Create a mock that supports method chaining for Supabase queries.

    Returns:
        MagicMock: A chainable mock for Supabase queries.
    """
    mock = MagicMock()
    mock.select.return_value = mock
    mock.insert.return_value = mock
    mock.update.return_value = mock
    mock.delete.return_value = mock
    mock.upsert.return_value = mock
    mock.eq.return_value = mock
    mock.lt.return_value = mock
    mock.lte.return_value = mock
    mock.or_.return_value = mock
    mock.order.return_value = mock
    mock.limit.return_value = mock
    result = MagicMock()
    result.data = []
    mock.execute.return_value = result
    return mock


@pytest.fixture
def mock_supabase_client():
    """Create a mock Supabase client whose tables share one chainable mock."""
    client = MagicMock()
    client.table.return_value = create_chainable_mock()
    return client


@pytest.fixture
def circuit():
    """A private circuit breaker so tests never trip the shared one."""
    from login_guard.utils.circuit_breaker import CircuitBreaker
    return CircuitBreaker(name="test", failure_threshold=3, recovery_timeout=60)


@pytest.fixture
def supabase_store(mock_config, mock_supabase_client, circuit):
    """SupabaseAttemptStore wired to a mocked client."""
    from login_guard.tools.supabase_tool import SupabaseAttemptStore
    return SupabaseAttemptStore(mock_config, client=mock_supabase_client, circuit=circuit)


# ==================== HTTP Client Fixtures ====================

@pytest.fixture
def admin_token():
    """Set admin token environment variable."""
    with patch.dict(os.environ, {"ADMIN_API_TOKEN": "test-admin-token-123"}):
        yield "test-admin-token-123"


@pytest.fixture
def admin_headers(admin_token):
    """Headers with valid admin token."""
    return {"X-Admin-Token": admin_token, "Content-Type": "application/json"}


@pytest.fixture
def test_client(throttle):
    """FastAPI TestClient with the throttle dependency pointed at the test throttle."""
    from fastapi.testclient import TestClient
    from main import app
    from login_guard.api.rate_limit_routes import get_throttle
    from login_guard.services.login_throttle import set_login_throttle

    set_login_throttle(throttle)
    app.dependency_overrides[get_throttle] = lambda: throttle
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


# ==================== Cleanup Fixtures ====================

@pytest.fixture(autouse=True)
def reset_caches():
    """Reset process-wide singletons between tests."""
    yield
    from config.loader import clear_config_cache
    from login_guard.services.attempt_store import set_store
    from login_guard.services.login_throttle import set_login_throttle
    from login_guard.utils.circuit_breaker import supabase_circuit

    clear_config_cache()
    set_store(None)
    set_login_throttle(None)
    supabase_circuit.reset()


# ==================== Pytest Configuration ====================

def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers."""
    for item in items:
        if "integration" in item.nodeid:
            item.add_marker(pytest.mark.integration)
