"""
Dispatch Test Configuration and Fixtures

Shared fixtures for the store boundary, repositories, workflows and the
multi-instance (last-write-wins) tests.

Every workspace built by make_workspace talks to the same in-process
fakeredis server, which stands in for the device-local Redis shared by all
open instances.
"""

import time

import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import fakeredis


# =============================================================================
# PYTEST MARKERS
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "redis: exercises the Redis-backed store through fakeredis")
    config.addinivalue_line("markers", "concurrency: multi-instance last-write-wins behaviour")
    config.addinivalue_line("markers", "critical: must-pass workflow and integrity tests")


# =============================================================================
# CLOCK
# =============================================================================

FIXED_NOW = datetime(2025, 6, 2, 15, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = FIXED_NOW):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


# =============================================================================
# LOCAL TIME ZONE
# =============================================================================

def _apply_tz(monkeypatch, name: str):
    monkeypatch.setenv("TZ", name)
    time.tzset()


@pytest.fixture(autouse=True)
def utc_local_zone(monkeypatch):
    """Run every test with the process local zone pinned to UTC."""
    if not hasattr(time, "tzset"):
        yield
        return
    _apply_tz(monkeypatch, "UTC0")
    yield
    monkeypatch.undo()
    time.tzset()


@pytest.fixture
def set_local_zone(monkeypatch):
    """Switch the process local zone, e.g. set_local_zone("CST6") for UTC-6."""
    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset is not available on this platform")
    return lambda name: _apply_tz(monkeypatch, name)


# =============================================================================
# REDIS FIXTURES
# =============================================================================

@pytest.fixture
def fake_server():
    """One shared store for every client in the test."""
    return fakeredis.FakeServer()


def _client_for(server):
    from redis_client import RedisClient
    return RedisClient(
        client=fakeredis.FakeRedis(server=server, decode_responses=True),
        binary_client=fakeredis.FakeRedis(server=server)
    )


@pytest.fixture
def connected_redis_client(fake_server):
    """RedisClient with working fakeredis text and binary connections."""
    return _client_for(fake_server)


@pytest.fixture
def disconnected_redis_client():
    """
    RedisClient in disconnected/stub mode.

    All operations should return safe defaults.
    """
    from redis_client import RedisClient

    client = RedisClient.__new__(RedisClient)
    client.host = "localhost"
    client.port = 6379
    client.db = 0
    client.password = None
    client._client = None
    client._binary_client = None
    client._connected = False
    client._injected = True
    yield client


@pytest.fixture
def error_handler():
    """Fresh ErrorHandler with no log file."""
    from error_handler import ErrorHandler
    return ErrorHandler(log_file="")


@pytest.fixture
def collection_store(connected_redis_client, error_handler):
    from collection_store import CollectionStore
    return CollectionStore(connected_redis_client, error_handler)


# =============================================================================
# WORKSPACE FIXTURES
# =============================================================================

@pytest.fixture
def make_workspace(fake_server, clock):
    """
    Factory for independent application instances on the shared store.

    Each call gets its own Redis connections, notifier and ErrorHandler,
    mirroring two windows open on one device.
    """
    from dispatch_workspace import DispatchWorkspace
    from error_handler import ErrorHandler

    created = []

    def _make(instance_id=None, auto_load=True):
        ws = DispatchWorkspace(
            _client_for(fake_server),
            instance_id=instance_id,
            error_handler=ErrorHandler(log_file=""),
            clock=clock,
            auto_load=auto_load
        )
        created.append(ws)
        return ws

    yield _make

    for ws in created:
        ws.close()


@pytest.fixture
def workspace(make_workspace):
    return make_workspace("INST-primary")


@pytest.fixture
def hvac_tech(workspace):
    """A non-blacklisted HVAC technician."""
    return workspace.technicians.upsert({
        "name": "Dana Reyes",
        "trade": "HVAC",
        "phone": "(555) 010-2000",
        "city": "Tulsa",
    })


@pytest.fixture
def completed_work_order(workspace, hvac_tech):
    """Completed HVAC work order with hvac_tech assigned."""
    wo = workspace.work_orders.upsert({
        "wo_number": "WO-1001",
        "client": "Acme Storage",
        "trade": "HVAC",
        "city": "Tulsa",
        "not_to_exceed": 650,
        "technician_id": hvac_tech.id,
    })
    return workspace.work_orders.set_status(wo.id, "completed")


@pytest.fixture
def mock_redis_client():
    """MagicMock standing in for RedisClient where only call patterns matter."""
    client = MagicMock()
    client.is_connected.return_value = True
    client.reconnect.return_value = True
    return client
