"""
Redis test fixtures using fakeredis
Provides isolated Redis test environment without external dependencies
"""
import pytest
import fakeredis


@pytest.fixture(scope="function")
def fake_redis():
    """
    Provide fake Redis instance for testing
    Each test gets a fresh, isolated server
    """
    server = fakeredis.FakeServer()
    client = fakeredis.FakeRedis(server=server, decode_responses=False)
    yield client
    client.flushall()
