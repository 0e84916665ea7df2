"""
Pytest configuration and shared fixtures for the rental cache tests.
"""
import json
import threading
import time
from unittest.mock import MagicMock, Mock

import pytest

from rentcache.config.app_config import AppConfig, RemoteConfig, StoreConfig, SyncConfig
from rentcache.mock_api.server import MockRentalAPI, create_server
from rentcache.store import Database, LocalStore
from rentcache.sync import ConnectivityMonitor, ConnectivityState, RemoteGateway, Synchronizer
from rentcache.models import PullResponse


def make_car(car_id: str, **overrides) -> dict:
    """Build a car record as the API returns it."""
    car = {
        "id": car_id,
        "brand": "Audi",
        "name": f"Model {car_id}",
        "period": "Ao dia",
        "price": 120,
        "thumbnail": f"https://example.com/{car_id}.png",
        "about": "A sports car.",
        "accessories": [{"type": "speed", "name": "235 Km/h"}],
        "photos": [{"id": f"{car_id}-p1", "photo": f"https://example.com/{car_id}-1.png"}],
    }
    car.update(overrides)
    return car


def make_pull(latest_version: int, **collections) -> PullResponse:
    """Build a PullResponse from keyword change sets, e.g. cars={'created': [...]}."""
    return PullResponse.from_dict({"changes": collections, "latestVersion": latest_version})


def make_response(status_code: int = 200, payload=None, content: bytes = None):
    """Build a fake requests.Response."""
    response = Mock()
    response.status_code = status_code
    if payload is not None:
        response.content = json.dumps(payload).encode('utf-8')
        response.json.return_value = payload
    else:
        response.content = content or b''
        response.json.side_effect = ValueError("No JSON object could be decoded")
    return response


def wait_for(condition, timeout: float = 3.0, interval: float = 0.02) -> bool:
    """Poll until condition() is truthy or the timeout expires."""
    deadline = time.time() + timeout
    while time.time() < deadline:
        if condition():
            return True
        time.sleep(interval)
    return condition()


@pytest.fixture
def test_app_config(tmp_path):
    """Create a test application configuration."""
    return AppConfig(
        store=StoreConfig(path=str(tmp_path / "rentcache.db")),
        remote=RemoteConfig(
            base_url="http://localhost:3333",
            api_key="test-api-key",
            timeout=2.0,
            max_retries=2,
            base_retry_delay=0.0,
        ),
        sync=SyncConfig(sync_interval=60.0),
    )


@pytest.fixture
def memory_store():
    """Create a LocalStore with in-memory storage for testing."""
    store = LocalStore(Database(":memory:"))
    yield store
    store.close()


@pytest.fixture
def store_path(tmp_path):
    """Path of a file-backed store inside the test's temp directory."""
    return str(tmp_path / "store.db")


@pytest.fixture
def connected_monitor():
    return ConnectivityMonitor(ConnectivityState.CONNECTED)


@pytest.fixture
def mock_gateway():
    """Create a mock remote gateway for testing."""
    gateway = Mock(spec=RemoteGateway)
    gateway.pull_changes_since.return_value = make_pull(1)
    gateway.push_local_changes.return_value = None
    return gateway


@pytest.fixture
def synchronizer(memory_store, mock_gateway, connected_monitor):
    return Synchronizer(memory_store, mock_gateway, connected_monitor)


@pytest.fixture
def mock_session():
    """Create a mock requests session for gateway tests."""
    session = MagicMock()
    session.headers = {}
    return session


@pytest.fixture
def mock_api():
    """Backend state of the mock rental API."""
    return MockRentalAPI(cars=[make_car("car-1"), make_car("car-2", brand="Porsche")])


@pytest.fixture
def mock_api_server(mock_api):
    """Run the mock rental API on an ephemeral port; yields its base URL."""
    httpd = create_server('127.0.0.1', 0, mock_api)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    host, port = httpd.server_address[:2]
    yield f"http://{host}:{port}"
    httpd.shutdown()
    httpd.server_close()
    thread.join(timeout=5)
