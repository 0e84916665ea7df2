"""
Tests for RemoteGateway.

This module covers:
- Request construction and authentication headers
- Status code to error mapping
- Retry with backoff for reads, single attempt for pushes
- Parsing of pull, car and rental payloads
"""
import json
from unittest.mock import patch

import pytest
import requests

from rentcache.exceptions import ConflictError, NetworkError, NotFoundError, RemoteError
from rentcache.models import CARS, ChangeSet
from rentcache.sync import RemoteGateway

from conftest import make_car, make_response


@pytest.fixture
def gateway(mock_session):
    return RemoteGateway(
        base_url="http://api.test/",
        api_key="token",
        max_retries=3,
        base_retry_delay=0.01,
        session=mock_session,
    )


@pytest.fixture
def no_sleep():
    with patch('rentcache.sync.remote_gateway.time.sleep') as sleep:
        yield sleep


class TestRequestBuilding:

    @pytest.mark.unit
    def test_headers_include_bearer_token(self, gateway, mock_session):
        assert mock_session.headers["Authorization"] == "Bearer token"
        assert mock_session.headers["Accept"] == "application/json"
        assert mock_session.headers["User-Agent"] == RemoteGateway.USER_AGENT

    @pytest.mark.unit
    def test_no_auth_header_without_key(self, mock_session):
        RemoteGateway(base_url="http://api.test", session=mock_session)

        assert "Authorization" not in mock_session.headers

    @pytest.mark.unit
    def test_pull_sends_checkpoint(self, gateway, mock_session):
        mock_session.request.return_value = make_response(payload={"changes": {}, "latestVersion": 9})

        gateway.pull_changes_since(4)

        method, url = mock_session.request.call_args[0]
        assert (method, url) == ('GET', "http://api.test/cars/sync/pull")
        assert mock_session.request.call_args[1]['params'] == {"lastPulledVersion": 4}

    @pytest.mark.unit
    def test_first_pull_sends_zero(self, gateway, mock_session):
        """Test that a missing checkpoint pulls from the beginning."""
        mock_session.request.return_value = make_response(payload={"changes": {}, "latestVersion": 1})

        gateway.pull_changes_since(None)

        assert mock_session.request.call_args[1]['params'] == {"lastPulledVersion": 0}

    @pytest.mark.unit
    def test_push_posts_json_change_set(self, gateway, mock_session):
        mock_session.request.return_value = make_response(payload={"status": "accepted"})
        change_set = ChangeSet(updated=[{"id": "u1", "name": "Ana"}])

        gateway.push_local_changes(change_set, "users")

        args, kwargs = mock_session.request.call_args
        assert args == ('POST', "http://api.test/users/sync")
        assert json.loads(kwargs['data'].decode('utf-8')) == {
            "created": [],
            "updated": [{"id": "u1", "name": "Ana"}],
            "deleted": [],
        }
        assert kwargs['headers']["Content-Type"] == "application/json"


class TestStatusMapping:

    @pytest.mark.unit
    def test_404_maps_to_not_found(self, gateway, mock_session, no_sleep):
        mock_session.request.return_value = make_response(404, payload={"error": "Car not found"})

        with pytest.raises(NotFoundError) as excinfo:
            gateway.fetch_car_by_id("c9")

        assert excinfo.value.collection == CARS
        assert excinfo.value.record_id == "c9"
        assert mock_session.request.call_count == 1
        no_sleep.assert_not_called()

    @pytest.mark.unit
    def test_409_maps_to_conflict(self, gateway, mock_session):
        mock_session.request.return_value = make_response(409, payload={"error": "conflict"})

        with pytest.raises(ConflictError) as excinfo:
            gateway.push_local_changes(ChangeSet(updated=[{"id": "u1"}]))

        assert excinfo.value.status_code == 409

    @pytest.mark.unit
    def test_400_maps_to_remote_error(self, gateway, mock_session, no_sleep):
        mock_session.request.return_value = make_response(400, payload={"error": "bad"})

        with pytest.raises(RemoteError) as excinfo:
            gateway.fetch_rentals()

        assert not isinstance(excinfo.value, NetworkError)
        assert mock_session.request.call_count == 1

    @pytest.mark.unit
    def test_malformed_json_is_remote_error(self, gateway, mock_session):
        mock_session.request.return_value = make_response(200, content=b"<html>")

        with pytest.raises(RemoteError):
            gateway.pull_changes_since(0)

    @pytest.mark.unit
    def test_pull_without_version_is_remote_error(self, gateway, mock_session):
        mock_session.request.return_value = make_response(payload={"changes": {}})

        with pytest.raises(RemoteError):
            gateway.pull_changes_since(0)


class TestRetries:

    @pytest.mark.unit
    def test_read_retries_server_errors(self, gateway, mock_session, no_sleep):
        """Test that a 5xx followed by success returns the successful payload."""
        mock_session.request.side_effect = [
            make_response(503),
            make_response(payload=make_car("c1")),
        ]

        car = gateway.fetch_car_by_id("c1")

        assert car.id == "c1"
        assert mock_session.request.call_count == 2
        assert no_sleep.call_count == 1

    @pytest.mark.unit
    def test_read_gives_up_after_max_retries(self, gateway, mock_session, no_sleep):
        mock_session.request.side_effect = requests.ConnectionError("refused")

        with pytest.raises(NetworkError):
            gateway.pull_changes_since(0)

        assert mock_session.request.call_count == 3
        assert no_sleep.call_count == 2

    @pytest.mark.unit
    def test_backoff_grows(self, gateway, mock_session, no_sleep):
        mock_session.request.side_effect = requests.Timeout("slow")

        with pytest.raises(NetworkError):
            gateway.fetch_rentals()

        first, second = [call[0][0] for call in no_sleep.call_args_list]
        assert second > first

    @pytest.mark.unit
    def test_push_is_not_retried(self, gateway, mock_session, no_sleep):
        """Test that a failed push is attempted exactly once."""
        mock_session.request.side_effect = requests.ConnectionError("refused")

        with pytest.raises(NetworkError):
            gateway.push_local_changes(ChangeSet(updated=[{"id": "u1"}]))

        assert mock_session.request.call_count == 1
        no_sleep.assert_not_called()


class TestPayloads:

    @pytest.mark.unit
    def test_fetch_rentals(self, gateway, mock_session):
        mock_session.request.return_value = make_response(payload=[{
            "id": "r1",
            "car": make_car("c1"),
            "start_date": "2021-03-10",
            "end_date": "2021-03-14",
        }])

        rentals = gateway.fetch_rentals()

        assert [rental.id for rental in rentals] == ["r1"]

    @pytest.mark.unit
    def test_fetch_car_record_keeps_unmodelled_fields(self, gateway, mock_session):
        mock_session.request.return_value = make_response(payload=make_car("c1", fuel_type="electric"))

        record = gateway.fetch_car_record("c1")

        assert record['fuel_type'] == "electric"
        assert record['id'] == "c1"

    @pytest.mark.unit
    @pytest.mark.parametrize("payload", [[make_car("c1")], {"brand": "No id"}])
    def test_fetch_car_record_rejects_non_car_payload(self, gateway, mock_session, payload):
        mock_session.request.return_value = make_response(payload=payload)

        with pytest.raises(RemoteError):
            gateway.fetch_car_record("c1")

    @pytest.mark.unit
    def test_rentals_payload_must_be_list_of_objects(self, gateway, mock_session):
        mock_session.request.return_value = make_response(payload=["r1"])

        with pytest.raises(RemoteError):
            gateway.fetch_rental_records()

    @pytest.mark.unit
    def test_invalid_rental_is_remote_error(self, gateway, mock_session):
        mock_session.request.return_value = make_response(payload=[{"id": "r1"}])

        with pytest.raises(RemoteError):
            gateway.fetch_rentals()

    @pytest.mark.unit
    def test_pull_parses_change_sets(self, gateway, mock_session):
        mock_session.request.return_value = make_response(payload={
            "changes": {"cars": {"created": [make_car("c1")], "updated": [], "deleted": ["c2"]}},
            "latestVersion": 5,
        })

        response = gateway.pull_changes_since(0)

        assert response.latest_version == 5
        assert response.changes[CARS].deleted == ["c2"]


class TestPing:

    @pytest.mark.unit
    def test_ping_ok(self, gateway, mock_session):
        mock_session.get.return_value = make_response(payload={"status": "healthy"})

        assert gateway.ping() is True

    @pytest.mark.unit
    def test_ping_unreachable(self, gateway, mock_session):
        mock_session.get.side_effect = requests.ConnectionError("refused")

        assert gateway.ping() is False
