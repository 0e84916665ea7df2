"""
HTTP gateway to the rental API.

This module is a thin client over the remote contract:
- GET  /cars/{id}
- GET  /rentals
- GET  /cars/sync/pull?lastPulledVersion={int}
- POST /{collection}/sync

Read calls retry with exponential backoff. Pushes are sent once; the
synchronizer retries them on its next cycle.
"""

import json
import logging
import time
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

import requests

from rentcache.exceptions import ConflictError, NetworkError, NotFoundError, RemoteError
from rentcache.models import CARS, ChangeSet, Car, PullResponse, Rental, USERS

logger = logging.getLogger(__name__)


class RemoteGateway:
    """
    JSON-over-HTTPS client for the rental API.

    Every method either returns parsed domain objects or raises one of
    NetworkError, NotFoundError, ConflictError or RemoteError.
    """

    DEFAULT_BASE_URL = "http://localhost:3333"
    USER_AGENT = "RentCache/0.1"
    MAX_RETRIES = 3
    BASE_RETRY_DELAY = 1.0  # seconds
    MAX_RETRY_DELAY = 30.0  # seconds
    TIMEOUT = 10.0  # seconds

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        base_retry_delay: Optional[float] = None,
        max_retry_delay: Optional[float] = None,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the gateway.

        Args:
            base_url: API root URL
            api_key: Bearer token for authentication
            timeout: Per-request timeout in seconds
            max_retries: Attempts for read requests
            base_retry_delay: First backoff delay in seconds
            max_retry_delay: Backoff ceiling in seconds
            session: Preconfigured requests session (tests inject one)
        """
        self.base_url = (base_url or self.DEFAULT_BASE_URL).rstrip('/')
        self.api_key = api_key
        self.timeout = self.TIMEOUT if timeout is None else timeout
        self.max_retries = self.MAX_RETRIES if max_retries is None else max(1, max_retries)
        self.base_retry_delay = self.BASE_RETRY_DELAY if base_retry_delay is None else base_retry_delay
        self.max_retry_delay = self.MAX_RETRY_DELAY if max_retry_delay is None else max_retry_delay
        self.session = session or requests.Session()
        self.session.headers.update(self._build_headers())

    @staticmethod
    def json_serialize_fallback(obj: Any) -> Any:
        """
        JSON serialization fallback for non-standard types.

        Raises:
            TypeError: If object is not serializable
        """
        if isinstance(obj, Decimal):
            return float(obj)
        if isinstance(obj, date):
            return obj.isoformat()
        raise TypeError(f"Object of type {obj.__class__.__name__} is not JSON serializable")

    def _build_headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/json",
            "User-Agent": self.USER_AGENT
        }
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _request(self, method: str, path: str, **kwargs) -> Any:
        """
        Send one request and decode the JSON body.

        Raises:
            NetworkError: transport failure, timeout or 5xx
            NotFoundError: 404
            ConflictError: 409
            RemoteError: any other non-2xx status or an undecodable body
        """
        url = self._url(path)
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.Timeout as e:
            raise NetworkError(f"Timeout on {method} {url}: {e}") from e
        except requests.RequestException as e:
            raise NetworkError(f"Request error on {method} {url}: {e}") from e

        status = response.status_code
        if status == 404:
            raise NotFoundError(path.strip('/').split('/')[0], path, f"{method} {url} returned 404")
        if status == 409:
            raise ConflictError(f"{method} {url} rejected with 409", status_code=status)
        if status >= 500:
            raise NetworkError(f"Server error {status} on {method} {url}", status_code=status)
        if not 200 <= status < 300:
            raise RemoteError(f"Unexpected status {status} on {method} {url}", status_code=status)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise RemoteError(f"Malformed JSON from {method} {url}", status_code=status) from e

    def _get_with_retry(self, path: str, **kwargs) -> Any:
        """GET with exponential backoff on NetworkError."""
        delay = self.base_retry_delay

        for attempt in range(self.max_retries):
            try:
                result = self._request('GET', path, **kwargs)
                if attempt > 0:
                    logger.info(f"GET {path} succeeded after {attempt + 1} attempts")
                return result
            except NetworkError as e:
                if attempt == self.max_retries - 1:
                    logger.warning(f"GET {path} failed after {self.max_retries} attempts: {e}")
                    raise
                jitter = delay * 0.1 * (0.5 - time.time() % 1)
                sleep_time = min(delay + jitter, self.max_retry_delay)
                logger.debug(f"Retry {attempt + 1}/{self.max_retries} for {path} in {sleep_time:.1f}s")
                time.sleep(sleep_time)
                delay *= 2

    def fetch_car_record(self, car_id: str) -> Dict[str, Any]:
        """
        Fetch one car as the server sends it, including fields Car does not model.

        Raises:
            NotFoundError: if the server has no such car
            RemoteError: if the payload is not a car object with an id
        """
        try:
            data = self._get_with_retry(f"/cars/{car_id}")
        except NotFoundError as e:
            raise NotFoundError(CARS, str(car_id)) from e
        if not isinstance(data, dict) or data.get('id') in (None, ""):
            raise RemoteError(f"Invalid car payload for {car_id}")
        return data

    def fetch_car_by_id(self, car_id: str) -> Car:
        data = self.fetch_car_record(car_id)
        try:
            return Car.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise RemoteError(f"Invalid car payload for {car_id}: {e}") from e

    def fetch_rental_records(self) -> List[Dict[str, Any]]:
        """The user's rentals as the server sends them."""
        data = self._get_with_retry("/rentals") or []
        if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
            raise RemoteError("Invalid rentals payload: expected a list of objects")
        return data

    def fetch_rentals(self) -> List[Rental]:
        try:
            return [Rental.from_dict(item) for item in self.fetch_rental_records()]
        except (KeyError, TypeError, ValueError) as e:
            raise RemoteError(f"Invalid rentals payload: {e}") from e

    def pull_changes_since(self, checkpoint: Optional[int]) -> PullResponse:
        """
        Fetch every change after ``checkpoint``. A None checkpoint pulls everything.
        """
        data = self._get_with_retry(
            "/cars/sync/pull",
            params={"lastPulledVersion": checkpoint or 0}
        )
        try:
            return PullResponse.from_dict(data)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise RemoteError(f"Invalid pull payload: {e}") from e

    def push_local_changes(self, change_set: ChangeSet, collection: str = USERS) -> None:
        """
        Send pending local changes of one collection. Not retried here.

        Raises:
            ConflictError: if the server rejects the changes
        """
        self._request(
            'POST',
            f"/{collection}/sync",
            data=self._encode(change_set.to_dict()),
            headers={"Content-Type": "application/json"}
        )

    def _encode(self, payload: Dict[str, Any]) -> bytes:
        return json.dumps(payload, default=self.json_serialize_fallback).encode('utf-8')

    def ping(self) -> bool:
        """Reachability check against /health."""
        try:
            response = self.session.get(self._url('/health'), timeout=5)
            return response.status_code == 200
        except requests.RequestException:
            return False

    def close(self) -> None:
        self.session.close()
