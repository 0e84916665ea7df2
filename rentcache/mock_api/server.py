"""
Mock rental API server for local development and testing.

Serves the rental contract from an in-memory catalog with a version counter,
so the sync client can be exercised without the real backend.

Usage:
    python -m rentcache.mock_api.server [--port 3333]

Endpoints:
    GET  /health
    GET  /cars/{id}
    GET  /rentals
    GET  /cars/sync/pull?lastPulledVersion={int}
    POST /users/sync
"""

import argparse
import json
import logging
import threading
from datetime import datetime
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

logger = logging.getLogger(__name__)

SAMPLE_CARS = [
    {
        "id": "car-1",
        "brand": "Audi",
        "name": "RS 5 Coupé",
        "period": "Ao dia",
        "price": 120,
        "thumbnail": "https://example.com/audi-rs5.png",
        "about": "Este é automóvel desportivo.",
        "accessories": [
            {"type": "speed", "name": "235 Km/h"},
            {"type": "acceleration", "name": "3.8s"},
        ],
        "photos": [{"id": "p1", "photo": "https://example.com/audi-rs5.png"}],
    },
    {
        "id": "car-2",
        "brand": "Porsche",
        "name": "Panamera",
        "period": "Ao dia",
        "price": 340,
        "thumbnail": "https://example.com/panamera.png",
        "about": "Um carro de luxo.",
        "accessories": [{"type": "gasoline_motor", "name": "Gasolina"}],
        "photos": [],
    },
]


class MockRentalAPI:
    """In-memory backend state: versioned collections and a change log."""

    def __init__(self, cars: Optional[List[Dict[str, Any]]] = None):
        self._lock = threading.Lock()
        self.version = 0
        self.records: Dict[str, Dict[str, Dict[str, Any]]] = {"cars": {}, "users": {}}
        self.created_at: Dict[tuple, int] = {}
        self.log: List[tuple] = []
        self.rentals: List[Dict[str, Any]] = []
        self.received_pushes: List[Dict[str, Any]] = []
        self.reject_pushes = False
        for car in cars if cars is not None else SAMPLE_CARS:
            self.upsert("cars", car)

    def upsert(self, collection: str, record: Dict[str, Any]) -> int:
        with self._lock:
            self.version += 1
            key = (collection, str(record["id"]))
            self.created_at.setdefault(key, self.version)
            self.records.setdefault(collection, {})[str(record["id"])] = dict(record)
            self.log.append((self.version, collection, str(record["id"]), "upsert"))
            return self.version

    def delete(self, collection: str, record_id: str) -> int:
        with self._lock:
            self.version += 1
            self.records.get(collection, {}).pop(str(record_id), None)
            self.created_at.pop((collection, str(record_id)), None)
            self.log.append((self.version, collection, str(record_id), "delete"))
            return self.version

    def changes_since(self, since: int) -> Dict[str, Any]:
        """Build a pull response for every change after ``since``."""
        with self._lock:
            changes: Dict[str, Dict[str, list]] = {}
            touched = {}
            for version, collection, record_id, op in self.log:
                if version > since:
                    touched[(collection, record_id)] = op

            for (collection, record_id), op in touched.items():
                change_set = changes.setdefault(collection, {"created": [], "updated": [], "deleted": []})
                if op == "delete":
                    change_set["deleted"].append(record_id)
                    continue
                record = self.records[collection][record_id]
                if self.created_at[(collection, record_id)] > since:
                    change_set["created"].append(record)
                else:
                    change_set["updated"].append(record)
            return {"changes": changes, "latestVersion": self.version}

    def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self.records.get(collection, {}).get(str(record_id))

    def book(self, rental_id: str, car_id: str, start_date: str, end_date: str) -> Dict[str, Any]:
        rental = {
            "id": rental_id,
            "car": self.get("cars", car_id),
            "start_date": start_date,
            "end_date": end_date,
        }
        with self._lock:
            self.rentals.append(rental)
        return rental

    def accept_push(self, collection: str, change_set: Dict[str, Any]) -> None:
        self.received_pushes.append({
            "collection": collection,
            "changes": change_set,
            "received_at": datetime.utcnow().isoformat(),
        })
        for record in change_set.get("created", []) + change_set.get("updated", []):
            self.upsert(collection, record)


def make_handler(api: MockRentalAPI):
    """Build a request handler class bound to one backend state."""

    class MockAPIHandler(BaseHTTPRequestHandler):
        """HTTP request handler for the mock rental API."""

        def _send_json_response(self, status_code: int, data: Any):
            body = json.dumps(data).encode('utf-8')
            self.send_response(status_code)
            self.send_header('Content-Type', 'application/json')
            self.send_header('Content-Length', str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def do_GET(self):
            url = urlparse(self.path)
            parts = [p for p in url.path.split('/') if p]

            if parts == ['health']:
                self._send_json_response(200, {'status': 'healthy'})
            elif parts == ['rentals']:
                self._send_json_response(200, api.rentals)
            elif parts == ['cars', 'sync', 'pull']:
                query = parse_qs(url.query)
                try:
                    since = int(query.get('lastPulledVersion', ['0'])[0] or 0)
                except ValueError:
                    self._send_json_response(400, {'error': 'Invalid lastPulledVersion'})
                    return
                response = api.changes_since(since)
                logger.info(f"Pull since {since} -> version {response['latestVersion']}")
                self._send_json_response(200, response)
            elif len(parts) == 2 and parts[0] == 'cars':
                car = api.get('cars', parts[1])
                if car is None:
                    self._send_json_response(404, {'error': 'Car not found'})
                else:
                    self._send_json_response(200, car)
            else:
                self._send_json_response(404, {'error': 'Not found'})

        def do_POST(self):
            parts = [p for p in urlparse(self.path).path.split('/') if p]
            if len(parts) != 2 or parts[1] != 'sync':
                self._send_json_response(404, {'error': 'Not found'})
                return

            content_length = int(self.headers.get('Content-Length', 0))
            body = self.rfile.read(content_length)
            try:
                change_set = json.loads(body.decode('utf-8') or '{}')
            except json.JSONDecodeError as e:
                logger.error(f"Invalid JSON: {e}")
                self._send_json_response(400, {'error': 'Invalid JSON'})
                return

            if api.reject_pushes:
                self._send_json_response(409, {'error': 'Conflicting changes'})
                return

            api.accept_push(parts[0], change_set)
            logger.info(f"Received push for {parts[0]}")
            self._send_json_response(200, {'status': 'accepted'})

        def log_message(self, format, *args):
            """Override to use Python logging instead of stderr."""
            logger.debug(f"{self.address_string()} - {format % args}")

    return MockAPIHandler


def create_server(host: str = '127.0.0.1', port: int = 3333, api: Optional[MockRentalAPI] = None) -> ThreadingHTTPServer:
    """Create a server; port 0 binds an ephemeral port."""
    return ThreadingHTTPServer((host, port), make_handler(api or MockRentalAPI()))


def run_server(host: str = '0.0.0.0', port: int = 3333):
    """Run the mock API server."""
    httpd = create_server(host, port)
    logger.info(f"Mock rental API server running on http://{host}:{port}")
    try:
        httpd.serve_forever()
    except KeyboardInterrupt:
        logger.info("Server shutting down...")
    finally:
        httpd.server_close()


if __name__ == '__main__':
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )
    parser = argparse.ArgumentParser(description='Mock rental API server')
    parser.add_argument('--host', default='0.0.0.0')
    parser.add_argument('--port', type=int, default=3333)
    args = parser.parse_args()
    run_server(args.host, args.port)
