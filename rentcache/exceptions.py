"""Exceptions raised by the rental cache core."""
from typing import Optional


class RentCacheError(Exception):
    """Base class for every error raised by the cache and sync core."""


class StorageError(RentCacheError):
    """Raised when a local store transaction fails and is rolled back."""
    def __init__(self, message: str, collection: Optional[str] = None):
        self.collection = collection
        self.message = message
        super().__init__(self.message)


class NotFoundError(RentCacheError):
    """Raised when a requested record does not exist locally or remotely."""
    def __init__(self, collection: str, record_id: str, message: str = None):
        self.collection = collection
        self.record_id = record_id
        self.message = message or f"Record '{record_id}' not found in '{collection}'"
        super().__init__(self.message)


class RemoteError(RentCacheError):
    """Raised when the remote API answers with an unexpected response."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        self.message = message
        super().__init__(self.message)


class NetworkError(RemoteError):
    """Transient transport failure: timeout, refused connection or 5xx."""


class ConflictError(RemoteError):
    """Raised when the server rejects pushed local changes."""
