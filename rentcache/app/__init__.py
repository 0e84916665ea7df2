"""Application layer: read facade, background sync service and wiring."""

from .catalog import Catalog, CarDetails
from .rentcache_application import RentCacheApplication
from .sync_service import ServiceState, ServiceStatus, SyncService

__all__ = [
    'Catalog', 'CarDetails', 'RentCacheApplication',
    'ServiceState', 'ServiceStatus', 'SyncService',
]
