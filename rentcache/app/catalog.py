"""
Cache-first read API for screens.

Screens read through :class:`Catalog` only. Every read is served from the
local store; when connectivity is CONNECTED some reads are refreshed from
the API first and written back to the store.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from rentcache.exceptions import NetworkError, NotFoundError, RemoteError
from rentcache.models import CARS, RENTALS, USERS, Car, ChangeSet, Rental
from rentcache.store import LocalStore
from rentcache.store.mutation_buffer import CREATED, UPDATED
from rentcache.sync import ConnectivityMonitor, RemoteGateway

logger = logging.getLogger(__name__)


@dataclass
class CarDetails:
    """Car details plus what the details screen may show or enable."""
    car: Car
    refreshed: bool
    online: bool

    @property
    def price_visible(self) -> bool:
        return self.online

    @property
    def can_book(self) -> bool:
        return self.online


class Catalog:
    """Read facade over the local store with opportunistic network refresh."""

    def __init__(
        self,
        store: LocalStore,
        gateway: RemoteGateway,
        monitor: ConnectivityMonitor,
        on_refresh_requested=None
    ):
        self.store = store
        self.gateway = gateway
        self.monitor = monitor
        self.on_refresh_requested = on_refresh_requested

    def list_cars(self) -> List[Car]:
        """All cached cars, by brand then name."""
        cars = [Car.from_dict(record) for record in self.store.query(CARS)]
        return sorted(cars, key=lambda car: (car.brand, car.name, car.id))

    def get_car(self, car_id: str) -> Car:
        """
        Raises:
            NotFoundError: if the car is not cached
        """
        return Car.from_dict(self.store.get(CARS, car_id))

    def car_details(self, car_id: str) -> CarDetails:
        """
        Cached car, replaced by the server version when online.

        Raises:
            NotFoundError: if the car is neither cached nor known to the server
        """
        cached: Optional[Car] = None
        try:
            cached = self.get_car(car_id)
        except NotFoundError:
            if not self.monitor.is_connected:
                raise

        if not self.monitor.is_connected:
            return CarDetails(car=cached, refreshed=False, online=False)

        try:
            record = self.gateway.fetch_car_record(car_id)
            car = Car.from_dict(record)
        except (NetworkError, RemoteError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Could not refresh car {car_id}: {e}")
            if cached is None:
                raise NotFoundError(CARS, car_id) from e
            return CarDetails(car=cached, refreshed=False, online=True)

        # Raw server record; keeps fields Car does not model.
        self.store.apply_change_set(CARS, ChangeSet(updated=[record]))
        return CarDetails(car=car, refreshed=True, online=True)

    def list_rentals(self) -> List[Rental]:
        """My rentals, fetched from the server when online, newest first."""
        if self.monitor.is_connected:
            try:
                records = self.gateway.fetch_rental_records()
                for record in records:
                    Rental.from_dict(record)
            except (NetworkError, RemoteError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"Could not refresh rentals: {e}")
            else:
                self.store.apply_change_set(RENTALS, ChangeSet(updated=records))

        rentals = [Rental.from_dict(record) for record in self.store.query(RENTALS)]
        return sorted(rentals, key=lambda rental: rental.start_date, reverse=True)

    def can_book(self) -> bool:
        """Booking needs the server; UNKNOWN connectivity does not count."""
        return self.monitor.is_connected

    def get_profile(self, user_id: str) -> dict:
        return self.store.get(USERS, user_id)

    def update_profile(self, user_id: str, **fields) -> dict:
        """
        Apply a local profile edit. It is pushed on the next sync cycle.

        Returns:
            The stored profile record
        """
        try:
            record = self.store.get(USERS, user_id)
            operation = UPDATED
        except NotFoundError:
            record = {'id': str(user_id)}
            operation = CREATED
        record.update(fields)
        record['id'] = str(user_id)
        self.store.write_local(USERS, record, operation=operation)
        logger.info(f"Queued profile update for user {user_id}: {sorted(fields)}")
        if self.on_refresh_requested:
            self.on_refresh_requested()
        return record
