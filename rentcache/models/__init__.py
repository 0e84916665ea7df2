"""Models package for the rental cache client."""

from .car import Accessory, Car, Photo
from .change_set import ChangeSet, PullResponse
from .rental import Rental

CARS = "cars"
RENTALS = "rentals"
USERS = "users"

COLLECTIONS = (CARS, RENTALS, USERS)

__all__ = [
    'Accessory', 'Car', 'Photo', 'ChangeSet', 'PullResponse', 'Rental',
    'CARS', 'RENTALS', 'USERS', 'COLLECTIONS',
]
