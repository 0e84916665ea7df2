"""
Offline-first rental cache client.

Keeps a local copy of the car catalog and the user's rentals, serves every
read from it, and synchronizes with the rental API whenever it is reachable.

Usage:
    rentcache sync                       # Run one sync cycle
    rentcache cars                       # List cached cars
    rentcache car CAR_ID                 # Car details, refreshed when online
    rentcache rentals                    # My rentals
    rentcache profile USER_ID name=Ana   # Queue a local profile edit
    rentcache status                     # Checkpoint and pending mutations
    rentcache serve                      # Background sync until Ctrl+C
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from rentcache.app import RentCacheApplication
from rentcache.config.app_config import AppConfig
from rentcache.exceptions import RentCacheError
from rentcache.models import CARS, RENTALS, USERS
from rentcache.sync import ConnectivityMonitor, ConnectivityState


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='rentcache',
        description='Offline-first car rental cache and sync client',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s sync                                  # Pull and push once
  %(prog)s --offline cars                        # Browse the cache only
  %(prog)s --api-url http://10.0.2.2:3333 serve  # Keep syncing in background
        """
    )

    parser.add_argument('--db', dest='db_path',
                        help='Path to the local store (default: $RENTCACHE_DB_PATH or rentcache.db)')
    parser.add_argument('--api-url',
                        help='Rental API base URL (default: $RENTCACHE_API_URL)')
    parser.add_argument('--offline', action='store_true',
                        help='Treat the network as disconnected')
    parser.add_argument('--reset', action='store_true',
                        help='Wipe the local store before running the command')
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Logging level (default: INFO)')

    subparsers = parser.add_subparsers(dest='command', required=True)
    subparsers.add_parser('sync', help='Run one sync cycle')
    subparsers.add_parser('cars', help='List cached cars')
    car_parser = subparsers.add_parser('car', help='Show one car')
    car_parser.add_argument('car_id')
    subparsers.add_parser('rentals', help='List my rentals')
    profile_parser = subparsers.add_parser('profile', help='Edit the user profile locally')
    profile_parser.add_argument('user_id')
    profile_parser.add_argument('fields', nargs='*', metavar='FIELD=VALUE')
    subparsers.add_parser('status', help='Show sync status')
    subparsers.add_parser('serve', help='Run the background sync service')
    return parser


def parse_fields(pairs: List[str]) -> dict:
    fields = {}
    for pair in pairs:
        key, sep, value = pair.partition('=')
        if not sep or not key:
            raise ValueError(f"Expected FIELD=VALUE, got '{pair}'")
        fields[key] = value
    return fields


def build_config(args: argparse.Namespace) -> AppConfig:
    config = AppConfig.from_env()
    if args.db_path:
        config.store.path = args.db_path
    if args.api_url:
        config.remote.base_url = args.api_url
    return config


def run_command(app: RentCacheApplication, args: argparse.Namespace) -> int:
    catalog = app.catalog

    if args.command == 'sync':
        outcome = app.service.run_once()
        print(json.dumps({
            'status': outcome.status.value,
            'state': outcome.state.value,
            'checkpoint': outcome.checkpoint,
            'pulled': outcome.pulled,
            'pushed': outcome.pushed,
            'push_error': str(outcome.push_error) if outcome.push_error else None,
            'error': str(outcome.error) if outcome.error else None,
        }, indent=2))
        return 0 if outcome.succeeded else 1

    if args.command == 'cars':
        cars = catalog.list_cars()
        print(f"Total of {len(cars)} cars")
        for car in cars:
            print(f"  {car.id}  {car.brand} {car.name}  {car.period} {car.price:.2f}")
        return 0

    if args.command == 'car':
        details = catalog.car_details(args.car_id)
        car = details.car
        price = f"{car.price:.2f}" if details.price_visible else "..."
        print(f"{car.brand} {car.name}")
        print(f"  {car.period}: {price}")
        for accessory in car.accessories:
            print(f"  - {accessory.name}")
        print(f"  {car.about}")
        if not details.can_book:
            print("Connect to the internet to see more details and book this car.")
        return 0

    if args.command == 'rentals':
        rentals = catalog.list_rentals()
        print(f"Appointments made: {len(rentals)}")
        for rental in rentals:
            print(f"  {rental.car.brand} {rental.car.name}  {rental.period_label()}")
        return 0

    if args.command == 'profile':
        record = catalog.update_profile(args.user_id, **parse_fields(args.fields))
        print(json.dumps(record, indent=2))
        return 0

    if args.command == 'status':
        store = app.store
        print(json.dumps({
            'connectivity': app.monitor.state.value,
            'checkpoint': store.read_checkpoint(),
            'cars': store.count(CARS),
            'rentals': store.count(RENTALS),
            'pending_mutations': store.mutations.count_pending(USERS),
        }, indent=2))
        return 0

    if args.command == 'serve':
        app.run(watch_connectivity=not args.offline)
        return 0

    return 2


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the rental cache client.

    Returns:
        Process exit code
    """
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    app = RentCacheApplication(build_config(args))
    monitor = ConnectivityMonitor()
    try:
        app.setup(monitor=monitor, reset=args.reset)
        if args.offline:
            monitor.update(ConnectivityState.DISCONNECTED)
        elif args.command != 'serve':
            app.check_connectivity()
        return run_command(app, args)
    except (RentCacheError, ValueError) as e:
        print(f"Error: {e}")
        return 1
    finally:
        if args.command != "serve" or app.service is None:
            app.shutdown()


if __name__ == "__main__":
    sys.exit(main())
