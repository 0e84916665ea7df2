"""Configuration package for the rental cache client."""

from .app_config import AppConfig, RemoteConfig, StoreConfig, SyncConfig

__all__ = ['AppConfig', 'RemoteConfig', 'StoreConfig', 'SyncConfig']
