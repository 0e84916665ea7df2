"""
Application configuration for the rental cache client.
"""
import os
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class StoreConfig:
    """Local SQLite store configuration."""
    path: str = "rentcache.db"


@dataclass
class RemoteConfig:
    """Remote API configuration."""
    base_url: str = "http://localhost:3333"
    api_key: Optional[str] = None
    timeout: float = 10.0
    max_retries: int = 3
    base_retry_delay: float = 1.0  # seconds
    max_retry_delay: float = 30.0  # seconds


@dataclass
class SyncConfig:
    """Background synchronization configuration."""
    sync_interval: float = 60.0  # seconds
    push_collections: tuple = ("users",)
    push_batch_size: int = 100
    connectivity_poll_interval: float = 5.0  # seconds


@dataclass
class AppConfig:
    """Main application configuration."""
    store: StoreConfig = field(default_factory=StoreConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)

    @classmethod
    def from_env(cls) -> 'AppConfig':
        """Create configuration from RENTCACHE_* environment variables."""
        return cls(
            store=StoreConfig(
                path=os.getenv("RENTCACHE_DB_PATH", StoreConfig.path)
            ),
            remote=RemoteConfig(
                base_url=os.getenv("RENTCACHE_API_URL", RemoteConfig.base_url),
                api_key=os.getenv("RENTCACHE_API_KEY") or None,
                timeout=float(os.getenv("RENTCACHE_API_TIMEOUT", RemoteConfig.timeout)),
                max_retries=int(os.getenv("RENTCACHE_API_MAX_RETRIES", RemoteConfig.max_retries)),
            ),
            sync=SyncConfig(
                sync_interval=float(os.getenv("RENTCACHE_SYNC_INTERVAL", SyncConfig.sync_interval)),
            ),
        )
