"""Configuration management for FlickSwiper."""

import json
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

from flickswiper.filters import DiscoveryMethod
from flickswiper.queue import DiscoverySettings
from flickswiper.store import Store, StoreType, create_store
from flickswiper.sync.remote import MemoryRemoteStore


DEFAULT_CONFIG_PATH = "~/.flickswiper/config.json"
DEFAULT_DATA_PATH = "~/.flickswiper/data.db"
DEFAULT_REMOTE_PATH = "~/.flickswiper/remote.json"
TOKEN_ENV_VAR = "TMDB_API_TOKEN"


@dataclass
class DiscoveryConfig:
    """Discovery tunables as stored in the config file."""

    include_classified: bool = False
    max_auto_pages: int = 5
    low_water_mark: int = 5
    debounce_seconds: float = 0.3
    undo_capacity: int = 10
    rating_prompt_delay: float = 0.8
    selected_method: str = DiscoveryMethod.POPULAR.value

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DiscoveryConfig":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    @property
    def method(self) -> DiscoveryMethod:
        try:
            return DiscoveryMethod.parse(self.selected_method)
        except ValueError:
            return DiscoveryMethod.POPULAR


@dataclass
class Config:
    """Application configuration."""

    store_type: StoreType = StoreType.SQLITE
    store_path: str = DEFAULT_DATA_PATH
    remote_path: str = DEFAULT_REMOTE_PATH
    tmdb_token: str | None = None
    watch_region: str = "US"
    user_id: str | None = None
    display_name: str | None = None
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def load(cls, path: str = DEFAULT_CONFIG_PATH) -> "Config":
        """Load config from a JSON file, or return defaults if not found."""
        config_path = Path(path).expanduser()

        if not config_path.exists():
            return cls()

        try:
            data = json.loads(config_path.read_text())
            return cls(
                store_type=StoreType(data.get("store_type", "sqlite")),
                store_path=data.get("store_path", DEFAULT_DATA_PATH),
                remote_path=data.get("remote_path", DEFAULT_REMOTE_PATH),
                tmdb_token=data.get("tmdb_token"),
                watch_region=data.get("watch_region", "US"),
                user_id=data.get("user_id"),
                display_name=data.get("display_name"),
                discovery=DiscoveryConfig.from_dict(data.get("discovery", {})),
                extra=data.get("extra", {}),
            )
        except (json.JSONDecodeError, KeyError, ValueError, TypeError):
            return cls()

    def save(self, path: str = DEFAULT_CONFIG_PATH) -> None:
        """Save config to a JSON file."""
        config_path = Path(path).expanduser()
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "store_type": self.store_type.value,
            "store_path": self.store_path,
            "remote_path": self.remote_path,
            "tmdb_token": self.tmdb_token,
            "watch_region": self.watch_region,
            "user_id": self.user_id,
            "display_name": self.display_name,
            "discovery": asdict(self.discovery),
            "extra": self.extra,
        }
        config_path.write_text(json.dumps(data, indent=2))

    def resolved_token(self) -> str | None:
        """TMDB token from the environment, falling back to the config file."""
        return os.environ.get(TOKEN_ENV_VAR) or self.tmdb_token

    def discovery_settings(self) -> DiscoverySettings:
        return DiscoverySettings(
            include_classified=self.discovery.include_classified,
            max_auto_pages=self.discovery.max_auto_pages,
            low_water_mark=self.discovery.low_water_mark,
            debounce_seconds=self.discovery.debounce_seconds,
        )

    def create_store(self) -> Store:
        """Create a store instance from this config."""
        return create_store(self.store_type, self.store_path)

    def create_remote(self) -> MemoryRemoteStore:
        """Create the remote list store from this config."""
        return MemoryRemoteStore(self.remote_path)
