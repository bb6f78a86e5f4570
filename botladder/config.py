"""
Ladder Configuration

Dataclass-based configuration for the worker pool, the game executor and
the publish cycle.
"""

import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path

import yaml

from .core.errors import ConfigError
from .core.models import DEFAULT_RATING

DEFAULT_MAPS = [
    "(2)Benzene",
    "(2)Destination",
    "(2)Heartbreak Ridge",
    "(4)Circuit Breaker",
    "(4)Fighting Spirit",
    "(4)Python",
]


@dataclass
class RatingConfig:
    """Configuration for rating updates."""

    initial_rating: int = DEFAULT_RATING
    k_factor: float = 32


@dataclass
class EngineConfig:
    """Configuration for the game engine backend."""

    type: str = "random"  # "random" or "command"
    command: list[str] = field(default_factory=list)  # For the command engine
    work_dir: str = "games"


@dataclass
class LadderConfig:
    """Configuration for a running ladder."""

    # Worker settings
    worker_count: int | None = 2
    backoff_seconds: float = 1.0

    # Game limits
    realtime_limit_seconds: float = 3600.0
    frame_limit: int = 86400

    # Map pool
    maps: list[str] = field(default_factory=lambda: list(DEFAULT_MAPS))

    # Publishing
    event_threshold: int = 8  # Event groups below this count are noise
    publish_window_days: float | None = 7
    publish_dir: str = "publish"

    # Persistence
    database_url: str = "sqlite:///ladder.db"
    persistence_retries: int = 3
    persistence_retry_delay: float = 0.5

    rating: RatingConfig = field(default_factory=RatingConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)

    # Random seed for reproducibility
    seed: int | None = None

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Raise ConfigError if any setting is out of range."""
        if self.worker_count is not None and self.worker_count < 1:
            raise ConfigError(f"worker_count must be at least 1, got {self.worker_count}")
        if self.backoff_seconds <= 0:
            raise ConfigError(f"backoff_seconds must be positive, got {self.backoff_seconds}")
        if self.event_threshold < 1:
            raise ConfigError(f"event_threshold must be at least 1, got {self.event_threshold}")
        if not self.maps:
            raise ConfigError("maps must list at least one map")
        if self.persistence_retries < 1:
            raise ConfigError("persistence_retries must be at least 1")

    def get_workers(self) -> int:
        """Get number of workers, auto-detecting if not specified."""
        if self.worker_count is not None:
            return self.worker_count
        # Leave one core free for system
        return max(1, (os.cpu_count() or 2) - 1)

    @classmethod
    def from_dict(cls, data: dict) -> "LadderConfig":
        """Create from a dictionary, rejecting unknown keys."""
        data = dict(data)
        rating = _build(RatingConfig, data.pop("rating", None) or {}, "rating")
        engine = _build(EngineConfig, data.pop("engine", None) or {}, "engine")
        return _build(cls, {**data, "rating": rating, "engine": engine}, "ladder")

    @classmethod
    def from_yaml(cls, path: str | Path) -> "LadderConfig":
        """Load configuration from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigError(f"{path}: expected a mapping at the top level")
        return cls.from_dict(data)

    def to_yaml(self, path: str | Path) -> None:
        """Save configuration to a YAML file."""
        with open(path, "w") as f:
            yaml.dump(asdict(self), f, default_flow_style=False, sort_keys=False)


def _build(kind, data: dict, section: str):
    known = {f.name for f in fields(kind)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown {section} settings: {', '.join(unknown)}")
    return kind(**data)
