"""
Configuration management for navgraph.

Provides dataclasses for configuration and utilities
for loading settings from YAML files.
"""

import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Literal, Optional

import yaml


@dataclass
class IndexSettings:
    """HNSW index configuration."""
    dimensions: int = 128
    metric: str = "l2sq"
    connectivity: int = 16
    ef_construction: int = 128
    ef_search: int = 64
    concurrency: Literal["single_writer", "concurrent"] = "single_writer"
    seed: Optional[int] = None
    replace_existing: bool = True
    quantization: Literal["f32", "f16", "f64"] = "f32"
    capacity: int = 0


@dataclass
class StorageSettings:
    """Index file configuration."""
    # Node records between cancellation checks during save/load
    checkpoint_interval: int = 1024


@dataclass
class Settings:
    """
    Main settings container for navgraph.
    
    Attributes:
        index: Index construction settings
        storage: Persistence settings
        log_level: Logging level of the "navgraph" logger
    """
    index: IndexSettings = field(default_factory=IndexSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    log_level: str = "INFO"
    
    @classmethod
    def from_dict(cls, data: dict) -> "Settings":
        """Create Settings from dictionary."""
        data = dict(data)
        index_data = data.pop("index", None) or {}
        storage_data = data.pop("storage", None) or {}
        
        return cls(
            index=IndexSettings(**index_data),
            storage=StorageSettings(**storage_data),
            **data
        )
    
    def to_dict(self) -> dict:
        """Convert Settings to dictionary."""
        return asdict(self)


def get_default_config_path() -> Path:
    """Get path to default configuration file."""
    # Environment variable wins
    env_config = os.environ.get("NAVGRAPH_CONFIG")
    if env_config:
        return Path(env_config)
    
    # Check for config in current directory
    local_config = Path("./config/default_config.yaml")
    if local_config.exists():
        return local_config
    
    # Config shipped next to this file
    return Path(__file__).parent / "default_config.yaml"


def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Load configuration from YAML file.
    
    Args:
        config_path: Path to config file. If None, uses default.
        
    Returns:
        Settings object with loaded configuration
        
    Example:
        >>> settings = load_config()
        >>> settings = load_config("./my_config.yaml")
        >>> index = HNSWIndex.from_settings(settings)
    """
    if config_path is None:
        path = get_default_config_path()
    else:
        path = Path(config_path)
    
    if not path.exists():
        # Return default settings if no config file
        return Settings()
    
    with open(path, "r") as f:
        data = yaml.safe_load(f)
    
    if data is None:
        return Settings()
    
    return Settings.from_dict(data)
