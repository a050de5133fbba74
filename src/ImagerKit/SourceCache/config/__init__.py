"""Typed configuration for the SourceCache subsystem."""

from .loader import ENV_PREFIX, export_config_schema, load_config, validate_config_file
from .models import DEFAULT_CACHE_TTL_S, LockingConfig, SourceCacheConfig, TransportConfig

__all__ = [
    "DEFAULT_CACHE_TTL_S",
    "ENV_PREFIX",
    "LockingConfig",
    "SourceCacheConfig",
    "TransportConfig",
    "export_config_schema",
    "load_config",
    "validate_config_file",
]
