"""
Pydantic v2 Configuration Models for SourceCache

Provides strict, typed configuration for the source resolution core:
- Cache layout (public cache URL prefix, cache root, document root, scratch root)
- Cache freshness (remote file TTL)
- Remote URL handling (raw URLs, query-string sensitivity, path hashing)
- HTTP transport settings (timeouts, redirects, TLS, headers, 404 policy)
- Single-flight locking

All models use extra="forbid" for strict validation. The top-level
SourceCacheConfig is built once at startup and handed to the resolver;
it is never mutated while a request is in flight.
"""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import Any, ClassVar, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_CACHE_TTL_S = 1_209_600  # 14 days


class TransportConfig(BaseModel):
    """Configuration for outbound HTTP downloads."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    preferred: Literal["auto", "httpx", "stream"] = Field(
        default="auto",
        description="Transport selection: native httpx client, requests stream copy, or auto",
    )
    allow_stream_fallback: bool = Field(
        default=True,
        description="Allow the stream-copy transport when the native client is unavailable",
    )
    timeout_s: float = Field(default=30.0, description="Overall read/write timeout in seconds")
    connect_timeout_s: float = Field(default=10.0, description="Connection timeout in seconds")
    follow_redirects: bool = Field(default=True, description="Follow HTTP redirects")
    max_redirects: int = Field(default=10, description="Maximum redirects followed")
    verify_tls: bool = Field(default=True, description="Verify TLS certificates")
    headers: Dict[str, str] = Field(
        default_factory=lambda: {"User-Agent": "ImagerKit/SourceCache"},
        description="Headers sent with every download (override per deployment)",
    )
    chunk_size_bytes: int = Field(default=1 << 16, description="Stream chunk size")
    accept_404_image_payloads: bool = Field(
        default=True,
        description="Accept HTTP 404 responses whose body is a valid image",
    )

    @field_validator("timeout_s", "connect_timeout_s")
    @classmethod
    def validate_timeouts(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Timeouts must be > 0")
        return v

    @field_validator("chunk_size_bytes")
    @classmethod
    def validate_chunk_size(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("chunk_size_bytes must be > 0")
        return v

    @field_validator("max_redirects")
    @classmethod
    def validate_max_redirects(cls, v: int) -> int:
        if v < 0:
            raise ValueError("max_redirects must be >= 0")
        return v


class LockingConfig(BaseModel):
    """Configuration for per-cache-key fetch locks."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    lock_dir: Optional[str] = Field(
        default=None,
        description="Directory holding lock files (default: <runtime_root>/locks)",
    )
    timeout_s: float = Field(default=60.0, description="Seconds to wait for a concurrent fetch")
    soft: bool = Field(default=False, description="Use soft (marker file) locks")

    @field_validator("timeout_s")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v < 0:
            raise ValueError("timeout_s must be >= 0")
        return v


class SourceCacheConfig(BaseModel):
    """Top-level configuration for source resolution and the local cache."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    cache_url_prefix: str = Field(
        default="/imager/",
        description="Public URL prefix under which cached/transformed files are served",
    )
    cache_root: str = Field(
        default="web/imager",
        description="Filesystem directory behind cache_url_prefix",
    )
    document_root: str = Field(
        default="web",
        description="Document root that plain local paths are relative to",
    )
    runtime_root: str = Field(
        default="storage/runtime/imager",
        description="Scratch directory for copies of remote URLs and copy-out volumes",
    )
    cache_ttl_s: Optional[int] = Field(
        default=DEFAULT_CACHE_TTL_S,
        description="Seconds a remote copy stays fresh; null/false disables expiry",
    )
    use_raw_external_url: bool = Field(
        default=False,
        description="Pass remote URLs to the transport without re-encoding path segments",
    )
    use_remote_url_query_string: bool = Field(
        default=False,
        description="Fold the remote URL query string into the cached filename",
    )
    hash_path: bool = Field(
        default=False,
        description="Replace folder paths with an md5 digest in transform paths",
    )
    hash_remote_url: Union[bool, Literal["host"]] = Field(
        default=False,
        description="Hash remote URL directories: true (host+path) or 'host' (path only)",
    )
    safe_file_formats: List[str] = Field(
        default_factory=lambda: ["jpg", "jpeg", "gif", "png"],
        description="File extensions considered safe to transform",
    )
    transport: TransportConfig = Field(
        default_factory=TransportConfig, description="HTTP transport config"
    )
    locking: LockingConfig = Field(default_factory=LockingConfig, description="Lock config")

    @field_validator("cache_ttl_s", mode="before")
    @classmethod
    def coerce_cache_ttl(cls, v: Any) -> Any:
        if v is False or v is None:
            return None
        if v is True:
            raise ValueError("cache_ttl_s must be a number of seconds or false")
        if isinstance(v, timedelta):
            return int(v.total_seconds())
        return v

    @field_validator("cache_ttl_s")
    @classmethod
    def validate_cache_ttl(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 0:
            raise ValueError("cache_ttl_s must be >= 0 or disabled")
        return v

    @field_validator("cache_url_prefix")
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        if not v:
            raise ValueError("cache_url_prefix must not be empty")
        return v

    @field_validator("safe_file_formats")
    @classmethod
    def normalize_formats(cls, v: List[str]) -> List[str]:
        return [fmt.lower().lstrip(".") for fmt in v if fmt]

    @property
    def cache_root_path(self) -> Path:
        return Path(self.cache_root).expanduser()

    @property
    def document_root_path(self) -> Path:
        return Path(self.document_root).expanduser()

    @property
    def runtime_root_path(self) -> Path:
        return Path(self.runtime_root).expanduser()

    @property
    def lock_dir_path(self) -> Path:
        if self.locking.lock_dir:
            return Path(self.locking.lock_dir).expanduser()
        return self.runtime_root_path / "locks"

    def config_hash(self) -> str:
        """
        Compute deterministic SHA256 hash of config for reproducibility.

        Returns:
            Hex-encoded SHA256 hash of normalized config JSON.
        """
        import hashlib
        import json

        normalized = json.dumps(self.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(normalized.encode()).hexdigest()


__all__ = [
    "DEFAULT_CACHE_TTL_S",
    "LockingConfig",
    "SourceCacheConfig",
    "TransportConfig",
]
