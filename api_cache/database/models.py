"""Data models for api-cache."""

import json
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from typing import Any, Dict, Optional, Union


@dataclass
class CacheEntry:
    """One cached request/response row of a client table."""

    key: str
    client: str
    endpoint: str
    response_body: Union[str, bytes, None]
    version: Optional[str] = None
    base_url: Optional[str] = None
    full_url: Optional[str] = None
    method: Optional[str] = None
    attributes: Optional[str] = None
    credits: Optional[int] = None
    cost: Optional[float] = None
    request_params_summary: Optional[str] = None
    request_headers: Union[str, bytes, None] = None
    request_body: Union[str, bytes, None] = None
    response_headers: Union[str, bytes, None] = None
    response_status_code: Optional[int] = None
    response_size: Optional[int] = None
    response_time: Optional[float] = None
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    processed_status: Optional[str] = None
    id: Optional[int] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "CacheEntry":
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in row.items() if k in names})

    def as_row(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CachedHttpResponse:
    """A stored HTTP response rebuilt from the cache.

    Mirrors the accessors HTTP client callers use on live responses.
    """

    status_code: int
    headers: Dict[str, Any] = field(default_factory=dict)
    content: bytes = b""

    def status(self) -> int:
        return self.status_code

    def body(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    @property
    def text(self) -> str:
        return self.body()

    def json(self) -> Any:
        return json.loads(self.content)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400

    def header(self, name: str) -> Optional[str]:
        """Case-insensitive header lookup; list values return their first item."""
        for key, value in self.headers.items():
            if key.lower() == name.lower():
                if isinstance(value, (list, tuple)):
                    return value[0] if value else None
                return value
        return None


@dataclass
class RateLimitState:
    """Snapshot of a client's rate-limit window."""

    client: str
    remaining: int
    max_attempts: Optional[int]
    decay_seconds: int
    available_in: int = 0

    @property
    def unlimited(self) -> bool:
        return self.max_attempts is None or self.max_attempts < 0


@dataclass
class ConversionStats:
    """Counters reported by a table conversion run."""

    total_count: int = 0
    processed_count: int = 0
    skipped_count: int = 0
    error_count: int = 0

    def add(self, other: "ConversionStats") -> None:
        self.total_count += other.total_count
        self.processed_count += other.processed_count
        self.skipped_count += other.skipped_count
        self.error_count += other.error_count

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class ValidationStats:
    """Counters reported by a table validation run."""

    validated_count: int = 0
    mismatch_count: int = 0
    error_count: int = 0

    def add(self, other: "ValidationStats") -> None:
        self.validated_count += other.validated_count
        self.mismatch_count += other.mismatch_count
        self.error_count += other.error_count

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)
