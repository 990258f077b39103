"""Cache repository: table-per-client response storage with TTL expiry."""

import json
import re
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple, Union

from api_cache.cache.compression import CompressionService
from api_cache.core.exceptions import ApiCacheError, ValidationError
from api_cache.database.manager import DatabaseManager
from api_cache.database.models import CacheEntry
from api_cache.utils.logger import get_logger
from api_cache.utils.params import validate_identifier

MAX_TABLE_NAME_LENGTH = 64

# Columns written by store(); processed_at/processed_status belong to downstream processors
STORED_COLUMNS = [
    "client",
    "key",
    "version",
    "endpoint",
    "base_url",
    "full_url",
    "method",
    "attributes",
    "credits",
    "cost",
    "request_params_summary",
    "request_headers",
    "request_body",
    "response_headers",
    "response_body",
    "response_status_code",
    "response_size",
    "response_time",
    "expires_at",
]

PAYLOAD_COLUMNS = ["request_headers", "request_body", "response_headers", "response_body"]


class CacheStore(Protocol):
    """Storage operations the cache manager depends on."""

    def get_table_name(self, client_name: str, compressed: Optional[bool] = None) -> str: ...

    def store(self, client_name: str, key: str, metadata: Dict[str, Any], ttl: Optional[int] = None) -> None: ...

    def get(self, client_name: str, key: str) -> Optional[Dict[str, Any]]: ...

    def cleanup(self, client_name: Optional[str] = None) -> int: ...

    def clear_table(self, client_name: str) -> int: ...

    def close(self) -> None: ...

def utc_now(clock: Callable[[], float] = time.time) -> datetime:
    """Naive UTC datetime for the given clock, the form timestamps are stored in."""
    return datetime.fromtimestamp(clock(), tz=timezone.utc).replace(tzinfo=None)


def payload_size(value: Union[str, bytes, None]) -> int:
    if value is None:
        return 0
    if isinstance(value, str):
        return len(value.encode("utf-8"))
    return len(value)


class CacheRepository:
    """SQLite-backed response storage, one table per client and compression mode.

    Example:
        >>> db_manager = DatabaseManager(":memory:")
        >>> repository = CacheRepository(db_manager, CompressionService())
        >>> repository.store("demo", "demo.get.users.abc", {"endpoint": "users", "response_body": "{}"})
        >>> repository.get("demo", "demo.get.users.abc")["response_body"]
        '{}'
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        compression: CompressionService,
        table_prefix: str = "api_cache",
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.db_manager = db_manager
        self.compression = compression
        self.table_prefix = table_prefix
        self.clock = clock or time.time
        self.logger = get_logger("cache.repository")

    # Table naming

    def get_table_name(self, client_name: str, compressed: Optional[bool] = None) -> str:
        """Physical table name for a client.

        Args:
            client_name: Client identifier (letters, digits, ``-`` and ``_`` only)
            compressed: Force the compressed or uncompressed variant; by default
                follows the client's compression setting

        Raises:
            ValidationError: For invalid identifiers or names that sanitize to nothing
        """
        validate_identifier(client_name)

        sanitized = client_name.lower().replace("-", "_")

        prefix = f"{self.table_prefix}_"
        responses_suffix = "_responses"
        compressed_suffix = "_compressed"

        max_length = MAX_TABLE_NAME_LENGTH - len(prefix + responses_suffix + compressed_suffix)
        if len(sanitized) > max_length:
            sanitized = sanitized[:max_length]

        if compressed is None:
            compressed = self.compression.is_enabled(client_name)
        suffix = compressed_suffix if compressed else ""

        table_name = re.sub(r"_+", "_", prefix + sanitized + responses_suffix + suffix)

        bare = re.sub(r"_+", "_", prefix + responses_suffix.lstrip("_"))
        if table_name in (bare, bare + compressed_suffix):
            self.logger.error("Failed to sanitize client name %r into a table name", client_name)
            raise ValidationError(f"Sanitization error for string: {client_name}", {"client": client_name})

        return table_name

    def ensure_table(self, client_name: str, compressed: Optional[bool] = None) -> str:
        if compressed is None:
            compressed = self.compression.is_enabled(client_name)
        table = self.get_table_name(client_name, compressed)
        return self.db_manager.ensure_response_table(table, compressed)

    # Payload encoding

    def prepare_headers(self, client_name: str, headers: Optional[Dict[str, Any]], context: str) -> Any:
        """JSON-encode headers and compress them if enabled for ``<context>_headers``."""
        if headers is None:
            return None
        try:
            encoded = json.dumps(dict(headers), ensure_ascii=False)
        except (TypeError, ValueError) as e:
            self.logger.error("Failed to encode %s headers for %s: %s", context, client_name, e)
            raise ValidationError(f"Headers are not JSON serializable: {e}", {"client": client_name}) from e
        return self.compression.compress(client_name, encoded, f"{context}_headers")

    def retrieve_headers(self, client_name: str, data: Any, context: str) -> Optional[Dict[str, Any]]:
        """Inverse of prepare_headers.

        Raises:
            CompressionError: When stored headers should be compressed but are not
            ApiCacheError: When the stored value does not decode to a mapping
        """
        if data is None:
            return None
        raw = self.compression.decompress(client_name, data, f"{context}_headers")
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            decoded = json.loads(raw)
        except ValueError as e:
            self.logger.error("Failed to decode %s headers for %s: %s", context, client_name, e)
            raise ApiCacheError(f"Stored headers are not valid JSON: {e}", {"client": client_name}) from e
        if not isinstance(decoded, dict):
            raise ApiCacheError("Decoded headers must be a mapping", {"client": client_name})
        return decoded

    def prepare_body(self, client_name: str, body: Any, context: str) -> Any:
        if body is None:
            return None
        if isinstance(body, (dict, list)):
            body = json.dumps(body, ensure_ascii=False)
        return self.compression.compress(client_name, body, f"{context}_body")

    def retrieve_body(self, client_name: str, data: Any, context: str) -> Any:
        if data is None:
            return None
        return self.compression.decompress(client_name, data, f"{context}_body")

    # Storage

    def store(self, client_name: str, key: str, metadata: Dict[str, Any], ttl: Optional[int] = None) -> None:
        """Insert or overwrite the row identified by ``key``.

        Processing columns (``processed_at``/``processed_status``) and
        ``created_at`` of an existing row are left untouched.

        Args:
            client_name: Client identifier
            key: Cache key, unique within the client table
            metadata: Request/response fields; ``endpoint`` and ``response_body`` are required
            ttl: Seconds until expiry; None (or 0) stores a row that never expires

        Raises:
            ValidationError: When required fields are missing
        """
        if not metadata.get("endpoint"):
            raise ValidationError("Missing required field, endpoint is required", {"client": client_name, "key": key})
        if not metadata.get("response_body"):
            self.logger.error("Missing required field response_body for %s key %s", client_name, key)
            raise ValidationError(
                "Missing required field, response_body is required", {"client": client_name, "key": key}
            )

        table = self.ensure_table(client_name)
        now = utc_now(self.clock)
        expires_at = now + timedelta(seconds=ttl) if ttl else None

        row = {column: metadata.get(column) for column in STORED_COLUMNS}
        row["client"] = client_name
        row["key"] = key
        row["request_headers"] = self.prepare_headers(client_name, metadata.get("request_headers"), "request")
        row["request_body"] = self.prepare_body(client_name, metadata.get("request_body"), "request")
        row["response_headers"] = self.prepare_headers(client_name, metadata.get("response_headers"), "response")
        row["response_body"] = self.prepare_body(client_name, metadata.get("response_body"), "response")
        row["response_size"] = payload_size(row["response_body"])
        row["expires_at"] = expires_at

        self.write_row(table, {**row, "created_at": now, "updated_at": now}, overwrite=True)

        self.logger.info(
            "Stored response for %s key %s in %s (expires_at=%s, size=%d)",
            client_name,
            key,
            table,
            expires_at,
            row["response_size"],
        )

    def get(self, client_name: str, key: str) -> Optional[Dict[str, Any]]:
        """Return decoded metadata for ``key``, or None when absent or expired."""
        table = self.ensure_table(client_name)
        rows = self.db_manager.fetch_dicts(
            f"SELECT * FROM {table} WHERE key = ? AND (expires_at IS NULL OR expires_at > ?)",
            (key, utc_now(self.clock)),
        )
        if not rows:
            self.logger.debug("Cache miss for %s key %s", client_name, key)
            return None

        data = rows[0]
        self.logger.debug("Cache hit for %s key %s (expires_at=%s)", client_name, key, data["expires_at"])

        result = {k: v for k, v in data.items() if k not in PAYLOAD_COLUMNS and k != "id"}
        result["request_headers"] = self.retrieve_headers(client_name, data["request_headers"], "request")
        result["request_body"] = self.retrieve_body(client_name, data["request_body"], "request")
        result["response_headers"] = self.retrieve_headers(client_name, data["response_headers"], "response")
        result["response_body"] = self.retrieve_body(client_name, data["response_body"], "response")
        return result

    def get_entry(self, client_name: str, key: str, compressed: Optional[bool] = None) -> Optional[CacheEntry]:
        """Raw stored row (payloads as stored, expired rows included)."""
        table = self.ensure_table(client_name, compressed)
        rows = self.db_manager.fetch_dicts(f"SELECT * FROM {table} WHERE key = ?", (key,))
        return CacheEntry.from_row(rows[0]) if rows else None

    def cleanup(self, client_name: Optional[str] = None) -> int:
        """Delete expired rows for one client, or for every configured client.

        Returns:
            Number of rows deleted
        """
        clients = [client_name] if client_name else self.compression.config.client_names()
        now = utc_now(self.clock)
        total = 0
        for client in clients:
            table = self.ensure_table(client)
            deleted = self.db_manager.execute_update(
                f"DELETE FROM {table} WHERE expires_at IS NOT NULL AND expires_at <= ?", (now,)
            )
            self.logger.info("Deleted %d expired responses for %s from %s", deleted, client, table)
            total += deleted
        return total

    def clear_table(self, client_name: str) -> int:
        """Delete every row of the client's table."""
        table = self.ensure_table(client_name)
        deleted = self.db_manager.execute_update(f"DELETE FROM {table}")
        self.logger.info("Cleared %d responses for %s from %s", deleted, client_name, table)
        return deleted

    def close(self) -> None:
        """Release the database connections."""
        self.db_manager.close()

    # Counting

    def count_total_responses(self, client_name: str) -> int:
        table = self.ensure_table(client_name)
        return self.db_manager.execute_query(f"SELECT COUNT(*) FROM {table}")[0][0]

    def count_active_responses(self, client_name: str) -> int:
        table = self.ensure_table(client_name)
        return self.db_manager.execute_query(
            f"SELECT COUNT(*) FROM {table} WHERE expires_at IS NULL OR expires_at > ?", (utc_now(self.clock),)
        )[0][0]

    def count_expired_responses(self, client_name: str) -> int:
        table = self.ensure_table(client_name)
        return self.db_manager.execute_query(
            f"SELECT COUNT(*) FROM {table} WHERE expires_at IS NOT NULL AND expires_at <= ?", (utc_now(self.clock),)
        )[0][0]

    # Row-level access used by the table converters

    def count_rows(self, table: str) -> int:
        return self.db_manager.execute_query(f"SELECT COUNT(*) FROM {table}")[0][0]

    def fetch_batch(self, table: str, limit: int, offset: int = 0) -> List[Dict[str, Any]]:
        return self.db_manager.fetch_dicts(f"SELECT * FROM {table} ORDER BY id LIMIT ? OFFSET ?", (limit, offset))

    def fetch_by_keys(self, table: str, keys: List[str]) -> Dict[str, Dict[str, Any]]:
        if not keys:
            return {}
        placeholders = ", ".join("?" for _ in keys)
        rows = self.db_manager.fetch_dicts(f"SELECT * FROM {table} WHERE key IN ({placeholders})", tuple(keys))
        return {row["key"]: row for row in rows}

    def has_key(self, table: str, key: str) -> bool:
        return bool(self.db_manager.execute_query(f"SELECT 1 FROM {table} WHERE key = ? LIMIT 1", (key,)))

    def write_row(
        self,
        table: str,
        row: Dict[str, Any],
        overwrite: bool = False,
        keep_columns: Tuple[str, ...] = ("key", "created_at"),
    ) -> int:
        """Insert a row; with ``overwrite`` an existing row with the same key is updated in place.

        On overwrite, ``keep_columns`` and any column missing from ``row`` keep their stored values.
        """
        row = {k: v for k, v in row.items() if k != "id"}
        columns = list(row)
        placeholders = ", ".join("?" for _ in columns)
        query = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"
        if overwrite:
            updates = ", ".join(f"{c} = excluded.{c}" for c in columns if c not in keep_columns)
            query += f" ON CONFLICT(key) DO UPDATE SET {updates}"
        return self.db_manager.execute_update(query, tuple(row[c] for c in columns))
