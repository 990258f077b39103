"""Payload compression for cached requests and responses."""

import zlib
from typing import Any, Optional, Union

from api_cache.core.config import PAYLOAD_CLASSES, as_configuration
from api_cache.core.exceptions import CompressionError
from api_cache.utils.logger import get_logger

Payload = Union[str, bytes]


class CompressionService:
    """zlib compression with a per-client, per-payload-class enablement flag.

    ``compress``/``decompress`` honour the client's ``compression_enabled``
    setting; ``force_compress``/``force_decompress`` ignore it and are used by
    the table converters.

    Example:
        >>> service = CompressionService(enabled=True)
        >>> packed = service.compress("demo", "test data")
        >>> service.decompress("demo", packed)
        'test data'
    """

    def __init__(self, config: Any = None, enabled: Optional[bool] = None, level: int = zlib.Z_DEFAULT_COMPRESSION):
        """
        Args:
            config: ConfigurationManager or configuration dict
            enabled: Overrides every client's ``compression_enabled`` when set
            level: zlib compression level
        """
        self.config = as_configuration(config)
        self.enabled = enabled
        self.level = level
        self.logger = get_logger("cache.compression")

    def is_enabled(self, client_name: str, payload_class: Optional[str] = None) -> bool:
        """Whether compression is on for a client, optionally for one payload class.

        Without ``payload_class`` a per-field configuration counts as enabled
        when any field is enabled, since that client then needs a compressed table.
        """
        if self.enabled is not None:
            return self.enabled

        setting = self.config.client_config(client_name).get("compression_enabled", False)
        if isinstance(setting, dict):
            if payload_class is None:
                return any(setting.get(name, False) for name in PAYLOAD_CLASSES)
            return bool(setting.get(payload_class, False))
        return bool(setting)

    def compress(self, client_name: str, data: Payload, context: Optional[str] = None) -> Payload:
        """Compress ``data`` if enabled for the client, else return it unchanged."""
        if not self.is_enabled(client_name, context if context in PAYLOAD_CLASSES else None):
            return data
        return self.force_compress(client_name, data, context)

    def decompress(self, client_name: str, data: Payload, context: Optional[str] = None) -> Payload:
        """Decompress ``data`` if enabled for the client, else return it unchanged.

        Raises:
            CompressionError: When enabled and ``data`` is not zlib data
        """
        if not self.is_enabled(client_name, context if context in PAYLOAD_CLASSES else None):
            return data
        return self.force_decompress(client_name, data, context)

    def force_compress(self, client_name: str, data: Payload, context: Optional[str] = None) -> Payload:
        """Compress regardless of configuration. Empty input is returned as-is."""
        if not data:
            return data

        raw = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        try:
            compressed = zlib.compress(raw, self.level)
        except zlib.error as e:
            self.logger.error("Failed to compress %s for %s: %s", context or "data", client_name, e)
            raise CompressionError(f"Failed to compress data: {e}", {"client": client_name}) from e

        self.logger.debug(
            "Compressed %s for %s: %d -> %d bytes", context or "data", client_name, len(raw), len(compressed)
        )
        return compressed

    def force_decompress(self, client_name: str, data: Payload, context: Optional[str] = None) -> Payload:
        """Decompress regardless of configuration.

        Returns text when the payload decodes as UTF-8, bytes otherwise.

        Raises:
            CompressionError: When ``data`` is not zlib data
        """
        if not data:
            return data

        if isinstance(data, str):
            # Compressed payloads are binary; text can only come from an uncompressed column
            try:
                raw = data.encode("latin-1")
            except UnicodeEncodeError as e:
                raise CompressionError("Failed to decompress data: not compressed", {"client": client_name}) from e
        else:
            raw = bytes(data)

        try:
            decompressed = zlib.decompress(raw)
        except zlib.error as e:
            self.logger.error(
                "Failed to decompress %s for %s (%d bytes): %s", context or "data", client_name, len(raw), e
            )
            raise CompressionError(f"Failed to decompress data: {e}", {"client": client_name}) from e

        self.logger.debug(
            "Decompressed %s for %s: %d -> %d bytes", context or "data", client_name, len(raw), len(decompressed)
        )
        try:
            return decompressed.decode("utf-8")
        except UnicodeDecodeError:
            return decompressed
