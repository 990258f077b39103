"""Offline converters between a client's uncompressed and compressed response tables.

Converters copy rows in batches ordered by row id, skip (or with
``overwrite`` re-write) rows whose key already exists in the destination, and
always use ``force_compress``/``force_decompress`` so the client's live
compression setting is never read or modified. Re-running a conversion after
a failure only writes rows that are still missing.
"""

from typing import Any, Dict, Optional, Union

from api_cache.cache.compression import CompressionService
from api_cache.cache.repository import PAYLOAD_COLUMNS, CacheRepository, payload_size
from api_cache.core.exceptions import CompressionError, MigrationRowError
from api_cache.database.models import ConversionStats, ValidationStats
from api_cache.utils.logger import get_logger

PROCESSING_COLUMNS = ["processed_at", "processed_status"]


def _as_bytes(value: Union[str, bytes]) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else bytes(value)


class ResponsesTableConverter:
    """Shared batch conversion and validation between two response tables."""

    source_compressed = False

    def __init__(
        self,
        client_name: str,
        repository: CacheRepository,
        compression: Optional[CompressionService] = None,
        batch_size: int = 100,
        overwrite: bool = False,
        copy_processing_state: bool = False,
    ) -> None:
        self.client_name = client_name
        self.repository = repository
        self.compression = compression or repository.compression
        self.batch_size = batch_size
        self.overwrite = overwrite
        self.copy_processing_state = copy_processing_state
        self.logger = get_logger("cache.converter")

    @property
    def source_table(self) -> str:
        return self.repository.ensure_table(self.client_name, self.source_compressed)

    @property
    def destination_table(self) -> str:
        return self.repository.ensure_table(self.client_name, not self.source_compressed)

    def get_uncompressed_row_count(self) -> int:
        return self.repository.count_rows(self.repository.ensure_table(self.client_name, False))

    def get_compressed_row_count(self) -> int:
        return self.repository.count_rows(self.repository.ensure_table(self.client_name, True))

    def transform_payload(self, value: Any, column: str) -> Any:
        raise NotImplementedError

    def prepare_row(self, row: Dict[str, Any]) -> Dict[str, Any]:
        """Destination form of a source row: payloads transformed, size recomputed."""
        data = {k: v for k, v in row.items() if k != "id"}

        for column in PAYLOAD_COLUMNS:
            if data.get(column) is not None:
                data[column] = self.transform_payload(data[column], column)

        if data.get("response_body") is not None:
            data["response_size"] = payload_size(data["response_body"])

        # "Processed" does not necessarily carry over to the new representation
        if not self.copy_processing_state:
            for column in PROCESSING_COLUMNS:
                data[column] = None

        return data

    def convert_batch(self, batch_size: Optional[int] = None, offset: int = 0) -> ConversionStats:
        """Convert up to ``batch_size`` source rows starting at ``offset``.

        Per-row failures are logged and counted, never raised.
        """
        batch_size = batch_size or self.batch_size
        source, destination = self.source_table, self.destination_table
        stats = ConversionStats()

        self.logger.debug(
            "Starting batch conversion for %s: %s -> %s (batch_size=%d, offset=%d)",
            self.client_name,
            source,
            destination,
            batch_size,
            offset,
        )

        rows = self.repository.fetch_batch(source, batch_size, offset)
        stats.total_count = len(rows)

        for row in rows:
            try:
                if not self.overwrite and self.repository.has_key(destination, row["key"]):
                    stats.skipped_count += 1
                    continue

                prepared = self.prepare_row(row)
                self.repository.write_row(destination, prepared, overwrite=self.overwrite, keep_columns=("key",))
                stats.processed_count += 1
            except Exception as e:
                error = MigrationRowError(self.client_name, row.get("key"), e)
                self.logger.error("Error converting row %s: %s", row.get("id"), error)
                stats.error_count += 1

        self.logger.debug("Batch conversion completed for %s: %s", self.client_name, stats.as_dict())
        return stats

    def convert_all(self) -> ConversionStats:
        """Convert every source row, batch by batch, until a batch comes back empty."""
        total = ConversionStats()
        offset = 0

        self.logger.info(
            "Starting full table conversion for %s (%d rows, batch_size=%d)",
            self.client_name,
            self.repository.count_rows(self.source_table),
            self.batch_size,
        )

        while True:
            stats = self.convert_batch(self.batch_size, offset)
            if stats.total_count == 0:
                break
            total.add(stats)
            offset += self.batch_size

        self.logger.info("Full table conversion completed for %s: %s", self.client_name, total.as_dict())
        return total

    def validate_compressed_field(
        self, uncompressed_data: Any, compressed_data: Any, field_type: str = "payload"
    ) -> bool:
        """Whether ``compressed_data`` decompresses to exactly ``uncompressed_data``."""
        if uncompressed_data is None and compressed_data is None:
            return True

        if uncompressed_data is None or compressed_data is None:
            self.logger.warning(
                "Null mismatch in %s for %s (uncompressed_null=%s, compressed_null=%s)",
                field_type,
                self.client_name,
                uncompressed_data is None,
                compressed_data is None,
            )
            return False

        try:
            decompressed = self.compression.force_decompress(self.client_name, compressed_data, field_type)
        except CompressionError as e:
            self.logger.warning("Stored %s for %s is not valid compressed data: %s", field_type, self.client_name, e)
            return False

        return _as_bytes(uncompressed_data) == _as_bytes(decompressed)

    def validate_row(self, source_row: Dict[str, Any], destination_row: Dict[str, Any]) -> bool:
        """Compare a source row with its converted counterpart."""
        excluded = {"id", "response_size", *PAYLOAD_COLUMNS}
        if not self.copy_processing_state:
            excluded.update(PROCESSING_COLUMNS)

        columns = self.repository.db_manager.get_columns(self.source_table)
        for column in columns:
            if column in excluded:
                continue
            if source_row.get(column) != destination_row.get(column):
                self.logger.debug(
                    "Field %s mismatch for %s key %s", column, self.client_name, source_row.get("key", "unknown")
                )
                return False

        if self.source_compressed:
            plain_row, packed_row = destination_row, source_row
        else:
            plain_row, packed_row = source_row, destination_row

        for column in PAYLOAD_COLUMNS:
            if not self.validate_compressed_field(plain_row.get(column), packed_row.get(column), column):
                return False
        return True

    def validate_batch(self, batch_size: Optional[int] = None, offset: int = 0) -> ValidationStats:
        """Validate up to ``batch_size`` destination rows starting at ``offset``."""
        batch_size = batch_size or self.batch_size
        source, destination = self.source_table, self.destination_table
        stats = ValidationStats()

        destination_rows = self.repository.fetch_batch(destination, batch_size, offset)
        if not destination_rows:
            return stats

        source_rows = self.repository.fetch_by_keys(source, [row["key"] for row in destination_rows])

        for destination_row in destination_rows:
            key = destination_row["key"]
            try:
                source_row = source_rows.get(key)
                if source_row is None:
                    self.logger.warning("Converted row %s of %s has no source counterpart", key, self.client_name)
                    stats.error_count += 1
                    continue

                if self.validate_row(source_row, destination_row):
                    stats.validated_count += 1
                else:
                    stats.mismatch_count += 1
            except Exception as e:
                error = MigrationRowError(self.client_name, key, e)
                self.logger.error("Error validating row: %s", error)
                stats.error_count += 1

        self.logger.debug("Batch validation completed for %s: %s", self.client_name, stats.as_dict())
        return stats

    def validate_all(self) -> ValidationStats:
        total = ValidationStats()
        offset = 0

        self.logger.info("Starting full table validation for %s", self.client_name)

        while True:
            stats = self.validate_batch(self.batch_size, offset)
            if stats.validated_count + stats.mismatch_count + stats.error_count == 0:
                break
            total.add(stats)
            offset += self.batch_size

        self.logger.info("Full table validation completed for %s: %s", self.client_name, total.as_dict())
        return total


class ResponsesTableCompressionConverter(ResponsesTableConverter):
    """Copies a client's uncompressed table into its compressed table.

    Example:
        >>> converter = ResponsesTableCompressionConverter("demo", repository, batch_size=500)
        >>> converter.convert_all().as_dict()
        {'total_count': 3, 'processed_count': 3, 'skipped_count': 0, 'error_count': 0}
        >>> converter.validate_all().mismatch_count
        0
    """

    source_compressed = False

    def transform_payload(self, value: Any, column: str) -> Any:
        return self.compression.force_compress(self.client_name, value, column)

    def prepare_compressed_row(self, row: Dict[str, Any]) -> Dict[str, Any]:
        return self.prepare_row(row)


class ResponsesTableDecompressionConverter(ResponsesTableConverter):
    """Copies a client's compressed table back into its uncompressed table."""

    source_compressed = True

    def transform_payload(self, value: Any, column: str) -> Any:
        return self.compression.force_decompress(self.client_name, value, column)

    def prepare_uncompressed_row(self, row: Dict[str, Any]) -> Dict[str, Any]:
        return self.prepare_row(row)
