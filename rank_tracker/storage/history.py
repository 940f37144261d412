"""Batched persistence of rank observations."""

from typing import Protocol, Sequence

from loguru import logger

from ..errors import HistoryWriteError
from ..utils.config import DEFAULT_BATCH_SIZE


class RankHistoryStore(Protocol):
    def bulk_insert_rank_history(self, rows: list[dict]) -> int: ...


class HistoryBatchWriter:
    """Append rank rows to the history store in fixed-size chunks.

    Chunks are written one after another. Every call appends; nothing is
    deduplicated, each refresh run is its own observation in time. The first
    failing chunk aborts the write, and chunks written before it stay.
    """

    def __init__(self, store: RankHistoryStore, batch_size: int = DEFAULT_BATCH_SIZE):
        """Initialize the writer.

        Args:
            store: Object exposing ``bulk_insert_rank_history(rows)``
            batch_size: Maximum rows per bulk insert
        """
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self.store = store
        self.batch_size = batch_size

    def chunks(self, rows: Sequence[dict]) -> list[list[dict]]:
        return [
            list(rows[i : i + self.batch_size]) for i in range(0, len(rows), self.batch_size)
        ]

    def write(self, rows: Sequence[dict]) -> int:
        """Persist rows.

        Args:
            rows: [{"product_pk", "keyword", "rank"}, ...]

        Returns:
            Number of rows written

        Raises:
            HistoryWriteError: a chunk failed; ``rows_written`` counts the
                rows of the chunks before it
        """
        written = 0
        batches = self.chunks(rows)

        for index, batch in enumerate(batches, start=1):
            try:
                self.store.bulk_insert_rank_history(batch)
            except Exception as e:
                logger.error(
                    f"History batch {index}/{len(batches)} failed after {written} rows: {e}"
                )
                raise HistoryWriteError(
                    "Failed to save rank history",
                    rows_written=written,
                    details={"batch": index, "batches": len(batches)},
                ) from e

            written += len(batch)
            logger.debug(f"History batch {index}/{len(batches)}: {len(batch)} rows")

        return written
