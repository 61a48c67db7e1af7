"""
app/services/batch_splitter.py

Split parsed feed records into bounded, ordered batches.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from typing import TypeVar
from urllib.parse import urlparse

from app.config import BatchSettings, get_batch_settings
from app.domain.job_import import ImportBatch, NormalizedJobRecord

T = TypeVar("T")


def split_into_batches(records: Sequence[T], batch_size: int) -> list[list[T]]:
    """
    Return ceil(N / batch_size) consecutive slices of at most batch_size records.
    """

    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")
    return [list(records[start : start + batch_size]) for start in range(0, len(records), batch_size)]


class BatchSplitter:
    def __init__(self, settings: BatchSettings | None = None) -> None:
        self._settings = settings or get_batch_settings()

    def batch_size_for(self, source_url: str) -> int:
        host = (urlparse(source_url).hostname or "").lower()
        for large_host in self._settings.large_feed_hosts:
            large_host = large_host.lower()
            if host == large_host or host.endswith(f".{large_host}"):
                return self._settings.large_feed_batch_size
        return self._settings.default_batch_size

    def split(
        self,
        records: Sequence[NormalizedJobRecord],
        *,
        source_url: str,
        import_run_id: uuid.UUID,
    ) -> list[ImportBatch]:
        chunks = split_into_batches(records, self.batch_size_for(source_url))
        return [
            ImportBatch(
                source_url=source_url,
                import_run_id=import_run_id,
                batch_index=index,
                jobs=chunk,
            )
            for index, chunk in enumerate(chunks)
        ]
