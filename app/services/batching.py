"""Sequential chunked store calls with cancellation between chunks."""

import logging
import threading
from typing import Callable, Iterator, Sequence, TypeVar

from app.core.exceptions import ChunkWriteError, IngestionCancelled, IngestionError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """Thread-safe flag a caller trips to stop a run between chunks."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """Consecutive, order-preserving slices of at most ``size`` items."""
    if size < 1:
        raise ValueError("chunk size must be at least 1")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


def run_in_chunks(
    items: Sequence[T],
    chunk_size: int,
    handle: Callable[[list[T]], None],
    label: str = "processing",
    cancel_token: CancellationToken | None = None,
    on_chunk: Callable[[int, int, int], None] | None = None,
) -> int:
    """Call ``handle`` once per chunk, in order, one at a time.

    ``on_chunk(chunk_index, written_so_far, total)`` runs after each chunk
    commits, so callers can keep running totals that survive a later
    failure. The first failing chunk raises ``ChunkWriteError`` with its
    1-based index; chunks already written are not rolled back. A tripped
    ``cancel_token`` raises ``IngestionCancelled`` before the next chunk.

    Returns the number of items handled.
    """
    written = 0
    total = len(items)
    for chunk_index, chunk in enumerate(chunked(items, chunk_size), start=1):
        if cancel_token is not None and cancel_token.cancelled:
            logger.warning(f"[CHUNKS] Cancelled before {label} batch {chunk_index}")
            raise IngestionCancelled(chunk_index - 1)

        try:
            handle(chunk)
        except IngestionError as e:
            logger.error(f"[CHUNKS] {label} batch {chunk_index} ({len(chunk)} items) failed: {e.message}")
            raise ChunkWriteError(label, chunk_index, len(chunk), e) from e

        written += len(chunk)
        logger.debug(f"[CHUNKS] {label} batch {chunk_index} done: {written}/{total}")
        if on_chunk is not None:
            on_chunk(chunk_index, written, total)

    return written
