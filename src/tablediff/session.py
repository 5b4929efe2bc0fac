"""
Batch sessions.

A batch session keeps one backend resource (a database connection, a parsed
document, workbook bytes) open across many table operations. The caller owns
the session explicitly; there is no hidden per-thread cache:

    with BatchSession(adapter, conn) as batch_conn:
        for table in adapter.list_tables(batch_conn):
            adapter.load_full_table(batch_conn, table)

Teardown is guaranteed on error and on cancellation.
"""

import logging
import threading
from collections.abc import Callable, Iterable
from contextlib import ExitStack
from dataclasses import dataclass, field
from typing import Any

from .connection import ConnectionDescriptor

logger = logging.getLogger(__name__)


@dataclass
class BatchHandle:
    """
    Resource held open for the life of a batch.

    ``lock`` serializes use of the shared resource by concurrent table
    comparisons running in the same batch.
    """

    resource: Any
    close: Callable[[], None] | None = None
    lock: threading.RLock = field(default_factory=threading.RLock)
    closed: bool = False

    def release(self) -> None:
        with self.lock:
            if self.closed:
                return
            self.closed = True
            if self.close is not None:
                self.close()


def active_handle(conn: ConnectionDescriptor) -> BatchHandle | None:
    """The open batch handle carried by a descriptor, if any."""
    handle = conn.session
    if isinstance(handle, BatchHandle) and not handle.closed:
        return handle
    return None


class BatchSession:
    """
    Context manager that begins a batch on enter and always ends it on exit.

    Adapters without batch support yield the descriptor unchanged.
    """

    def __init__(self, adapter: Any, conn: ConnectionDescriptor):
        self.adapter = adapter
        self.conn = conn
        self._handle: BatchHandle | None = None

    def __enter__(self) -> ConnectionDescriptor:
        if active_handle(self.conn) is not None:
            # Already inside a batch for this descriptor
            return self.conn

        begin = getattr(self.adapter, "begin_batch", None)
        if begin is None:
            return self.conn

        self._handle = begin(self.conn)
        logger.debug(f"Batch started for {self.conn.describe()}")
        return self.conn.with_session(self._handle)

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._handle is None:
            return
        handle, self._handle = self._handle, None
        try:
            self.adapter.end_batch(self.conn, handle)
        except Exception as e:
            # Do not mask the exception that ended the batch
            if exc_type is None:
                raise
            logger.warning(f"Error ending batch for {self.conn.describe()}: {e}")
        logger.debug(f"Batch ended for {self.conn.describe()}")


def open_batches(
    pairs: Iterable[tuple[Any, ConnectionDescriptor]],
    stack: ExitStack,
) -> list[ConnectionDescriptor]:
    """Enter a BatchSession per (adapter, descriptor) on ``stack``."""
    return [stack.enter_context(BatchSession(adapter, conn)) for adapter, conn in pairs]
