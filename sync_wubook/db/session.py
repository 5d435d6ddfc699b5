"""
Bounded write session.

Backing stores cap the number of operations one transaction should carry.
`BoundedWriteSession` collects statements and commits them in transactions
of at most `max_ops`, starting a fresh one transparently. The cap is a
resource limit, not a consistency boundary: a crash between flushes leaves
earlier batches applied, and re-running the idempotent caller recovers.

Besides statements, a session accepts deferred writes: callables run with
the flush connection. Read-modify-write engines queue these so the document
is re-read (and row-locked) in the same transaction that writes it.
"""

from __future__ import annotations

from types import TracebackType
from typing import Any, Callable, Optional, Union

import structlog
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.sql import Executable

logger = structlog.get_logger(__name__)

WriteOp = Union[Executable, Callable[[Connection], Any]]


class BoundedWriteSession:
    """
    Buffer write statements and commit them in bounded batches.

    Usage:
        >>> with BoundedWriteSession(engine, max_ops=450) as session:
        ...     session.add(stmt)
        ...     session.add_all([history_stmt, payment_stmt])

    Statements that belong together (a document write and its history
    entry) should be added with `add_all` so they never straddle a flush.
    Writes that must see the current row use `defer`.
    Leaving the block normally flushes what is pending; an exception
    discards it.
    """

    def __init__(self, engine: Engine, max_ops: int = 450) -> None:
        if max_ops < 1:
            raise ValueError("max_ops must be positive")
        self.engine = engine
        self.max_ops = max_ops
        self.pending: list[WriteOp] = []
        self.pending_ops = 0
        self.flushes = 0
        self.total_ops = 0

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    def add(self, stmt: Executable) -> None:
        self.add_all([stmt])

    def add_all(self, stmts: list[Executable]) -> None:
        """Queue a group of statements; flush first if the group would not fit."""
        self._queue(list(stmts), len(stmts))

    def defer(self, write: Callable[[Connection], Any], ops: int = 1) -> None:
        """
        Queue a deferred write that runs `ops` statements at flush time.

        Args:
            write: Called with the flush connection inside its transaction
            ops: Statements the write may execute, counted against `max_ops`
        """
        self._queue([write], max(1, ops))

    def _queue(self, items: list[WriteOp], ops: int) -> None:
        if self.pending and self.pending_ops + ops > self.max_ops:
            self.flush()
        self.pending.extend(items)
        self.pending_ops += ops
        if self.pending_ops >= self.max_ops:
            self.flush()

    def flush(self) -> None:
        """Commit everything pending in one transaction."""
        if not self.pending:
            return
        with self.engine.begin() as conn:
            for op in self.pending:
                if isinstance(op, Executable):
                    conn.execute(op)
                else:
                    op(conn)
        self.flushes += 1
        self.total_ops += self.pending_ops
        logger.debug("write_batch_committed", ops=self.pending_ops, flushes=self.flushes)
        self.pending = []
        self.pending_ops = 0

    def __enter__(self) -> "BoundedWriteSession":
        return self

    def __exit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> Any:
        if exc_type is None:
            self.flush()
        else:
            logger.warning("write_batch_discarded", ops=self.pending_ops)
            self.pending = []
            self.pending_ops = 0
        return False
