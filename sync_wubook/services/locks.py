"""
Lease-based lock stored in the `locks` table.

A lock is held while its `expires_at` is in the future. Holders refresh the
lease while they work and release it when done; a crashed holder's lock
frees itself when the lease runs out.
"""

import uuid
from datetime import timedelta

import structlog
from sqlalchemy import delete, insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from sync_wubook.errors import ConflictError
from sync_wubook.models.locks import Lock
from sync_wubook.utils.datetime import ensure_aware, utc_now

logger = structlog.get_logger(__name__)


class LeaseLock:
    """
    Named mutual-exclusion lock with a TTL.

    Example:
        >>> lock = LeaseLock(engine, "cron_orchestrator", holder="worker-1")
        >>> token = lock.acquire(timedelta(minutes=8))
        >>> lock.refresh(token, timedelta(minutes=8))
        True
        >>> lock.release(token)
    """

    def __init__(self, engine: Engine, name: str, holder: str):
        self.engine = engine
        self.name = name
        self.holder = holder

    def acquire(self, ttl: timedelta) -> str:
        """
        Take the lock if it is free or expired.

        Args:
            ttl: Lease length

        Returns:
            str: Token identifying this lease (needed to refresh or release).

        Raises:
            ConflictError: If another holder has an unexpired lease.
        """
        token = uuid.uuid4().hex
        now = utc_now()
        try:
            with self.engine.begin() as conn:
                row = conn.execute(
                    select(Lock.holder, Lock.expires_at)
                    .where(Lock.name == self.name)
                    .with_for_update()
                ).first()
                if row is not None and ensure_aware(row.expires_at) > now:
                    raise ConflictError(
                        f"Lock {self.name} is held by {row.holder}", holder=row.holder
                    )

                values = {
                    "holder": self.holder,
                    "token": token,
                    "started_at": now,
                    "expires_at": now + ttl,
                }
                if row is None:
                    conn.execute(insert(Lock).values(name=self.name, **values))
                else:
                    conn.execute(update(Lock).where(Lock.name == self.name).values(**values))
        except IntegrityError as e:
            # Another process inserted the lock between our read and insert
            raise ConflictError(f"Lock {self.name} was taken concurrently") from e

        logger.info("lock_acquired", name=self.name, holder=self.holder, ttl_s=ttl.total_seconds())
        return token

    def refresh(self, token: str, ttl: timedelta) -> bool:
        """
        Extend the lease held under `token`.

        Returns:
            bool: False if the lease was lost (expired and taken by someone else).
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                update(Lock)
                .where(Lock.name == self.name, Lock.token == token)
                .values(expires_at=utc_now() + ttl)
            )
        if result.rowcount != 1:
            logger.warning("lock_lost", name=self.name, holder=self.holder)
            return False
        return True

    def release(self, token: str) -> None:
        """Delete the lock if it is still held under `token`."""
        with self.engine.begin() as conn:
            conn.execute(delete(Lock).where(Lock.name == self.name, Lock.token == token))
        logger.info("lock_released", name=self.name, holder=self.holder)
