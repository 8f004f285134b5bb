# smmpanel/services/guard.py
"""Per-account serialization of balance mutations.

Every unit of work that changes an account balance runs through
`guard.run(db, account_id, unit)`:

  - units for the same account run one at a time in this process
    (a lock per account id, dropped once nobody holds or waits on it)
  - across processes the unit itself locks the account row
    (SELECT ... FOR UPDATE) and the `accounts.version` counter turns a
    lost update into a StaleDataError
  - a write conflict or a storage error is retried once; a second failure
    surfaces as ConcurrentUpdateConflict / StorageUnavailable
"""
import logging
import threading
from contextlib import contextmanager
from typing import Callable, Dict, List, TypeVar

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from smmpanel.errors import ConcurrentUpdateConflict, StorageUnavailable
from smmpanel.metrics import balance_conflicts

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_ATTEMPTS = 2  # first try + one retry


class BalanceGuard:
    def __init__(self) -> None:
        self._mutex = threading.Lock()
        # account_id -> [lock, number of holders/waiters]
        self._slots: Dict[int, List] = {}

    @contextmanager
    def hold(self, account_id: int):
        with self._mutex:
            slot = self._slots.setdefault(account_id, [threading.Lock(), 0])
            slot[1] += 1
        try:
            with slot[0]:
                yield
        finally:
            with self._mutex:
                slot[1] -= 1
                if slot[1] == 0:
                    del self._slots[account_id]

    def run(self, db: Session, account_id: int, unit: Callable[[], T]) -> T:
        """Run `unit` (which opens and commits its own transaction) serialized on `account_id`."""
        with self.hold(account_id):
            attempt = 1
            while True:
                try:
                    return unit()
                except StaleDataError:
                    db.rollback()
                    if attempt >= MAX_ATTEMPTS:
                        balance_conflicts.labels("surfaced").inc()
                        logger.warning("Write conflict on account %s persisted after retry", account_id)
                        raise ConcurrentUpdateConflict(account_id)
                    balance_conflicts.labels("retried").inc()
                    logger.warning("Write conflict on account %s; retrying", account_id)
                except (OperationalError, InterfaceError) as e:
                    db.rollback()
                    if attempt >= MAX_ATTEMPTS:
                        logger.error("Storage error on account %s persisted after retry: %s", account_id, e)
                        raise StorageUnavailable() from e
                    logger.warning("Storage error on account %s; retrying: %s", account_id, e)
                attempt += 1

    def held_accounts(self) -> int:
        with self._mutex:
            return len(self._slots)


guard = BalanceGuard()
