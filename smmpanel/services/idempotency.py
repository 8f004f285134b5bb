# smmpanel/services/idempotency.py
from datetime import datetime, timezone, timedelta
from typing import Callable, Dict, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from smmpanel.config import settings
from smmpanel.errors import IdempotencyConflict, PanelError, RequestInFlight
from smmpanel.metrics import idempotency_conflicts, idempotency_hits, inflight_retries
from smmpanel.models import IdempotencyKey


def _aware(ts: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands timestamps back without tzinfo
    if ts is not None and ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def run_idempotent(
    db: Session,
    idem_key: str,
    fingerprint: str,
    endpoint: str,
    handler: Callable[[], Tuple[int, Dict]],
) -> Tuple[int, Dict]:
    """
    Replay-safe wrapper around a side-effecting request:
      - Bind Idempotency-Key to THIS request via a fingerprint
      - If a response for this key is cached -> return it (no duplicate side effects)
      - If a request with this key is currently in-flight -> 425 (REQUEST_IN_FLIGHT)
      - Else run `handler` and cache its exact response under the key
    A domain rejection (e.g. insufficient funds) is not cached: the lock is
    released so the same key can be retried once the caller fixes the cause.
    """
    now = datetime.now(timezone.utc)

    row = db.get(IdempotencyKey, idem_key)

    # Same key but for a different request? -> 409
    if row and row.request_fingerprint and row.request_fingerprint != fingerprint:
        idempotency_conflicts.labels(endpoint).inc()
        raise IdempotencyConflict()

    # Completed response cached?
    if row and row.response_body is not None:
        idempotency_hits.labels(endpoint).inc()
        status_code, body = row.status_code or 200, row.response_body
        db.commit()
        return (status_code, body)

    # In-flight lock active?
    locked_until = _aware(row.locked_until) if row else None
    if locked_until and locked_until > now:
        inflight_retries.labels(endpoint).inc()
        raise RequestInFlight()

    # Set / refresh in-flight lock and persist fingerprint
    lock_until = now + timedelta(seconds=settings.idempotency_lock_secs)
    if not row:
        row = IdempotencyKey(key=idem_key, request_fingerprint=fingerprint, locked_until=lock_until)
        db.add(row)
    else:
        row.request_fingerprint = fingerprint
        row.locked_until = lock_until
    try:
        db.commit()
    except IntegrityError:
        # another request inserted the same key first
        db.rollback()
        inflight_retries.labels(endpoint).inc()
        raise RequestInFlight()

    try:
        status_code, body = handler()
    except PanelError:
        row.locked_until = None
        db.commit()
        raise

    # Cache the response and clear the lock
    row.status_code = status_code
    row.response_body = body
    row.locked_until = None
    db.commit()
    return (status_code, body)
