# Overview: Retry wrapper for optimistic-concurrency conflicts in sale/void transactions.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from .errors import TransactionConflictError


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a whole DB transaction with retry on concurrency-related failures.

    func must do all of its reads, then all of its writes, then commit; it is
    re-run from scratch after a rollback, so it may not have side effects
    outside the session.

    Retries on OperationalError (locks) and StaleDataError (optimistic
    locking conflicts). When the attempts run out, TransactionConflictError
    is raised. Any other exception rolls the session back and propagates.
    """
    if attempts is None:
        attempts = current_app.config.get("TRANSACTION_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("TRANSACTION_RETRY_BACKOFF", 0.1)
    attempts = max(1, attempts)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                current_app.logger.warning(
                    "Transaction conflict not resolved after %d attempts: %s", attempts, exc
                )
                raise TransactionConflictError(
                    "The transaction conflicted with a concurrent update; please retry",
                    details={"attempts": attempts},
                ) from exc
            current_app.logger.info(
                "Transaction conflict on attempt %d/%d, retrying: %s", attempt + 1, attempts, exc
            )
            if backoff_base:
                time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
