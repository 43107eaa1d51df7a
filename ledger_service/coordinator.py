"""
Transaction Coordinator

Every balance mutation runs through run_with_retry: one serializable
transaction per attempt, committed as a whole or not at all. Serialization
failures and deadlocks rerun the unit of work from scratch; business rule
violations abort immediately and reach the caller unchanged.
"""
import logging
from typing import Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker

from common.retry import RetryConfig, RetryExhausted, retry_call
from common.settings import settings
from common.tracing import ledger_tracer
from ledger_service.errors import LedgerUnavailable, TransactionConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Postgres serialization_failure / deadlock_detected
CONFLICT_SQLSTATES = {"40001", "40P01"}
# MySQL ER_LOCK_DEADLOCK / ER_LOCK_WAIT_TIMEOUT
CONFLICT_MYSQL_CODES = {1213, 1205}
CONFLICT_MESSAGES = ("database is locked", "could not serialize access", "deadlock")


class SerializationConflict(Exception):
    """A concurrent transaction made this attempt unsafe to commit"""

    def __init__(self, error: DBAPIError):
        self.error = error
        super().__init__(str(error.orig) if error.orig is not None else str(error))


def is_serialization_failure(error: DBAPIError) -> bool:
    orig = error.orig
    if orig is None:
        return False

    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in CONFLICT_SQLSTATES:
        return True

    args = getattr(orig, "args", ())
    if args and args[0] in CONFLICT_MYSQL_CODES:
        return True

    message = str(orig).lower()
    return any(fragment in message for fragment in CONFLICT_MESSAGES)


def default_retry_config() -> RetryConfig:
    return RetryConfig(
        max_attempts=settings.tx_max_attempts,
        base_delay=settings.tx_retry_base_delay,
        max_delay=settings.tx_retry_max_delay,
        retryable_exceptions=[SerializationConflict],
    )


class TransactionCoordinator:
    def __init__(self, session_factory: sessionmaker, retry_config: Optional[RetryConfig] = None):
        self.session_factory = session_factory
        config = retry_config or default_retry_config()
        # Private copy; callers may share one config between coordinators
        self.retry_config = config.with_attempts(config.max_attempts)
        if SerializationConflict not in self.retry_config.retryable_exceptions:
            self.retry_config.retryable_exceptions += (SerializationConflict,)

    def run_with_retry(self, work: Callable[[Session], T], max_attempts: Optional[int] = None) -> T:
        config = self.retry_config
        if max_attempts is not None:
            config = config.with_attempts(max_attempts)

        name = getattr(work, "__name__", "unit_of_work")
        with ledger_tracer.start_span(f"ledger.transaction {name}") as span:
            attempts = 0

            def attempt():
                nonlocal attempts
                attempts += 1
                span.add_tag("attempts", attempts)
                return self._attempt(work)

            try:
                return retry_call(attempt, config)
            except RetryExhausted as e:
                logger.error(f"❌ Transaction {name} still conflicting after {e.attempts} attempts")
                raise TransactionConflictError(e.attempts, original_error=e.last_error) from e

    def read(self, work: Callable[[Session], T]) -> T:
        """Run read-only work; nothing is committed"""
        try:
            with self.session_factory() as session:
                return work(session)
        except DBAPIError as e:
            logger.error(f"❌ Ledger read failed: {e}")
            raise LedgerUnavailable(e) from e

    def _attempt(self, work: Callable[[Session], T]) -> T:
        try:
            with self.session_factory() as session:
                with session.begin():
                    return work(session)
        except DBAPIError as e:
            if is_serialization_failure(e):
                raise SerializationConflict(e) from e
            logger.error(f"❌ Ledger transaction failed: {e}")
            raise LedgerUnavailable(e) from e
