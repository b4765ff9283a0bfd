"""
Transaction executor with bounded retries for Simfinity.

Every entity operation and custom mutation runs through one envelope:
- Open a session and start a transaction
- Run the operation body with that session
- Commit, or abort and re-raise on failure
- Re-run the whole body in a new transaction when the failure carries the
  transient-transaction signal, up to ``RetryPolicy.max_attempts``

A caller that already holds a session runs the body directly inside it, so
nested operations share one transaction.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar

from simfinity.core.errors import SimfinityError, TransientTransactionError, is_transient_error
from .store import DocumentStore, StoreSession

logger = logging.getLogger(__name__)


T = TypeVar("T")
Body = Callable[[StoreSession], Awaitable[T]]


@dataclass
class ExponentialBackoff:
    """Delay before retry ``attempt`` (1-based): base * 2^(attempt - 1), capped."""
    base: float = 0.05
    maximum: float = 2.0

    def __call__(self, attempt: int) -> float:
        return min(self.maximum, self.base * (2 ** (attempt - 1)))


@dataclass
class RetryPolicy:
    """
    How often and how patiently transient failures are retried.

    Attributes:
        max_attempts: Total attempts including the first one
        backoff: attempt -> delay in seconds
        sleep: Awaitable sleep, replaceable in tests
    """
    max_attempts: int = 5
    backoff: Callable[[int], float] = field(default_factory=ExponentialBackoff)
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")


class TransactionRunner:
    """
    Runs operation bodies inside store transactions.

    Example:
        runner = TransactionRunner(store, RetryPolicy(max_attempts=3))
        document = await runner.run(lambda session: executor._save(descriptor, args, session))
    """

    def __init__(self, store: DocumentStore, policy: Optional[RetryPolicy] = None):
        """
        Initialize transaction runner.

        Args:
            store: Store providing sessions
            policy: Retry policy (defaults to RetryPolicy())
        """
        self.store = store
        self.policy = policy or RetryPolicy()

    async def run(self, body: Body, session: Optional[StoreSession] = None) -> T:
        """
        Execute ``body`` transactionally.

        Args:
            body: Coroutine function receiving the session
            session: Existing session of an enclosing operation

        Returns:
            Whatever the body returns
        """
        if session is not None:
            return await body(session)

        attempt = 0
        while True:
            attempt += 1
            current = await self.store.start_session()
            try:
                result = await self._attempt(body, current)
            except Exception as e:
                if not is_transient_error(e):
                    raise
                if attempt >= self.policy.max_attempts:
                    logger.error(f"Transaction failed after {attempt} attempts: {e}")
                    if isinstance(e, SimfinityError):
                        raise
                    raise TransientTransactionError(
                        f"Transaction failed after {attempt} attempts: {e}", cause=e
                    ) from e
                delay = self.policy.backoff(attempt)
                logger.warning(f"Transient transaction failure (attempt {attempt}), retrying in {delay:.3f}s: {e}")
                await self.policy.sleep(delay)
                continue
            finally:
                await current.end_session()

            if attempt > 1:
                logger.info(f"Transaction committed after {attempt} attempts")
            return result

    async def _attempt(self, body: Body, session: StoreSession) -> T:
        await session.start_transaction()
        try:
            result = await body(session)
            await session.commit_transaction()
        except Exception as e:
            await self._abort(session, e)
            raise
        return result

    async def _abort(self, session: StoreSession, error: Exception) -> None:
        """Abort, keeping the original error when the abort itself fails."""
        try:
            await session.abort_transaction()
        except Exception as abort_error:
            logger.warning(f"Abort after '{error}' failed: {abort_error}")
