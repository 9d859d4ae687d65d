"""
settle_all -- run independent entity store calls concurrently and wait for
every one to settle.

Contract:
    ``settle_all(calls)`` takes a mapping of key -> zero-argument callable,
    runs them on a thread pool and returns key -> ``Settled``.  It never
    raises because one call failed: every exception is captured in its
    ``Settled`` and every other call still runs to completion.  Result order
    follows the input mapping, not completion order.

Architecture: roster_batch/services.  Imports from roster_kernel only.

Invariants enforced:
    - Settle-all, not fail-fast.  A failed call never cancels its siblings.
    - The log context (correlation_id, batch_id) of the caller is visible to
      log records emitted inside the workers.
    - With ``timeout_seconds`` set, calls still running at the deadline
      settle as ``EntityStoreTimeoutError``.  The worker thread itself is not
      interrupted; its eventual result is discarded.
"""

from __future__ import annotations

import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, Generic, Mapping, TypeVar

from roster_kernel.exceptions import EntityStoreTimeoutError
from roster_kernel.logging_config import LogContext, get_logger

logger = get_logger("batch.fanout")

T = TypeVar("T")


@dataclass(frozen=True)
class Settled(Generic[T]):
    """Outcome of one call: either ``value`` or ``error`` is meaningful."""

    key: str
    value: T | None = None
    error: BaseException | None = None
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def error_code(self) -> str | None:
        if self.error is None:
            return None
        return getattr(self.error, "code", "UNHANDLED_EXCEPTION")

    @property
    def error_message(self) -> str | None:
        return str(self.error) if self.error is not None else None


def _timed(fn: Callable[[], T]) -> Callable[[], tuple[T, int]]:
    def _run() -> tuple[T, int]:
        start = time.monotonic()
        value = fn()
        return value, int((time.monotonic() - start) * 1000)

    return _run


def settle_all(
    calls: Mapping[str, Callable[[], T]],
    max_workers: int = 8,
    timeout_seconds: float | None = None,
    operation: str = "entity_call",
) -> dict[str, Settled[T]]:
    """Run every call concurrently and wait for all of them to settle.

    Args:
        calls: key -> zero-argument callable.  Keys must be unique (they are
            entity ids in practice).
        max_workers: Thread pool size; capped at the number of calls.
        timeout_seconds: Overall deadline for the whole fan-out.
        operation: Label for log records ("read" / "write").
    """
    if not calls:
        return {}

    pool = ThreadPoolExecutor(
        max_workers=max(1, min(max_workers, len(calls))),
        thread_name_prefix=f"roster-{operation}",
    )
    futures: dict[str, Future] = {
        key: pool.submit(LogContext.propagate(_timed(fn)))
        for key, fn in calls.items()
    }

    try:
        _, not_done = wait(futures.values(), timeout=timeout_seconds)
    finally:
        # Abandon stragglers instead of blocking on them past the deadline.
        pool.shutdown(wait=False, cancel_futures=True)

    results: dict[str, Settled[T]] = {}
    for key, future in futures.items():
        if future in not_done:
            future.cancel()
            results[key] = Settled(
                key=key,
                error=EntityStoreTimeoutError(key, timeout_seconds or 0.0),
            )
            continue
        error = future.exception()
        if error is not None:
            results[key] = Settled(key=key, error=error)
        else:
            value, duration_ms = future.result()
            results[key] = Settled(key=key, value=value, duration_ms=duration_ms)

    failed = [key for key, settled in results.items() if not settled.ok]
    if failed:
        logger.warning(
            "fanout_settled_with_failures",
            extra={
                "operation": operation,
                "total": len(results),
                "failed": len(failed),
                "failed_keys": failed,
            },
        )
    else:
        logger.debug(
            "fanout_settled",
            extra={"operation": operation, "total": len(results)},
        )
    return results
