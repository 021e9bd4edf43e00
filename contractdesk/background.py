"""
Background dispatch of best-effort side effects.

Ticket operations hand notifications and activity logging to a
``BackgroundDispatcher`` so the caller gets its result without waiting on
SMTP or extra store round-trips. Task failures are logged and never
propagated.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable


logger = logging.getLogger(__name__)


class BackgroundDispatcher:
    """Fire-and-forget task runner backed by a thread pool."""

    def __init__(self, max_workers: int = 4):
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="contractdesk-side-effect",
        )

    def __enter__(self) -> "BackgroundDispatcher":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown(wait=True)

    def submit(self, name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        """
        Schedule ``fn`` and return immediately.

        Args:
            name: Label used when logging a failure.
            fn: Callable to run in the background.

        Returns:
            The task's Future; callers are not required to wait on it.
        """
        future = self._executor.submit(fn, *args, **kwargs)
        future.add_done_callback(lambda f: self._log_failure(name, f))
        return future

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting tasks; with ``wait`` block until queued ones finish."""
        self._executor.shutdown(wait=wait)

    @staticmethod
    def _log_failure(name: str, future: Future) -> None:
        if future.cancelled():
            logger.warning(f"Background task '{name}' was cancelled")
            return
        error = future.exception()
        if error is not None:
            logger.error(f"Background task '{name}' failed: {error}")
