"""
Veil Protocol v1 Collaborator Calls

Proof verification and entropy-source validation are answered by external
collaborators. Every call is bounded by a timeout; callers decide how a
timeout maps onto their own error (always a verification failure, never a
silent retry).
"""

from __future__ import annotations
import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from typing import Any, Callable, TypeVar

from veil.constants import GATEWAY_WORKERS
from veil.errors import CollaboratorTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CollaboratorPool:
    """
    Thread pool for bounded collaborator calls.

    A call that overruns its timeout raises CollaboratorTimeoutError; the
    worker thread is left to finish on its own and its result is dropped.
    """

    def __init__(self, max_workers: int = GATEWAY_WORKERS, name: str = "veil-collaborator"):
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix=name,
        )
        self._closed = False

    def call(
        self,
        collaborator: str,
        fn: Callable[..., T],
        *args: Any,
        timeout_ms: int,
    ) -> T:
        """
        Run fn(*args) and wait at most timeout_ms for its result.

        Exceptions raised by fn propagate unchanged.

        Raises:
            CollaboratorTimeoutError: If fn did not return in time
        """
        future = self._executor.submit(fn, *args)
        try:
            return future.result(timeout=timeout_ms / 1000)
        except FuturesTimeoutError:
            future.cancel()
            logger.warning(f"{collaborator} timed out after {timeout_ms}ms")
            raise CollaboratorTimeoutError(collaborator, timeout_ms) from None

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting calls and release worker threads."""
        if not self._closed:
            self._executor.shutdown(wait=wait)
            self._closed = True

    def __enter__(self) -> "CollaboratorPool":
        return self

    def __exit__(self, *args) -> None:
        self.shutdown()
