"""Concurrency helpers shared by the API and the worker."""

from __future__ import annotations

import asyncio
import threading
from typing import Callable, Optional, TypeVar

T = TypeVar("T")


async def maybe_to_thread(offload: bool, func: Callable[..., T], *args, **kwargs) -> T:
    """Run ``func`` in a worker thread when ``offload`` is True."""

    if offload:
        return await asyncio.to_thread(func, *args, **kwargs)
    return func(*args, **kwargs)


class JobCancelledError(RuntimeError):
    """Raised when a job observes a cancellation request between steps."""


class CancellationToken:
    """Cooperative cancellation flag.

    A token created with ``parents`` reports cancellation when itself or any
    parent has been cancelled, so a per-job token can follow a worker-wide
    shutdown token.
    """

    def __init__(self, *parents: "CancellationToken") -> None:
        self._event = threading.Event()
        self._parents = tuple(parents)
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return any(parent.cancelled for parent in self._parents)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            reason = self.reason or next(
                (parent.reason for parent in self._parents if parent.cancelled), None
            )
            raise JobCancelledError(reason or "cancelled")

    def child(self) -> "CancellationToken":
        return CancellationToken(self)


__all__ = ["CancellationToken", "JobCancelledError", "maybe_to_thread"]
