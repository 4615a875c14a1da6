"""Request-coalescing, memoizing cache.

``BatchingCache`` groups every ``load`` issued before control returns to the
event loop into a single call of its batch function, and keeps each resolved
value for the lifetime of the cache instance.

Cache entries are ``asyncio.Future`` objects held per key:

- no entry: the key was never requested (or was cleared)
- pending future: a batch containing the key is queued or in flight
- future with a result: resolved, served without I/O
- future with an exception: rejected, kept or evicted per ``FailurePolicy``
- primed value: resolved without I/O; turned into a future by the next ``load``

Thread Safety:
    - Entries are only mutated synchronously on the owning event loop (at
      ``load``/``prime``/``clear`` time and when a batch settles), so no locks
      are needed. A cache must not be shared across loops or threads.

Cancellation:
    - Not propagated. Callers that may be cancelled should await
      ``asyncio.shield(cache.load(key))`` so a cancelled awaiter does not
      cancel the shared future. An entry that was cancelled anyway is
      treated as unrequested by the next ``load``, and a cancelled batch
      drops its pending entries.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Generic,
    Hashable,
    Iterable,
    List,
    Optional,
    Sequence,
    Set,
    Tuple,
    TypeVar,
    Union,
)

import structlog

from ..common.metrics import MetricsCollector
from .errors import BatchLoadError

logger = structlog.get_logger("loader.batching")

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

BatchLoadFn = Callable[[List[K]], Awaitable[Sequence[Union[V, BaseException]]]]


@dataclass(frozen=True)
class _Primed:
    """A primed value whose future has not been built yet."""
    value: Any


class FailurePolicy(Enum):
    """What happens to a key whose fetch failed."""
    CACHE = "cache"  # keep the rejection; later loads fail without a fetch
    EVICT = "evict"  # drop the entry once settled; the next load fetches again

    @classmethod
    def from_flag(cls, cache_failures: bool) -> "FailurePolicy":
        return cls.CACHE if cache_failures else cls.EVICT


class BatchingCache(Generic[K, V]):
    """Coalesce concurrent loads into batches and memoize the results.

    Args:
        batch_load_fn: Async function receiving the ordered list of newly
            requested keys and returning a same-length sequence where each
            item is that key's value or an exception instance.
        failure_policy: Whether rejected entries stay cached.
        name: Label used in logs and metrics.
        metrics: Optional collector for batch and hit/miss metrics.
    """

    def __init__(
        self,
        batch_load_fn: BatchLoadFn,
        *,
        failure_policy: FailurePolicy = FailurePolicy.CACHE,
        name: str = "batching_cache",
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self._batch_load_fn = batch_load_fn
        self.failure_policy = failure_policy
        self.name = name
        self._metrics = metrics
        self._entries: Dict[K, Union[asyncio.Future, _Primed]] = {}
        self._queue: List[Tuple[K, asyncio.Future]] = []
        self._dispatch_handle: Optional[asyncio.Handle] = None
        self._inflight: Set[asyncio.Task] = set()

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def pending_keys(self) -> List[K]:
        """Keys queued for the next batch, in request order."""
        return [key for key, _ in self._queue]

    def load(self, key: K) -> "asyncio.Future[V]":
        """Return a future for ``key``, fetching it at most once.

        Resolved and in-flight entries are returned as-is. An unrequested key
        joins the current coalescing window, which is flushed on the next
        event loop iteration (or by ``flush``). A cancelled entry counts as
        unrequested.
        """
        loop = asyncio.get_running_loop()
        entry = self._entries.get(key)

        if isinstance(entry, _Primed):
            future = loop.create_future()
            future.set_result(entry.value)
            self._entries[key] = future
            entry = future

        if entry is not None and not entry.cancelled():
            if self._metrics:
                self._metrics.record_cache_hit(self.name)
            return entry

        if self._metrics:
            self._metrics.record_cache_miss(self.name)

        if entry is not None:
            self._queue = [(queued_key, queued) for queued_key, queued in self._queue if queued is not entry]

        future = loop.create_future()
        self._entries[key] = future
        self._queue.append((key, future))
        if self._dispatch_handle is None:
            self._dispatch_handle = loop.call_soon(self.flush)
        return future

    async def load_many(self, keys: Iterable[K]) -> List[Union[V, BaseException]]:
        """Load several keys through the same window.

        Failed keys come back as exception instances in their position rather
        than raising.
        """
        futures = [self.load(key) for key in keys]
        return await asyncio.gather(
            *(asyncio.shield(future) for future in futures),
            return_exceptions=True,
        )

    def prime(self, key: K, value: V) -> None:
        """Install ``value`` as the resolved entry for ``key``.

        Overwrites whatever was there. A displaced in-flight future still
        settles for the callers already awaiting it; later loads see ``value``.
        Needs no running event loop; the resolved future is built by the next
        ``load``.
        """
        self._entries[key] = _Primed(value)
        if self._metrics:
            self._metrics.record_prime(self.name)

    def clear(self, key: K) -> None:
        """Forget ``key``; the next load fetches it again."""
        self._entries.pop(key, None)

    def clear_all(self) -> None:
        """Forget every entry."""
        self._entries.clear()

    def flush(self) -> None:
        """Dispatch the current coalescing window now."""
        if self._dispatch_handle is not None:
            self._dispatch_handle.cancel()
            self._dispatch_handle = None
        if not self._queue:
            return

        batch, self._queue = self._queue, []
        task = asyncio.get_running_loop().create_task(self._dispatch(batch))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _dispatch(self, batch: List[Tuple[K, asyncio.Future]]) -> None:
        keys = [key for key, _ in batch]
        if self._metrics:
            self._metrics.record_batch(self.name, len(keys))
        logger.debug("Dispatching batch", cache=self.name, size=len(keys))

        try:
            results = list(await self._batch_load_fn(keys))
        except asyncio.CancelledError:
            for key, future in batch:
                self._drop(key, future)
                future.cancel()
            raise
        except Exception as e:
            logger.warning("Batch load failed", cache=self.name, size=len(keys), error=str(e))
            for key, future in batch:
                self._settle(key, future, e)
            return

        if len(results) != len(keys):
            error = BatchLoadError(
                f"Batch function for {self.name} returned {len(results)} results "
                f"for {len(keys)} keys."
            )
            logger.error("Batch result length mismatch", cache=self.name, keys=len(keys), results=len(results))
            for key, future in batch:
                self._settle(key, future, error)
            return

        for (key, future), result in zip(batch, results):
            self._settle(key, future, result)

    def _drop(self, key: K, future: asyncio.Future) -> None:
        # Only remove the entry if it was not primed or re-requested since
        if self._entries.get(key) is future:
            del self._entries[key]

    def _settle(self, key: K, future: asyncio.Future, result: Union[V, BaseException]) -> None:
        if future.done():
            # An awaiter cancelled the shared future; let the next load retry
            if future.cancelled():
                self._drop(key, future)
            return

        if isinstance(result, BaseException):
            future.set_exception(result)
            if self.failure_policy is FailurePolicy.EVICT:
                self._drop(key, future)
        else:
            future.set_result(result)
