"""
PM-Fit Backend - Request Queue

Bounded-concurrency scheduler for outbound calls to rate-limited upstreams.
Retries transient failures with backoff, deduplicates identical keyed
requests, and runs low-priority prefetches in whatever slots are idle.

One queue is built per process (see main.create_app) and injected where needed.
"""

import asyncio
import copy
import heapq
import inspect
import itertools
import json
import time
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from functools import partial
from typing import Any, Awaitable, Callable, Optional

import httpx

from pmfit.cache import TTLCache
from pmfit.config import generate_error_code, log
from pmfit.models import QueueConfig, QueueStatus


Operation = Callable[[], Any]
Invoker = Callable[[str, dict], Awaitable[Any]]

# Besides 5xx, the only status worth another attempt (rate limited)
RETRYABLE_STATUS_CODES = {429}


class QueueError(Exception):
    pass


class TransientError(QueueError):
    """Failure that may succeed on another attempt."""
    retryable = True


class PermanentError(QueueError):
    """Failure that will not succeed on retry (bad request, validation)."""
    retryable = False


class Priority(IntEnum):
    HIGH = 0
    NORMAL = 1
    LOW = 2  # prefetch


class TaskState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    RETRY_SCHEDULED = "retry_scheduled"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


def is_retryable_status(status_code: int) -> bool:
    return status_code >= 500 or status_code in RETRYABLE_STATUS_CODES


def is_retryable(error: BaseException) -> bool:
    """Classify a failure as transient (retry) or permanent (surface now).

    An explicit `retryable` attribute on the error always wins. HTTP status
    errors retry on 5xx and 429 only. Timeouts, network errors and anything
    unclassified (e.g. a synchronous raise inside the operation) are retried.
    """
    tagged = getattr(error, "retryable", None)
    if tagged is not None:
        return bool(tagged)
    if isinstance(error, httpx.HTTPStatusError):
        return is_retryable_status(error.response.status_code)
    return True


def request_key(name: str, payload: Optional[dict] = None) -> str:
    """Dedup key: endpoint name plus the payload serialized with sorted keys."""
    body = json.dumps(payload or {}, sort_keys=True, separators=(",", ":"), default=str)
    return f"{name}:{body}"


@dataclass(eq=False)
class QueuedTask:
    operation: Operation
    future: asyncio.Future
    priority: int
    sequence: int
    retries_remaining: int
    key: Optional[str] = None
    label: str = ""
    attempts: int = 0
    state: TaskState = TaskState.PENDING
    last_error: Optional[BaseException] = None
    delays: list[float] = field(default_factory=list)


class RequestQueue:
    """Run async operations with a concurrency ceiling, retry and dedup.

    Tasks move through an explicit state machine:

        pending -> running -> succeeded
                           -> retry_scheduled -> pending -> running ...
                           -> failed

    `sleep` and `clock` are injectable so backoff and TTL logic can be
    exercised without real timers.
    """

    def __init__(
        self,
        config: Optional[QueueConfig] = None,
        *,
        invoker: Optional[Invoker] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or QueueConfig()
        self._invoker = invoker
        self._sleep = sleep
        self._clock = clock

        self._pending: list[tuple[int, int, QueuedTask]] = []
        self._sequence = itertools.count()
        self._active = 0
        self._retrying = 0
        self._next_start_at = 0.0

        self._live: set[QueuedTask] = set()
        self._workers: set[asyncio.Task] = set()
        self._in_flight: dict[str, QueuedTask] = {}
        self._recent = TTLCache(
            self.config.dedupe_ttl_ms / 1000,
            max_entries=self.config.dedupe_max_entries,
            clock=clock,
        )

        self._completed = 0
        self._failed = 0
        self._retries = 0
        self._deduplicated = 0

    @property
    def dedupe_enabled(self) -> bool:
        return self.config.dedupe_ttl_ms > 0

    # ── Public API ───────────────────────────────────────────────────────

    def add(
        self,
        operation: Operation,
        *,
        priority: int = Priority.NORMAL,
        key: Optional[str] = None,
        label: str = "",
    ) -> asyncio.Future:
        """Queue an operation and return a future for its result.

        Must be called from inside a running event loop. The future resolves
        with the operation's result, or rejects with its final error once
        retries are exhausted (immediately for permanent errors).
        """
        loop = asyncio.get_running_loop()

        if key is not None and self.dedupe_enabled:
            existing = self._lookup(key, priority, loop)
            if existing is not None:
                self._deduplicated += 1
                log("INFO", "dedup hit", label=label or key, key=key)
                return existing

        task = QueuedTask(
            operation=operation,
            future=loop.create_future(),
            priority=int(priority),
            sequence=next(self._sequence),
            retries_remaining=self.config.max_retries,
            key=key if self.dedupe_enabled else None,
            label=label,
        )
        self._live.add(task)
        if task.key is not None:
            self._in_flight[task.key] = task

        self._push(task)
        log("INFO", "task queued", label=label, priority=task.priority, pending=len(self._pending), active=self._active)
        self._pump()
        return asyncio.shield(task.future)

    def invoke_function(
        self,
        name: str,
        payload: Optional[dict] = None,
        *,
        priority: int = Priority.NORMAL,
    ) -> asyncio.Future:
        """Invoke a named upstream function through the queue."""
        if self._invoker is None:
            raise QueueError("no function invoker configured")
        body = dict(payload or {})
        key = request_key(name, body) if self.dedupe_enabled else None
        return self.add(partial(self._invoker, name, body), priority=priority, key=key, label=name)

    def prefetch_related(self, name: str, payload: Optional[dict] = None) -> None:
        """Warm a downstream cache at lowest priority. Never raises, never blocks."""
        try:
            future = self.invoke_function(name, payload, priority=Priority.LOW)
        except QueueError as e:
            log("WARN", "prefetch skipped", label=name, error=str(e))
            return
        future.add_done_callback(partial(_log_prefetch_outcome, name))

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number `attempt` (1-based)."""
        delay_ms = min(self.config.backoff_base_ms * attempt ** 2, self.config.backoff_max_ms)
        return delay_ms / 1000

    def status(self) -> QueueStatus:
        return QueueStatus(
            pending=len(self._pending),
            active=self._active,
            retrying=self._retrying,
            max_concurrency=self.config.max_concurrency,
            completed=self._completed,
            failed=self._failed,
            retries=self._retries,
            deduplicated=self._deduplicated,
            cached=len(self._recent),
        )

    async def join(self) -> None:
        """Wait until every queued, running or retrying task has settled."""
        while self._live:
            await asyncio.wait([task.future for task in list(self._live)])

    # ── Scheduling ───────────────────────────────────────────────────────

    def _push(self, task: QueuedTask) -> None:
        task.state = TaskState.PENDING
        heapq.heappush(self._pending, (task.priority, task.sequence, task))

    def _pump(self) -> None:
        while self._pending and self._active < self.config.max_concurrency:
            _, _, task = heapq.heappop(self._pending)
            self._active += 1
            task.state = TaskState.RUNNING
            worker = asyncio.create_task(self._run(task))
            self._workers.add(worker)
            worker.add_done_callback(self._workers.discard)

    def _lookup(self, key: str, priority: int, loop: asyncio.AbstractEventLoop) -> Optional[asyncio.Future]:
        task = self._in_flight.get(key)
        if task is not None:
            if task.state is TaskState.PENDING and priority < task.priority:
                self._promote(task, int(priority))
            return asyncio.shield(task.future)

        if key in self._recent:
            future = loop.create_future()
            # Every hit gets its own copy so one caller's edits stay local
            future.set_result(copy.deepcopy(self._recent.get(key)))
            return future
        return None

    def _promote(self, task: QueuedTask, priority: int) -> None:
        self._pending = [entry for entry in self._pending if entry[2] is not task]
        heapq.heapify(self._pending)
        task.priority = priority
        heapq.heappush(self._pending, (task.priority, task.sequence, task))

    def _reserve_start(self) -> float:
        """Delay before the next start so starts are min_interval_ms apart."""
        interval = self.config.min_interval_ms / 1000
        if interval <= 0:
            return 0.0
        now = self._clock()
        start_at = max(now, self._next_start_at)
        self._next_start_at = start_at + interval
        return start_at - now

    # ── Execution ────────────────────────────────────────────────────────

    async def _run(self, task: QueuedTask) -> None:
        try:
            wait = self._reserve_start()
            if wait > 0:
                await self._sleep(wait)

            task.attempts += 1
            started = self._clock()
            result = task.operation()
            if inspect.isawaitable(result):
                result = await result
        except asyncio.CancelledError:
            self._active -= 1
            self._forget(task)
            task.state = TaskState.FAILED
            task.future.cancel()
            self._pump()
            raise
        except Exception as e:
            self._active -= 1
            self._pump()
            await self._handle_failure(task, e)
            return
        except BaseException as e:
            self._active -= 1
            self._fail(task, e)
            self._pump()
            raise

        self._active -= 1
        self._succeed(task, result, started)
        self._pump()

    async def _handle_failure(self, task: QueuedTask, error: Exception) -> None:
        task.last_error = error
        if not is_retryable(error) or task.retries_remaining <= 0:
            self._fail(task, error)
            return

        task.retries_remaining -= 1
        task.state = TaskState.RETRY_SCHEDULED
        delay = self.backoff_delay(task.attempts)
        task.delays.append(delay)
        self._retries += 1
        self._retrying += 1
        log(
            "WARN",
            "task failed, retry scheduled",
            label=task.label,
            attempt=task.attempts,
            retries_remaining=task.retries_remaining,
            delay_ms=int(delay * 1000),
            error=str(error),
        )
        try:
            await self._sleep(delay)
        except asyncio.CancelledError:
            self._forget(task)
            task.state = TaskState.FAILED
            task.future.cancel()
            raise
        finally:
            self._retrying -= 1

        self._push(task)
        self._pump()

    def _succeed(self, task: QueuedTask, result: Any, started: float) -> None:
        task.state = TaskState.SUCCEEDED
        self._completed += 1
        self._forget(task)
        if task.key is not None:
            self._recent.set(task.key, copy.deepcopy(result))
        if not task.future.done():
            task.future.set_result(result)
        log(
            "INFO",
            "task completed",
            label=task.label,
            attempts=task.attempts,
            duration_ms=int((self._clock() - started) * 1000),
        )

    def _fail(self, task: QueuedTask, error: BaseException) -> None:
        task.state = TaskState.FAILED
        self._failed += 1
        self._forget(task)
        code = generate_error_code()
        log(
            "ERROR",
            "task failed",
            label=task.label,
            attempts=task.attempts,
            retryable=is_retryable(error),
            error=str(error),
            error_code=code,
        )
        if not task.future.done():
            task.future.set_exception(error)

    def _forget(self, task: QueuedTask) -> None:
        self._live.discard(task)
        if task.key is not None and self._in_flight.get(task.key) is task:
            del self._in_flight[task.key]


def _log_prefetch_outcome(name: str, future: asyncio.Future) -> None:
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        log("WARN", "prefetch failed", label=name, error=str(error))
