"""
AnalysisWorkerManager - typed async interface to the analysis worker.

Clustering and correlation requests are offloaded to a worker when one is
ready, and run in-process with the same functions when it is not.

Lifecycle:
- UNINITIALIZED → INITIALIZING on first use; the ready handshake is bounded
  by ``worker_ready_timeout``
- INITIALIZING → READY when the worker reports ready
- INITIALIZING → UNAVAILABLE on start failure or handshake timeout
- READY → UNAVAILABLE when the worker can no longer accept messages
- any → TERMINATED on ``terminate()``; the next call initializes again

Once UNAVAILABLE the manager never retries by itself; every call takes the
fallback path until ``terminate()``.

All state is owned by the manager and mutated only on the event loop thread:
worker callbacks are marshalled onto the loop with ``call_soon_threadsafe``.
"""

import asyncio
import time
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Callable

from loguru import logger
from pydantic import ValidationError

from newswatch.analysis.clustering import cluster_news
from newswatch.analysis.config import (
    SOURCE_TIERS,
    SOURCE_TYPES,
    make_tier_lookup,
    make_type_lookup,
)
from newswatch.analysis.correlation import analyze_correlations
from newswatch.analysis.semantic import SimilarityOracle, refine_clusters
from newswatch.analysis.types import (
    ClusteredEvent,
    CorrelationSignal,
    MarketData,
    NewsItem,
    PredictionMarket,
    StreamSnapshot,
)
from newswatch.services.deduplicator import SignalDeduplicator
from newswatch.services.errors import (
    WorkerError,
    WorkerReadyTimeoutError,
    WorkerResetError,
    WorkerTerminatedError,
    WorkerTimeoutError,
    WorkerUnavailableError,
)
from newswatch.settings import Settings, global_settings
from newswatch.worker.protocol import (
    MessageKind,
    cluster_request_payload,
    correlation_request_payload,
    decode_message,
    encode_message,
    load_clusters,
    load_signals,
)
from newswatch.worker.runtime import AnalysisWorker, ThreadAnalysisWorker


class WorkerState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    UNAVAILABLE = "unavailable"
    TERMINATED = "terminated"


_RESULT_KINDS = {
    MessageKind.CLUSTER: MessageKind.CLUSTER_RESULT,
    MessageKind.CORRELATION: MessageKind.CORRELATION_RESULT,
}


@dataclass
class PendingRequest:
    kind: MessageKind
    future: asyncio.Future
    timeout_handle: asyncio.TimerHandle


def _consume_exception(future: asyncio.Future) -> None:
    # The ready future may fail with no one awaiting it
    if not future.cancelled():
        future.exception()


class AnalysisWorkerManager:
    """
    Owns the analysis worker, its pending requests and the fallback state.

    Usage:
        manager = AnalysisWorkerManager()
        clusters = await manager.cluster_news(items)
        signals = await manager.analyze_correlations(clusters, predictions, markets)
        manager.terminate()

    Methods must be called from the event loop thread. Per-request timeouts
    raise WorkerTimeoutError; callers decide whether to retry.
    """

    def __init__(
        self,
        worker_factory: Callable[[], AnalysisWorker] = ThreadAnalysisWorker,
        settings: Settings | None = None,
        source_tiers: dict[str, int] | None = None,
        source_types: dict[str, str] | None = None,
        dedup_clock: Callable[[], float] = time.monotonic,
    ):
        self._settings = settings or global_settings
        self._worker_factory = worker_factory
        self._source_tiers = dict(SOURCE_TIERS if source_tiers is None else source_tiers)
        self._source_types = dict(SOURCE_TYPES if source_types is None else source_types)
        self._tier_lookup = make_tier_lookup(self._source_tiers)
        self._type_lookup = make_type_lookup(self._source_types)

        self._worker: AnalysisWorker | None = None
        self._state = WorkerState.UNINITIALIZED
        self._unavailable_error: WorkerUnavailableError | None = None
        self._ready_future: asyncio.Future | None = None
        self._ready_timer: asyncio.TimerHandle | None = None

        self._pending: dict[str, PendingRequest] = {}
        self._request_counter = 0

        self._fallback_snapshot: StreamSnapshot | None = None
        self._fallback_dedup = SignalDeduplicator(
            window=timedelta(minutes=self._settings.signal_dedup_minutes),
            clock=dedup_clock,
        )

    # Lifecycle

    def _init_worker(self) -> None:
        """Start the worker. Called lazily on first use."""
        if self._worker is not None or self._unavailable_error is not None:
            return

        loop = asyncio.get_running_loop()
        self._state = WorkerState.INITIALIZING
        self._ready_future = loop.create_future()
        self._ready_future.add_done_callback(_consume_exception)
        self._ready_timer = loop.call_later(
            self._settings.worker_ready_timeout, self._on_ready_timeout
        )

        try:
            worker = self._worker_factory()
            self._worker = worker
            worker.start(
                on_message=self._threadsafe(loop, worker, self._on_worker_message),
                on_error=self._threadsafe(loop, worker, self._on_worker_error),
            )
        except Exception as exc:
            logger.error(f"[AnalysisWorker] Failed to create worker: {exc}")
            self._mark_unavailable(
                WorkerUnavailableError(f"Failed to create worker: {exc}")
            )
            return

        logger.debug("[AnalysisWorker] Worker started, waiting for ready handshake")

    def _threadsafe(
        self,
        loop: asyncio.AbstractEventLoop,
        worker: AnalysisWorker,
        handler: Callable[[AnalysisWorker, Any], None],
    ) -> Callable[[Any], None]:
        def callback(arg: Any) -> None:
            if not loop.is_closed():
                loop.call_soon_threadsafe(handler, worker, arg)

        return callback

    def _on_ready_timeout(self) -> None:
        self._ready_timer = None
        if self._state != WorkerState.INITIALIZING:
            return
        error = WorkerReadyTimeoutError(self._settings.worker_ready_timeout)
        logger.error(f"[AnalysisWorker] {error}")
        self._mark_unavailable(error)

    def _mark_unavailable(self, error: WorkerUnavailableError) -> None:
        self._unavailable_error = error
        self._state = WorkerState.UNAVAILABLE
        self._reject_all(lambda: WorkerUnavailableError(str(error)))
        self._teardown(error)

    def _teardown(self, error: WorkerUnavailableError) -> None:
        if self._ready_timer is not None:
            self._ready_timer.cancel()
            self._ready_timer = None
        if self._ready_future is not None and not self._ready_future.done():
            self._ready_future.set_exception(error)
        self._ready_future = None
        if self._worker is not None:
            worker, self._worker = self._worker, None
            worker.terminate()

    def _reject_all(self, make_error: Callable[[], Exception]) -> None:
        pending, self._pending = self._pending, {}
        for request in pending.values():
            request.timeout_handle.cancel()
            if not request.future.done():
                request.future.set_exception(make_error())

    async def wait_until_ready(self) -> None:
        """
        Initialize the worker if needed and wait for its ready handshake.

        Raises:
            WorkerUnavailableError: Worker could not start or is unavailable
            WorkerReadyTimeoutError: No handshake within the ready timeout
        """
        if self._unavailable_error is not None:
            raise self._unavailable_error
        self._init_worker()
        if self._state == WorkerState.READY:
            return
        if self._unavailable_error is not None:
            raise self._unavailable_error
        await asyncio.shield(self._ready_future)

    def reset(self) -> None:
        """
        Reject pending requests and clear correlation state, keeping the worker.
        """
        self._reject_all(WorkerResetError)
        if self._worker is not None:
            try:
                self._worker.post(encode_message(MessageKind.RESET))
            except WorkerError as exc:
                logger.warning(f"[AnalysisWorker] Could not reset worker state: {exc}")
        self._fallback_snapshot = None
        self._fallback_dedup.clear()
        logger.info("[AnalysisWorker] Reset")

    def terminate(self) -> None:
        """Tear down the worker; the next call initializes a fresh one."""
        self._reject_all(WorkerTerminatedError)
        self._teardown(WorkerUnavailableError("Worker terminated during initialization"))
        self._unavailable_error = None
        self._state = WorkerState.TERMINATED
        self._fallback_snapshot = None
        self._fallback_dedup.clear()
        logger.info("[AnalysisWorker] Terminated")

    @property
    def ready(self) -> bool:
        return self._state == WorkerState.READY

    @property
    def state(self) -> WorkerState:
        return self._state

    def get_status(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "pending_requests": len(self._pending),
            "unavailable_reason": (
                str(self._unavailable_error) if self._unavailable_error else None
            ),
            "fallback_dedup": self._fallback_dedup.get_stats().to_dict(),
        }

    # Worker callbacks (event loop thread)

    def _on_worker_message(self, worker: AnalysisWorker, raw: str) -> None:
        if worker is not self._worker:
            return
        try:
            message = decode_message(raw)
        except WorkerError as exc:
            logger.error(f"[AnalysisWorker] {exc}")
            return

        if message.kind == MessageKind.READY:
            if self._state != WorkerState.INITIALIZING:
                return
            self._state = WorkerState.READY
            if self._ready_timer is not None:
                self._ready_timer.cancel()
                self._ready_timer = None
            if self._ready_future is not None and not self._ready_future.done():
                self._ready_future.set_result(None)
            logger.info("[AnalysisWorker] Worker ready")
            return

        pending = self._pending.pop(message.id, None) if message.id else None
        if pending is None:
            logger.debug(f"[AnalysisWorker] Dropping response for unknown request {message.id}")
            return
        pending.timeout_handle.cancel()
        if pending.future.done():
            return

        expected = _RESULT_KINDS[pending.kind]
        if message.kind != expected:
            pending.future.set_exception(
                WorkerError(f"Expected {expected.value}, got {message.kind.value}")
            )
            return
        try:
            if message.kind == MessageKind.CLUSTER_RESULT:
                result: Any = load_clusters(message.payload)
            else:
                result = load_signals(message.payload)
        except ValidationError as exc:
            pending.future.set_exception(WorkerError(f"Invalid worker response: {exc}"))
            return
        pending.future.set_result(result)

    def _on_worker_error(self, worker: AnalysisWorker, exc: BaseException) -> None:
        if worker is not self._worker:
            return
        if self._state != WorkerState.READY:
            logger.error(f"[AnalysisWorker] Worker failed to initialize: {exc}")
            self._mark_unavailable(
                WorkerUnavailableError(f"Worker failed to initialize: {exc}")
            )
            return

        logger.error(f"[AnalysisWorker] Error: {exc}")
        self._reject_all(lambda: WorkerError(f"Worker error: {exc}"))

    # Requests

    def _generate_id(self) -> str:
        self._request_counter += 1
        return f"req-{self._request_counter}-{int(time.time() * 1000)}"

    def _on_request_timeout(self, request_id: str, label: str, timeout: float) -> None:
        pending = self._pending.pop(request_id, None)
        if pending is not None and not pending.future.done():
            pending.future.set_exception(WorkerTimeoutError(label, timeout))

    async def _offload(
        self, kind: MessageKind, payload: dict[str, Any], timeout: float, label: str
    ) -> Any:
        await self.wait_until_ready()
        if self._worker is None or self._state != WorkerState.READY:
            raise WorkerUnavailableError("Worker stopped before the request was sent")

        loop = asyncio.get_running_loop()
        request_id = self._generate_id()
        message = encode_message(kind, request_id, payload)
        future = loop.create_future()
        handle = loop.call_later(
            timeout, self._on_request_timeout, request_id, label, timeout
        )
        self._pending[request_id] = PendingRequest(kind, future, handle)

        try:
            self._worker.post(message)
        except WorkerError as exc:
            self._pending.pop(request_id, None)
            handle.cancel()
            error = WorkerUnavailableError(f"Worker stopped accepting requests: {exc}")
            logger.error(f"[AnalysisWorker] {error}")
            self._mark_unavailable(error)
            raise error from exc

        logger.debug(f"[AnalysisWorker] Dispatched {kind.value} request {request_id}")
        try:
            return await future
        except asyncio.CancelledError:
            self._pending.pop(request_id, None)
            handle.cancel()
            raise

    def _run_cluster_fallback(self, items: list[NewsItem]) -> list[ClusteredEvent]:
        return cluster_news(items, self._tier_lookup)

    def _run_correlation_fallback(
        self,
        clusters: list[ClusteredEvent],
        predictions: list[Any],
        markets: list[Any],
    ) -> list[CorrelationSignal]:
        outcome = analyze_correlations(
            clusters,
            predictions,
            markets,
            self._fallback_snapshot,
            self._type_lookup,
            self._fallback_dedup.is_duplicate,
            self._fallback_dedup.mark_seen,
        )
        self._fallback_snapshot = outcome.snapshot
        return outcome.signals

    async def cluster_news(
        self, items: Sequence[NewsItem], fallback: bool = True
    ) -> list[ClusteredEvent]:
        """
        Cluster news items, running O(n²) similarity off the caller's thread.

        Args:
            items: News items to cluster
            fallback: Cluster in-process when the worker is unavailable;
                with False, WorkerUnavailableError propagates instead

        Raises:
            WorkerTimeoutError: The worker did not answer in time
            WorkerError: The worker faulted while the request was in flight
        """
        items = list(items)
        try:
            return await self._offload(
                MessageKind.CLUSTER,
                cluster_request_payload(items, self._source_tiers),
                self._settings.cluster_request_timeout,
                "clustering",
            )
        except WorkerUnavailableError as exc:
            if not fallback:
                raise
            logger.warning(f"[AnalysisWorker] Clustering in-process: {exc}")
            return self._run_cluster_fallback(items)

    async def cluster_news_hybrid(
        self,
        items: Sequence[NewsItem],
        oracle: SimilarityOracle | None = None,
    ) -> list[ClusteredEvent]:
        """Jaccard clustering followed by semantic refinement, when available."""
        clusters = await self.cluster_news(items)
        return await refine_clusters(clusters, oracle, self._tier_lookup)

    async def analyze_correlations(
        self,
        clusters: Sequence[ClusteredEvent],
        predictions: Sequence[PredictionMarket | dict[str, Any]] = (),
        markets: Sequence[MarketData | dict[str, Any]] = (),
        fallback: bool = True,
    ) -> list[CorrelationSignal]:
        """
        Detect correlation signals across news, prediction markets and markets.

        Raises:
            WorkerTimeoutError: The worker did not answer in time
            WorkerError: The worker faulted while the request was in flight
        """
        clusters, predictions, markets = list(clusters), list(predictions), list(markets)
        try:
            return await self._offload(
                MessageKind.CORRELATION,
                correlation_request_payload(
                    clusters, predictions, markets, self._source_types
                ),
                self._settings.correlation_request_timeout,
                "correlation",
            )
        except WorkerUnavailableError as exc:
            if not fallback:
                raise
            logger.warning(f"[AnalysisWorker] Correlation analysis in-process: {exc}")
            return self._run_correlation_fallback(clusters, predictions, markets)
