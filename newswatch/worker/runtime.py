"""
Analysis worker - runs clustering and correlation off the caller's thread.

``WorkerRuntime`` is the worker-side request handler: it decodes a request,
calls the same pure functions the fallback path uses, and encodes the reply.
It owns the worker's correlation snapshot and dedup window.

``AnalysisWorker`` is the execution-context interface the manager talks to;
``ThreadAnalysisWorker`` implements it with a daemon thread and a queue.
"""

import queue
import threading
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, Callable

from loguru import logger

from newswatch.analysis.clustering import cluster_news
from newswatch.analysis.config import make_tier_lookup, make_type_lookup
from newswatch.analysis.correlation import analyze_correlations
from newswatch.analysis.types import StreamSnapshot
from newswatch.services.deduplicator import SignalDeduplicator
from newswatch.services.errors import WorkerError
from newswatch.settings import global_settings
from newswatch.worker.protocol import (
    ClusterRequest,
    CorrelationRequest,
    MessageKind,
    clusters_payload,
    decode_message,
    encode_message,
    signals_payload,
)

MessageHandler = Callable[[str], None]
ErrorHandler = Callable[[BaseException], None]


class WorkerRuntime:
    """Handles one decoded request at a time; not thread-safe by itself."""

    def __init__(self, dedup_window: timedelta | None = None):
        self._snapshot: StreamSnapshot | None = None
        self._dedup = SignalDeduplicator(
            window=dedup_window or timedelta(minutes=global_settings.signal_dedup_minutes)
        )

    def handle(self, raw: str) -> str | None:
        """Process one inbound message and return the reply, if any."""
        message = decode_message(raw)

        if message.kind == MessageKind.CLUSTER:
            request = ClusterRequest.model_validate(message.payload)
            clusters = cluster_news(request.items, make_tier_lookup(request.source_tiers))
            return encode_message(
                MessageKind.CLUSTER_RESULT, message.id, clusters_payload(clusters)
            )

        if message.kind == MessageKind.CORRELATION:
            request = CorrelationRequest.model_validate(message.payload)
            outcome = analyze_correlations(
                request.clusters,
                request.predictions,
                request.markets,
                self._snapshot,
                make_type_lookup(request.source_types),
                self._dedup.is_duplicate,
                self._dedup.mark_seen,
            )
            self._snapshot = outcome.snapshot
            return encode_message(
                MessageKind.CORRELATION_RESULT, message.id, signals_payload(outcome.signals)
            )

        if message.kind == MessageKind.RESET:
            self._snapshot = None
            self._dedup.clear()
            logger.debug("Worker state reset")
            return None

        raise WorkerError(f"Unsupported message kind for worker: {message.kind.value}")


class AnalysisWorker(ABC):
    """
    Execution context the manager offloads work to.

    ``start`` must eventually deliver a ``ready`` message through
    ``on_message``. Faults are reported through ``on_error``; the callbacks
    may be invoked from any thread.
    """

    @abstractmethod
    def start(self, on_message: MessageHandler, on_error: ErrorHandler) -> None: ...

    @abstractmethod
    def post(self, message: str) -> None:
        """Send one encoded message; raises WorkerError if not running."""

    @abstractmethod
    def terminate(self) -> None: ...


class ThreadAnalysisWorker(AnalysisWorker):
    """Runs a WorkerRuntime on a daemon thread fed by a queue."""

    def __init__(
        self,
        runtime_factory: Callable[[], WorkerRuntime] = WorkerRuntime,
        join_timeout: float = 2.0,
    ):
        self._runtime_factory = runtime_factory
        self._join_timeout = join_timeout
        self._inbox: queue.Queue[str | None] = queue.Queue()
        self._thread: threading.Thread | None = None

    def start(self, on_message: MessageHandler, on_error: ErrorHandler) -> None:
        self._thread = threading.Thread(
            target=self._run,
            args=(on_message, on_error),
            name="analysis-worker",
            daemon=True,
        )
        self._thread.start()

    @staticmethod
    def _deliver(callback: Callable[[Any], None], value: Any) -> bool:
        """Hand a value to the owner; False once the owner can no longer receive."""
        try:
            callback(value)
        except Exception:
            logger.exception("Analysis worker could not deliver to its owner, stopping")
            return False
        return True

    def _run(self, on_message: MessageHandler, on_error: ErrorHandler) -> None:
        try:
            runtime = self._runtime_factory()
        except Exception as exc:
            logger.exception("Analysis worker failed to start")
            self._deliver(on_error, exc)
            return

        if not self._deliver(on_message, encode_message(MessageKind.READY)):
            return

        while True:
            raw = self._inbox.get()
            if raw is None:
                break
            try:
                reply = runtime.handle(raw)
            except Exception as exc:
                logger.exception("Analysis worker failed to handle a message")
                if not self._deliver(on_error, exc):
                    break
                continue
            if reply is not None and not self._deliver(on_message, reply):
                break

        logger.debug("Analysis worker thread exiting")

    def post(self, message: str) -> None:
        if self._thread is None or not self._thread.is_alive():
            raise WorkerError("Analysis worker thread is not running")
        self._inbox.put(message)

    def terminate(self) -> None:
        if self._thread is None:
            return
        thread, self._thread = self._thread, None
        self._inbox.put(None)
        if thread is threading.current_thread():
            return
        thread.join(timeout=self._join_timeout)
        if thread.is_alive():
            logger.warning(
                f"Analysis worker thread still busy {self._join_timeout}s after terminate"
            )
