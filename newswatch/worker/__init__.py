"""
Offloaded execution of clustering and correlation analysis.
"""

from newswatch.worker.manager import AnalysisWorkerManager, WorkerState
from newswatch.worker.runtime import AnalysisWorker, ThreadAnalysisWorker, WorkerRuntime

__all__ = [
    "AnalysisWorkerManager",
    "WorkerState",
    "AnalysisWorker",
    "ThreadAnalysisWorker",
    "WorkerRuntime",
]
