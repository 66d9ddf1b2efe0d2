"""Background analysis queue consumer."""

from .processor import AnalysisError, HttpAnalysisProcessor
from .worker import AnalysisWorker, WorkerReport

__all__ = [
    "AnalysisError",
    "AnalysisWorker",
    "HttpAnalysisProcessor",
    "WorkerReport",
]
