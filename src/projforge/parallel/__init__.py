"""Parallelization utilities for ProjForge.

Transcripts are independent: the batch runner spreads them over worker
threads, and each worker runs its transcripts through its own
scheduler, which enforces the per-transcript timeout.

Example:
    >>> from projforge.parallel import TranscriptBatchRunner, TranscriptJob
    >>> runner = TranscriptBatchRunner(context, n_workers=4)
    >>> outcomes, stats = runner.run([TranscriptJob(t, tuple(hits[t.gene_id])) for t in transcripts])
"""

from projforge.parallel.executor import (
    ExecutionStats,
    ExecutorBackend,
    ParallelExecutor,
    TaskResult,
    TranscriptBatchRunner,
    TranscriptJob,
    create_progress_bar,
)
from projforge.parallel.scheduler import SchedulerState, TranscriptOutcome, TranscriptScheduler

__all__ = [
    # Execution
    "ExecutionStats",
    "ExecutorBackend",
    "ParallelExecutor",
    "TaskResult",
    "TranscriptBatchRunner",
    "TranscriptJob",
    "create_progress_bar",
    # Scheduling
    "SchedulerState",
    "TranscriptOutcome",
    "TranscriptScheduler",
]
