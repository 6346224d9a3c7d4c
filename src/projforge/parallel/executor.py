"""Local parallel execution over transcripts.

This module runs ProjForge transcripts in parallel using threads. Each
worker thread owns its own ``TranscriptScheduler`` so per-transcript
timeouts never block other workers.

Features:
    - Serial and threaded backends
    - Progress tracking with rich
    - Error handling and recovery
    - Results in input order

Example:
    >>> from projforge.parallel.executor import TranscriptBatchRunner
    >>> runner = TranscriptBatchRunner(context, n_workers=4)
    >>> outcomes, stats = runner.run(jobs)
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from enum import Enum
from typing import Any, TypeVar

import attrs
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeRemainingColumn,
)

from projforge.core.context import ProjectionContext
from projforge.core.hits import Hit
from projforge.core.transcript import ReferenceTranscript
from projforge.parallel.scheduler import SchedulerState, TranscriptOutcome, TranscriptScheduler
from projforge.utils.logging import ProgressLogger

logger = logging.getLogger(__name__)

# Transcripts between progress lines when no callback is given
PROGRESS_INTERVAL = 100

T = TypeVar("T")
R = TypeVar("R")


# =============================================================================
# Enums
# =============================================================================


class ExecutorBackend(Enum):
    """Available execution backends."""

    SERIAL = "serial"
    THREADS = "threads"


# =============================================================================
# Data Structures
# =============================================================================


@attrs.define(slots=True)
class TaskResult:
    """Result from a parallel task."""

    task_id: str
    index: int
    success: bool
    result: Any | None = None
    error: str | None = None
    duration_seconds: float = 0.0

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "task_id": self.task_id,
            "success": self.success,
            "error": self.error,
            "duration_seconds": round(self.duration_seconds, 3),
        }


@attrs.define(slots=True)
class ExecutionStats:
    """Statistics from parallel execution."""

    total_tasks: int
    successful: int
    failed: int
    total_duration: float
    mean_task_duration: float
    max_task_duration: float

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "total_tasks": self.total_tasks,
            "successful": self.successful,
            "failed": self.failed,
            "total_duration": round(self.total_duration, 3),
            "mean_task_duration": round(self.mean_task_duration, 3),
            "max_task_duration": round(self.max_task_duration, 3),
        }


# =============================================================================
# Executor
# =============================================================================


class ParallelExecutor:
    """Execute tasks over a list of items.

    Features:
    - Serial or threaded backend
    - Progress tracking with callbacks
    - Graceful error handling (continue on failure)
    - Results returned in input order

    Example:
        >>> executor = ParallelExecutor(n_workers=4, backend="threads")
        >>> results, stats = executor.map_items(func, items)
        >>> print(f"Processed {stats.successful}/{stats.total_tasks} items")
    """

    def __init__(
        self,
        n_workers: int = 1,
        backend: ExecutorBackend | str = ExecutorBackend.THREADS,
        progress_callback: Callable[[int, int, str], None] | None = None,
    ) -> None:
        """Initialize executor.

        Args:
            n_workers: Number of parallel workers (1 = serial).
            backend: Execution backend.
            progress_callback: Called with (completed, total, task_id).
        """
        self.n_workers = max(1, n_workers)
        self.backend = ExecutorBackend(backend) if isinstance(backend, str) else backend
        self.progress_callback = progress_callback

        # Auto-select serial if n_workers=1
        if self.n_workers == 1:
            self.backend = ExecutorBackend.SERIAL

    def map_items(
        self,
        func: Callable[[T], R],
        items: Sequence[T],
        ids: Sequence[str] | None = None,
        continue_on_error: bool = True,
    ) -> tuple[list[TaskResult], ExecutionStats]:
        """Apply function to each item.

        Args:
            func: Function to apply to each item.
            items: Items to process.
            ids: Task ids for progress and logging (default ``item_000000``...).
            continue_on_error: Continue after errors.

        Returns:
            Tuple of (results in input order, stats).
        """
        if not items:
            return [], ExecutionStats(0, 0, 0, 0.0, 0.0, 0.0)
        if ids is None:
            ids = [f"item_{i:06d}" for i in range(len(items))]

        logger.info(
            f"Processing {len(items)} items with {self.n_workers} workers "
            f"(backend={self.backend.value})"
        )
        start_time = time.time()

        tasks = list(zip(ids, items))
        if self.backend == ExecutorBackend.SERIAL:
            results = self._execute_serial(func, tasks, continue_on_error)
        else:
            results = self._execute_threaded(func, tasks, continue_on_error)
        results.sort(key=lambda r: r.index)

        total_duration = time.time() - start_time
        successful = sum(1 for r in results if r.success)
        durations = [r.duration_seconds for r in results]
        stats = ExecutionStats(
            total_tasks=len(results),
            successful=successful,
            failed=len(results) - successful,
            total_duration=total_duration,
            mean_task_duration=sum(durations) / len(durations) if durations else 0,
            max_task_duration=max(durations) if durations else 0,
        )

        logger.info(f"Completed: {successful}/{len(items)} items, duration={total_duration:.1f}s")
        return results, stats

    @staticmethod
    def _timed(func: Callable, index: int, task_id: str, item: Any) -> TaskResult:
        start_time = time.time()
        try:
            result = func(item)
        except Exception as e:
            return TaskResult(
                task_id=task_id,
                index=index,
                success=False,
                error=str(e),
                duration_seconds=time.time() - start_time,
            )
        return TaskResult(
            task_id=task_id,
            index=index,
            success=True,
            result=result,
            duration_seconds=time.time() - start_time,
        )

    def _execute_serial(
        self,
        func: Callable,
        tasks: list[tuple[str, Any]],
        continue_on_error: bool,
    ) -> list[TaskResult]:
        """Serial execution with progress tracking."""
        results = []
        total = len(tasks)
        for i, (task_id, item) in enumerate(tasks):
            task_result = self._timed(func, i, task_id, item)
            results.append(task_result)
            if self.progress_callback:
                self.progress_callback(i + 1, total, task_id)
            if not task_result.success:
                logger.error(f"Task {task_id} failed: {task_result.error}")
                if not continue_on_error:
                    raise RuntimeError(task_result.error)
        return results

    def _execute_threaded(
        self,
        func: Callable,
        tasks: list[tuple[str, Any]],
        continue_on_error: bool,
    ) -> list[TaskResult]:
        """Threaded execution."""
        results = []
        total = len(tasks)
        completed = 0
        results_lock = threading.Lock()

        with ThreadPoolExecutor(max_workers=self.n_workers) as executor:
            futures: dict[Future, str] = {}
            for i, (task_id, item) in enumerate(tasks):
                futures[executor.submit(self._timed, func, i, task_id, item)] = task_id

            for future in as_completed(futures):
                completed += 1
                task_result = future.result()
                with results_lock:
                    results.append(task_result)

                if self.progress_callback:
                    self.progress_callback(completed, total, task_result.task_id)

                if not task_result.success:
                    logger.error(f"Task {task_result.task_id} failed: {task_result.error}")
                    if not continue_on_error:
                        executor.shutdown(wait=False, cancel_futures=True)
                        raise RuntimeError(task_result.error)

        return results


# =============================================================================
# Transcript batches
# =============================================================================


@attrs.define(slots=True, frozen=True)
class TranscriptJob:
    """One transcript with the hits of its gene."""

    transcript: ReferenceTranscript
    hits: tuple[Hit, ...]


class TranscriptBatchRunner:
    """Predicts many transcripts with one scheduler per worker thread.

    Args:
        context: Shared read-only run context.
        n_workers: Worker threads (defaults to ``runtime.threads``).
        progress_callback: Called with (completed, total, transcript_id).
    """

    def __init__(
        self,
        context: ProjectionContext,
        n_workers: int | None = None,
        progress_callback: Callable[[int, int, str], None] | None = None,
    ) -> None:
        self.context = context
        self.n_workers = n_workers if n_workers is not None else context.config.runtime.threads
        self.progress_callback = progress_callback
        self._local = threading.local()
        self._schedulers: list[TranscriptScheduler] = []
        self._lock = threading.Lock()

    def _scheduler(self) -> TranscriptScheduler:
        scheduler = getattr(self._local, "scheduler", None)
        if scheduler is None:
            scheduler = TranscriptScheduler(self.context)
            self._local.scheduler = scheduler
            with self._lock:
                self._schedulers.append(scheduler)
        return scheduler

    def _run_one(self, job: TranscriptJob) -> TranscriptOutcome:
        return self._scheduler().run(job.transcript, job.hits)

    def run(self, jobs: Sequence[TranscriptJob]) -> tuple[list[TranscriptOutcome], ExecutionStats]:
        """Predict every job.

        Without a progress callback, progress is logged every
        ``PROGRESS_INTERVAL`` transcripts.

        Returns:
            Outcomes in input order and execution statistics.
        """
        callback = self.progress_callback
        if callback is None:
            progress = ProgressLogger(logger, total=len(jobs), interval=PROGRESS_INTERVAL, description="Transcripts")

            def callback(completed: int, total: int, transcript_id: str) -> None:
                progress.update()

        executor = ParallelExecutor(
            n_workers=self.n_workers,
            backend=ExecutorBackend.THREADS,
            progress_callback=callback,
        )
        try:
            results, stats = executor.map_items(
                self._run_one,
                jobs,
                ids=[job.transcript.transcript_id for job in jobs],
            )
        finally:
            for scheduler in self._schedulers:
                scheduler.close()
            self._schedulers.clear()
            self._local = threading.local()

        outcomes = []
        for job, result in zip(jobs, results):
            if result.success:
                outcomes.append(result.result)
            else:
                outcomes.append(
                    TranscriptOutcome(
                        job.transcript.transcript_id,
                        SchedulerState.FAILED,
                        error=result.error,
                        duration_seconds=result.duration_seconds,
                    )
                )
        return outcomes, stats


def create_progress_bar() -> Progress:
    """Create rich progress bar for parallel execution.

    Returns:
        Rich Progress object.
    """
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeRemainingColumn(),
    )
