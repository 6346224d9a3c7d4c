"""Per-transcript scheduling with a timeout.

Each transcript is predicted in a single-worker thread pool so the
caller can stop waiting after ``timeout`` seconds. On timeout the
transcript's cancellation token is cancelled, which makes the worker
raise ``TranscriptCancelled`` at its next check; the scheduler waits up
to ``cancel_grace`` seconds for that and replaces the worker thread if
it is still busy. A timed-out or failed transcript yields no
predictions and the run continues with the next one.

Example:
    >>> with TranscriptScheduler(context, timeout=60) as scheduler:
    ...     outcome = scheduler.run(transcript, hits)
    >>> outcome.summary()
    '1 predictions'
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from enum import Enum
from typing import Any

import attrs

from projforge.core.cancellation import CancellationToken, TranscriptCancelled
from projforge.core.context import ProjectionContext
from projforge.core.hits import Hit
from projforge.core.predictor import PredictionStats, TranscriptPredictor
from projforge.core.solution import GeneModelPrediction
from projforge.core.transcript import ReferenceTranscript

logger = logging.getLogger(__name__)


# =============================================================================
# Enums
# =============================================================================


class SchedulerState(Enum):
    """Lifecycle of one transcript in the scheduler."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


# =============================================================================
# Data Structures
# =============================================================================


@attrs.define(slots=True)
class TranscriptOutcome:
    """Result of one transcript.

    Attributes:
        transcript_id: Transcript identifier.
        state: COMPLETED, TIMED_OUT or FAILED.
        predictions: Predictions, best first (empty unless COMPLETED).
        error: Failure reason.
        duration_seconds: Wall time.
        stats: Search counters, when the prediction completed.
    """

    transcript_id: str
    state: SchedulerState
    predictions: list[GeneModelPrediction] = attrs.Factory(list)
    error: str | None = None
    duration_seconds: float = 0.0
    stats: PredictionStats | None = None

    def summary(self) -> str:
        """One-line status for the run report."""
        if self.state is SchedulerState.COMPLETED:
            return f"{len(self.predictions)} predictions"
        if self.state is SchedulerState.TIMED_OUT:
            return "no prediction (timeout)"
        return f"no prediction (error: {self.error})"

    def to_dict(self) -> dict[str, Any]:
        return {
            "transcript_id": self.transcript_id,
            "state": self.state.value,
            "predictions": len(self.predictions),
            "error": self.error,
            "duration_seconds": round(self.duration_seconds, 3),
        }


# =============================================================================
# Scheduler
# =============================================================================


class TranscriptScheduler:
    """Runs transcripts one at a time under a timeout.

    Args:
        context: Run context.
        timeout: Seconds allowed per transcript (defaults to the config).
        cancel_grace: Seconds to wait for a cancelled worker (defaults to the config).
    """

    def __init__(
        self,
        context: ProjectionContext,
        timeout: float | None = None,
        cancel_grace: float | None = None,
    ) -> None:
        runtime = context.config.runtime
        self.context = context
        self.timeout = timeout if timeout is not None else runtime.timeout
        self.cancel_grace = cancel_grace if cancel_grace is not None else runtime.cancel_grace
        self.state = SchedulerState.IDLE
        self.replaced_workers = 0
        self._executor = self._new_executor()

    @staticmethod
    def _new_executor() -> ThreadPoolExecutor:
        return ThreadPoolExecutor(max_workers=1, thread_name_prefix="projforge-transcript")

    def __enter__(self) -> TranscriptScheduler:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def run(self, transcript: ReferenceTranscript, hits: Sequence[Hit]) -> TranscriptOutcome:
        """Predict one transcript.

        Args:
            transcript: Reference transcript.
            hits: Hits of the transcript's gene.

        Returns:
            The outcome; never raises for prediction errors.
        """
        token = CancellationToken()
        predictor = TranscriptPredictor(self.context, transcript, token)
        transcript_id = transcript.transcript_id
        start_time = time.perf_counter()

        self.state = SchedulerState.RUNNING
        future = self._executor.submit(predictor.predict, hits)
        try:
            predictions = future.result(timeout=self.timeout)
            outcome = TranscriptOutcome(
                transcript_id,
                SchedulerState.COMPLETED,
                predictions,
                stats=predictor.stats,
            )
        except FutureTimeout:
            token.cancel(f"timeout after {self.timeout:.1f}s")
            logger.warning(
                f"Transcript {transcript_id} did not finish within {self.timeout:.1f}s; skipped"
            )
            self._wait_for_worker(future, transcript_id)
            outcome = TranscriptOutcome(transcript_id, SchedulerState.TIMED_OUT, error="timeout")
        except TranscriptCancelled as e:
            outcome = TranscriptOutcome(transcript_id, SchedulerState.TIMED_OUT, error=str(e))
        except Exception as e:
            logger.error(f"Transcript {transcript_id} failed: {e}")
            logger.debug("Failure details", exc_info=True)
            outcome = TranscriptOutcome(transcript_id, SchedulerState.FAILED, error=str(e))

        outcome.duration_seconds = time.perf_counter() - start_time
        self.state = SchedulerState.IDLE
        return outcome

    def _wait_for_worker(self, future: Any, transcript_id: str) -> None:
        """Give a cancelled worker time to unwind, replacing it if it does not."""
        deadline = time.perf_counter() + self.cancel_grace
        while not future.done() and time.perf_counter() < deadline:
            time.sleep(0.01)
        if future.done():
            return
        logger.warning(
            f"Worker of transcript {transcript_id} did not stop within "
            f"{self.cancel_grace:.1f}s; starting a new worker"
        )
        self._executor.shutdown(wait=False, cancel_futures=True)
        self._executor = self._new_executor()
        self.replaced_workers += 1
