"""Batch orchestration of the redaction pipeline.

Items run on a bounded thread pool and are reported as they finish, in
whatever order that happens. A failure is recorded against its own item and
never stops the others. Every submitted item ends with exactly one outcome:
a result, a stage failure, or a ``Cancelled`` failure when :meth:`cancel`
was called before the item started.

Example::

    runner = BatchRunner(RedactionPipeline(DetrDetector()))
    for outcome in runner.iter_outcomes([("a.jpg", data_a), ("b.jpg", data_b)]):
        print(outcome.source_name, "ok" if outcome.ok else outcome.failure.kind)
    archive = download_all(runner.results)
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor, as_completed
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from .errors import ConfigurationError
from .pipeline import RedactionPipeline
from .redaction_types import (
    BatchOutcome,
    ItemFailure,
    ItemOutcome,
    ProcessedResult,
    Stage,
)

logger = logging.getLogger(__name__)

CANCELLED_KIND = "Cancelled"

BatchInput = Tuple[str, bytes]
OutcomeCallback = Callable[[ItemOutcome], None]


def _cancelled_outcome(index: int, name: str) -> ItemOutcome:
    return ItemOutcome(
        index=index,
        source_name=name,
        failure=ItemFailure(
            source_name=name,
            stage=Stage.QUEUED,
            kind=CANCELLED_KIND,
            message="Batch was cancelled before this item started",
        ),
    )


class BatchRunner:
    """Run a :class:`RedactionPipeline` over many ``(name, bytes)`` inputs.

    Args:
        pipeline: Pipeline shared by all workers.
        max_workers: Thread pool size. Default: ``pipeline.settings.max_workers``.

    Successful results accumulate across runs in :attr:`results` until
    :meth:`clear` is called.
    """

    def __init__(
        self, pipeline: RedactionPipeline, *, max_workers: Optional[int] = None
    ) -> None:
        self.pipeline = pipeline
        self.max_workers = (
            max_workers if max_workers is not None else pipeline.settings.max_workers
        )
        if self.max_workers < 1:
            raise ConfigurationError(f"max_workers must be >= 1, got {self.max_workers}")
        self._cancel_event = threading.Event()
        self._lock = threading.Lock()
        self._results: List[ProcessedResult] = []
        self._pending: List[Future] = []

    @property
    def results(self) -> List[ProcessedResult]:
        """Snapshot of successful results collected so far."""
        with self._lock:
            return list(self._results)

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def clear(self) -> None:
        with self._lock:
            self._results.clear()

    def cancel(self) -> None:
        """Stop items that have not started; running items finish normally."""
        self._cancel_event.set()
        with self._lock:
            pending = list(self._pending)
        for future in pending:
            future.cancel()
        logger.info("Batch cancellation requested")

    def _run_item(self, index: int, name: str, data: bytes) -> ItemOutcome:
        if self._cancel_event.is_set():
            return _cancelled_outcome(index, name)
        outcome = self.pipeline.process_one(data, name)
        if isinstance(outcome, ProcessedResult):
            return ItemOutcome(index=index, source_name=name, result=outcome)
        return ItemOutcome(index=index, source_name=name, failure=outcome)

    def _collect(self, future: Future, index: int, name: str) -> ItemOutcome:
        try:
            return future.result()
        except CancelledError:
            return _cancelled_outcome(index, name)
        except Exception as exc:
            logger.exception("Unexpected error while processing %s", name)
            return ItemOutcome(
                index=index,
                source_name=name,
                failure=ItemFailure(
                    source_name=name,
                    stage=Stage.DONE,
                    kind=type(exc).__name__,
                    message=str(exc),
                ),
            )

    def iter_outcomes(self, inputs: Iterable[BatchInput]) -> Iterator[ItemOutcome]:
        """Yield one :class:`ItemOutcome` per input as each item completes."""
        items = list(inputs)
        self._cancel_event.clear()
        if not items:
            return

        logger.info(
            "Processing %d image(s) with %d worker(s)", len(items), self.max_workers
        )
        with ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="redact"
        ) as executor:
            futures: Dict[Future, Tuple[int, str]] = {
                executor.submit(self._run_item, idx, name, data): (idx, name)
                for idx, (name, data) in enumerate(items)
            }
            with self._lock:
                self._pending = list(futures)
            try:
                for future in as_completed(futures):
                    idx, name = futures[future]
                    outcome = self._collect(future, idx, name)
                    if outcome.result is not None:
                        with self._lock:
                            self._results.append(outcome.result)
                    yield outcome
            finally:
                with self._lock:
                    self._pending = []
                for future in futures:
                    future.cancel()

    def run(
        self,
        inputs: Iterable[BatchInput],
        on_outcome: Optional[OutcomeCallback] = None,
    ) -> BatchOutcome:
        """Process every input and return the combined outcome."""
        batch = BatchOutcome()
        for outcome in self.iter_outcomes(inputs):
            batch.add(outcome)
            if on_outcome is not None:
                on_outcome(outcome)
        logger.info(
            "Batch finished: %d succeeded, %d failed", batch.succeeded, batch.failed
        )
        return batch


def process_batch(
    files: Iterable[BatchInput],
    pipeline: RedactionPipeline,
    *,
    max_workers: Optional[int] = None,
    on_outcome: Optional[OutcomeCallback] = None,
) -> BatchOutcome:
    """Run ``pipeline`` over ``files`` (``(name, bytes)`` pairs)."""
    runner = BatchRunner(pipeline, max_workers=max_workers)
    return runner.run(files, on_outcome=on_outcome)
