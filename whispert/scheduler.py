"""Drives segment transcription through a bounded pool of worker threads."""

import contextlib
import logging
import queue
import tempfile
import threading
from typing import Dict, Iterable, Optional

from tqdm import tqdm

from .assembler import TranscriptAssembler
from .exceptions import CancelledError, SegmentationError, ServiceError
from .models import Segment, SegmentResult, Transcript
from .segmenter import MediaSegmenter
from .transcriber import Transcriber

logger = logging.getLogger(__name__)

_STOP = object() # Queue sentinel telling a worker to exit


class SegmentScheduler:
    """
    Transcribes segments concurrently with retries and optional fail-fast.

    A fixed number of worker threads pull segments from a shared bounded
    queue. Results are handed to a TranscriptAssembler as they complete.
    """

    def __init__(
        self,
        transcriber: Transcriber,
        segmenter: Optional[MediaSegmenter] = None,
        max_concurrency: int = 3,
        max_attempts: int = 3,
        backoff_base: float = 1.0,
        backoff_max: float = 30.0,
        fail_fast: bool = False,
        work_dir: Optional[str] = None,
        show_progress: bool = True,
    ):
        """
        Initializes the SegmentScheduler.

        Args:
            transcriber: Client used for every transcription call.
            segmenter: Extracts segment audio before upload. Segments that
                       already carry a payload need no segmenter.
            max_concurrency: Number of worker threads.
            max_attempts: Calls allowed per segment, including the first.
            backoff_base: Delay before the first retry, doubled on each further retry.
            backoff_max: Upper bound for a single retry delay.
            fail_fast: Cancel all remaining work after the first terminal failure.
            work_dir: Directory for extracted segment files.
            show_progress: Display a tqdm progress bar on stderr.
        """
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be at least 1, got {max_concurrency}")
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        self.transcriber = transcriber
        self.segmenter = segmenter
        self.max_concurrency = max_concurrency
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.fail_fast = fail_fast
        self.work_dir = work_dir
        self.show_progress = show_progress
        self._cancel = threading.Event()
        self._error_lock = threading.Lock()
        self._unexpected_error: Optional[BaseException] = None

    def cancel(self) -> None:
        """Stops issuing new transcription calls. In-flight calls finish or time out."""
        if not self._cancel.is_set():
            logger.warning("Cancellation requested; no further segments will be dispatched.")
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def _backoff_delay(self, attempt: int, error: Exception) -> float:
        delay = min(self.backoff_max, self.backoff_base * (2 ** (attempt - 1)))
        if isinstance(error, ServiceError) and error.retry_after:
            delay = max(delay, min(error.retry_after, self.backoff_max))
        return delay

    def _transcribe_with_retry(self, segment: Segment) -> Optional[SegmentResult]:
        """Returns the terminal result, or None if cancelled before one was reached."""
        result = None
        for attempt in range(1, self.max_attempts + 1):
            if self._cancel.is_set():
                return None
            result = self.transcriber.transcribe_segment(segment)
            result.attempts = attempt
            if result.succeeded or not result.retryable or attempt == self.max_attempts:
                break
            delay = self._backoff_delay(attempt, result.error)
            logger.info(
                f"Segment {segment.index}: {result.error_kind} on attempt {attempt}/{self.max_attempts}, "
                f"retrying in {delay:.1f}s"
            )
            # Waiting on the event lets cancellation interrupt the backoff.
            if self._cancel.wait(delay):
                return None
        return result

    def _process(self, segment: Segment) -> Optional[SegmentResult]:
        if self._cancel.is_set():
            return None
        if self.segmenter is None or segment.path is not None or segment.payload is not None:
            context = contextlib.nullcontext(segment)
        else:
            context = self.segmenter.extracted(segment, self.work_dir or tempfile.gettempdir())
        try:
            with context as ready:
                return self._transcribe_with_retry(ready)
        except SegmentationError as e:
            logger.error(f"Segment {segment.index} could not be extracted: {e}")
            return SegmentResult.failure(segment.index, e)

    def _worker(self, work: queue.Queue, assembler: TranscriptAssembler, progress: tqdm,
                progress_lock: threading.Lock) -> None:
        while True:
            segment = work.get()
            try:
                if segment is _STOP:
                    return
                if self._cancel.is_set():
                    continue # Drain without dispatching
                try:
                    result = self._process(segment)
                    if result is not None:
                        assembler.add(result)
                except Exception as e:
                    with self._error_lock:
                        if self._unexpected_error is None:
                            self._unexpected_error = e
                    logger.critical(f"Unexpected error while processing segment {segment.index}: {e}", exc_info=True)
                    self.cancel()
                    continue
                if result is None:
                    continue
                with progress_lock:
                    progress.update(1)
                if result.succeeded:
                    logger.debug(f"Segment {result.index} transcribed after {result.attempts} attempt(s)")
                else:
                    logger.error(
                        f"Segment {result.index} failed terminally after {result.attempts} attempt(s): "
                        f"{result.error_kind}: {result.error}"
                    )
                    if self.fail_fast:
                        logger.error("Fail-fast enabled; cancelling remaining segments.")
                        self.cancel()
            finally:
                work.task_done()

    def run(self, segments: Iterable[Segment], assembler: TranscriptAssembler) -> Transcript:
        """
        Transcribes every segment and returns the assembled transcript.

        Args:
            segments: Segment sequence in index order (consumed lazily).
            assembler: Receives each terminal result; must expect every segment.

        Raises:
            CancelledError: If fail-fast triggered or cancel() was called.
            KeyboardInterrupt: Re-raised after cancelling, even if it arrives while
                               waiting for the workers.
        """
        self._cancel.clear()
        self._unexpected_error = None
        work: queue.Queue = queue.Queue(maxsize=self.max_concurrency * 2)
        progress_lock = threading.Lock()
        progress = tqdm(total=assembler.expected_count, unit="segment", desc="Transcribing",
                        disable=not self.show_progress, leave=False)

        workers = [
            threading.Thread(
                target=self._worker,
                args=(work, assembler, progress, progress_lock),
                name=f"segment-worker-{i}",
                daemon=True,
            )
            for i in range(self.max_concurrency)
        ]
        for worker in workers:
            worker.start()
        logger.info(
            f"Dispatching {assembler.expected_count} segment(s) to {self.max_concurrency} worker(s) "
            f"(max attempts {self.max_attempts}, fail-fast {self.fail_fast})"
        )

        try:
            for segment in segments:
                if self._cancel.is_set():
                    break
                self._put(work, segment)
        except BaseException:
            self.cancel()
            raise
        finally:
            try:
                for _ in workers:
                    work.put(_STOP)
                for worker in workers:
                    worker.join()
            except BaseException:
                # Interrupted while waiting for the workers; stop them from starting new calls.
                self.cancel()
                raise
            finally:
                progress.close()

        if self._unexpected_error is not None:
            raise self._unexpected_error
        if self._cancel.is_set():
            completed: Dict[int, SegmentResult] = assembler.results
            failed = sorted(i for i, r in completed.items() if not r.succeeded)
            raise CancelledError(
                f"Transcription cancelled after {len(completed)}/{assembler.expected_count} segment(s); "
                f"failed segments: {failed}",
                results=completed,
            )
        return assembler.build()

    def _put(self, work: queue.Queue, segment: Segment) -> None:
        # Poll so a cancelled run never blocks on a full queue.
        while not self._cancel.is_set():
            try:
                work.put(segment, timeout=0.1)
                return
            except queue.Full:
                continue
