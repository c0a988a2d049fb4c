"""Orchestrates transcription of one media file."""

import logging
import os
import shutil
import tempfile
import time

from .assembler import TranscriptAssembler
from .exceptions import FileSystemError, WhisperTError
from .models import Transcript
from .scheduler import SegmentScheduler
from .segmenter import MIN_UPLOAD_SECONDS, MediaSegmenter
from .transcriber import Transcriber
from .utils import ensure_dir_exists, format_timestamp

logger = logging.getLogger(__name__)


class TranscriptionPipeline:
    """
    Manages the end-to-end process of transcribing a media file.
    """

    def __init__(self, config: dict, segmenter: MediaSegmenter, transcriber: Transcriber):
        """
        Initializes the TranscriptionPipeline.

        Args:
            config: A dictionary containing configuration settings.
            segmenter: An instance of MediaSegmenter.
            transcriber: An instance of Transcriber.
        """
        self.config = config
        self.segmenter = segmenter
        self.transcriber = transcriber
        self.temp_dir = config.get('temp_dir') or tempfile.gettempdir()
        self.scheduler = None # Scheduler of the current or most recent run, for cancel()

    def _make_work_dir(self) -> str:
        try:
            ensure_dir_exists(self.temp_dir)
            return tempfile.mkdtemp(prefix="whisper-t-", dir=self.temp_dir)
        except (FileSystemError, OSError, ValueError) as e:
            raise FileSystemError(f"Temporary directory '{self.temp_dir}' is invalid or not writable: {e}") from e

    def _cleanup_work_dir(self, work_dir: str) -> None:
        try:
            shutil.rmtree(work_dir)
            logger.debug(f"Removed temporary directory: {work_dir}")
        except OSError as e:
            logger.warning(f"Could not remove temporary directory {work_dir}: {e}")

    def cancel(self) -> None:
        """Aborts the run in progress, if any."""
        if self.scheduler is not None:
            self.scheduler.cancel()

    def transcribe(self, media_path: str) -> Transcript:
        """
        Executes the full pipeline for a single media file.

        Args:
            media_path: Path to the input audio or video file.

        Returns:
            The assembled Transcript, possibly partial.

        Raises:
            UnreadableMediaError: If the media cannot be opened.
            CancelledError: If fail-fast triggered or the run was cancelled.
            FileSystemError: If the temporary directory is unusable.
        """
        start_time = time.time()
        logger.info(f"--- Starting transcription of: {media_path} ---")

        media = self.segmenter.open(media_path)
        boundaries = self.segmenter.plan(media.duration)
        logger.info(
            f"Split plan: {len(boundaries)} segment(s) of up to {self.segmenter.segment_duration:g}s "
            f"with {self.segmenter.overlap_duration:g}s overlap"
        )
        last_start, last_end = boundaries[-1]
        if len(boundaries) > 1 and last_end - last_start < MIN_UPLOAD_SECONDS:
            logger.warning(
                f"Last segment {len(boundaries) - 1} is only {last_end - last_start:.3f}s long "
                f"({format_timestamp(last_start)}-{format_timestamp(last_end)}); the service may reject it. "
                f"A slightly different segment duration or overlap avoids this."
            )

        assembler = TranscriptAssembler(
            expected_count=len(boundaries),
            overlap_duration=self.segmenter.overlap_duration,
            stitch_window=self.config.get('stitch_window', 8),
            gap_marker=self.config.get('gap_marker', "[segment {index} failed]"),
            boundaries=boundaries,
            source_path=media.path,
        )

        work_dir = self._make_work_dir()
        self.scheduler = SegmentScheduler(
            transcriber=self.transcriber,
            segmenter=self.segmenter,
            max_concurrency=self.config.get('max_concurrency', 3),
            max_attempts=self.config.get('max_attempts', 3),
            backoff_base=self.config.get('backoff_base', 1.0),
            backoff_max=self.config.get('backoff_max', 30.0),
            fail_fast=self.config.get('fail_fast', False),
            work_dir=work_dir,
            show_progress=self.config.get('show_progress', True),
        )
        try:
            transcript = self.scheduler.run(self.segmenter.iter_segments(media), assembler)
        except WhisperTError as e:
            logger.error(f"Transcription of {os.path.basename(media_path)} failed: {e}")
            raise
        finally:
            self._cleanup_work_dir(work_dir)

        logger.info(
            f"--- Transcription finished in {time.time() - start_time:.2f} seconds: "
            f"{transcript.succeeded_count}/{transcript.segment_count} segment(s) succeeded ---"
        )
        return transcript
