"""Splits source media into bounded, optionally overlapping segments using ffmpeg."""

import contextlib
import math
import os
import logging
from typing import Iterator, List, Optional, Tuple

import ffmpeg

from .exceptions import SegmentationError, UnreadableMediaError
from .models import MediaFile, Segment
from .utils import detect_media_type, ensure_dir_exists, format_timestamp

logger = logging.getLogger(__name__)

# Boundaries are rounded to the millisecond so float drift never yields an extra sliver segment.
_PRECISION = 3
MIN_UPLOAD_SECONDS = 0.1 # Shorter uploads are typically rejected by the service


class MediaSegmenter:
    """Probes media files and cuts them into transcribable segments."""

    def __init__(
        self,
        segment_duration: float = 60.0,
        overlap_duration: float = 1.0,
        ffmpeg_path: Optional[str] = None,
        ffprobe_path: Optional[str] = None,
        sample_rate: int = 16000,
        channels: int = 1,
    ):
        """
        Initializes the MediaSegmenter.

        Args:
            segment_duration: Target length of each segment in seconds.
            overlap_duration: Seconds shared by consecutive segments, used for stitching.
            ffmpeg_path: Optional path to the ffmpeg executable.
                         If None, assumes ffmpeg is in the system PATH.
            ffprobe_path: Optional path to the ffprobe executable.
            sample_rate: Sample rate of extracted segment audio.
            channels: Channel count of extracted segment audio.

        Raises:
            ValueError: If the durations are not positive or overlap >= segment duration.
        """
        if segment_duration <= 0:
            raise ValueError(f"segment_duration must be positive, got {segment_duration}")
        if overlap_duration < 0 or overlap_duration >= segment_duration:
            raise ValueError(
                f"overlap_duration must be in [0, {segment_duration}), got {overlap_duration}"
            )
        self.segment_duration = float(segment_duration)
        self.overlap_duration = float(overlap_duration)
        self.ffmpeg_cmd = ffmpeg_path or 'ffmpeg'
        self.ffprobe_cmd = ffprobe_path or 'ffprobe'
        self.sample_rate = sample_rate
        self.channels = channels
        logger.debug(f"Using ffmpeg command: {self.ffmpeg_cmd}, ffprobe command: {self.ffprobe_cmd}")

    @property
    def stride(self) -> float:
        return self.segment_duration - self.overlap_duration

    def open(self, media_path: str) -> MediaFile:
        """
        Probes a media file and returns its metadata.

        Raises:
            UnreadableMediaError: If the file is missing, cannot be probed,
                                  has no audio stream or has no duration.
        """
        logger.info(f"Probing media file: {media_path}")
        if not os.path.isfile(media_path):
            raise UnreadableMediaError(f"Failed to open audio file: {media_path} does not exist or is not a file")

        try:
            probe = ffmpeg.probe(media_path, cmd=self.ffprobe_cmd)
        except ffmpeg.Error as e:
            stderr_output = e.stderr.decode('utf-8', errors='replace') if e.stderr else "No stderr output"
            logger.error(f"ffprobe failed for {media_path}: {stderr_output}")
            raise UnreadableMediaError(f"Could not read media file {media_path}: {stderr_output.strip()}") from e
        except OSError as e:
            logger.error(f"Could not run {self.ffprobe_cmd}: {e}")
            raise UnreadableMediaError(f"Could not run {self.ffprobe_cmd} on {media_path}: {e}") from e

        streams = probe.get('streams', [])
        audio_streams = [s for s in streams if s.get('codec_type') == 'audio']
        if not audio_streams:
            raise UnreadableMediaError(f"No audio stream found in {media_path}")

        fmt = probe.get('format', {})
        duration = _as_float(fmt.get('duration'))
        if duration is None:
            # Some containers only report duration per stream
            stream_durations = [_as_float(s.get('duration')) for s in streams]
            stream_durations = [d for d in stream_durations if d is not None]
            duration = max(stream_durations) if stream_durations else None
        if not duration or duration <= 0:
            raise UnreadableMediaError(f"Media file {media_path} has zero or unknown duration")

        media = MediaFile(
            path=media_path,
            duration=duration,
            format_name=fmt.get('format_name'),
            audio_codec=audio_streams[0].get('codec_name'),
            content_type=detect_media_type(media_path),
            size_bytes=os.path.getsize(media_path),
        )
        logger.info(
            f"Media {os.path.basename(media_path)}: duration {format_timestamp(duration)}, "
            f"format {media.format_name}, audio codec {media.audio_codec}, type {media.content_type}"
        )
        return media

    def plan(self, duration: float) -> List[Tuple[float, float]]:
        """
        Computes (start, end) offsets covering [0, duration].

        Segment i starts at i * (L - O) and ends at min(start + L, duration),
        giving ceil(duration / (L - O)) segments.
        """
        if duration <= 0:
            raise ValueError(f"duration must be positive, got {duration}")
        stride = self.stride
        count = max(1, math.ceil(round(duration / stride, 9)))
        boundaries = []
        for i in range(count):
            start = round(i * stride, _PRECISION)
            # Each end is the next start plus the overlap, so zero overlap leaves neither gap nor overlap.
            next_start = round((i + 1) * stride, _PRECISION)
            end = min(round(next_start + self.overlap_duration, _PRECISION), duration)
            boundaries.append((start, end))
        # The last segment always closes exactly at the media end.
        last_start, _ = boundaries[-1]
        boundaries[-1] = (last_start, duration)
        return boundaries

    def segment_count(self, media: MediaFile) -> int:
        return len(self.plan(media.duration))

    def iter_segments(self, media: MediaFile) -> Iterator[Segment]:
        """
        Lazily yields segment descriptors in index order.

        Each call starts a fresh iteration. Segments covering the whole file
        point at the source itself; all others must be extracted before use.
        """
        boundaries = self.plan(media.duration)
        if len(boundaries) == 1:
            yield Segment(
                index=0,
                start=0.0,
                end=media.duration,
                source_path=media.path,
                path=media.path,
                filename=os.path.basename(media.path),
                content_type=media.content_type,
            )
            return

        base_name = os.path.splitext(os.path.basename(media.path))[0]
        for index, (start, end) in enumerate(boundaries):
            yield Segment(
                index=index,
                start=start,
                end=end,
                source_path=media.path,
                filename=f"{base_name}_segment_{index:03d}.wav",
                content_type="audio/wav",
            )

    def extract(self, segment: Segment, output_dir: str) -> Segment:
        """
        Writes the segment's audio to a 16 kHz mono WAV file in output_dir.

        Segments that already have a payload (such as a pass-through of the
        whole source) are returned unchanged.

        Returns:
            The same Segment with its path set.

        Raises:
            SegmentationError: If ffmpeg fails for this segment.
        """
        if segment.path is not None or segment.payload is not None:
            return segment

        try:
            ensure_dir_exists(output_dir)
        except Exception as e:
            raise SegmentationError(f"Cannot prepare segment directory {output_dir}: {e}", index=segment.index) from e

        output_path = os.path.join(output_dir, segment.filename or f"segment_{segment.index:03d}.wav")
        logger.debug(
            f"Extracting segment {segment.index} "
            f"[{format_timestamp(segment.start)} - {format_timestamp(segment.end)}] to {output_path}"
        )
        try:
            (
                ffmpeg
                .input(segment.source_path, ss=segment.start, t=segment.duration)
                .output(output_path, acodec='pcm_s16le', ar=self.sample_rate, ac=self.channels)
                .overwrite_output()
                .run(cmd=self.ffmpeg_cmd, capture_stdout=True, capture_stderr=True)
            )
        except ffmpeg.Error as e:
            stderr_output = e.stderr.decode('utf-8', errors='replace') if e.stderr else "No stderr output"
            logger.error(f"ffmpeg failed extracting segment {segment.index} of {segment.source_path}: {stderr_output}")
            self._remove(output_path)
            raise SegmentationError(
                f"ffmpeg failed for segment {segment.index}: {stderr_output.strip()}", index=segment.index
            ) from e
        except OSError as e:
            self._remove(output_path)
            raise SegmentationError(f"Could not run {self.ffmpeg_cmd} for segment {segment.index}: {e}",
                                    index=segment.index) from e

        segment.path = output_path
        return segment

    @contextlib.contextmanager
    def extracted(self, segment: Segment, output_dir: str) -> Iterator[Segment]:
        """Extracts a segment for the duration of the block, then deletes the temporary file."""
        created = segment.path is None and segment.payload is None
        segment = self.extract(segment, output_dir)
        try:
            yield segment
        finally:
            if created:
                self._remove(segment.path)
                segment.path = None

    @staticmethod
    def _remove(path: Optional[str]) -> None:
        if path and os.path.exists(path):
            try:
                os.remove(path)
            except OSError:
                logger.warning(f"Could not clean up segment file: {path}")


def _as_float(value) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
