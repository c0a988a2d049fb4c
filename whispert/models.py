"""Data models for whisper-t."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


@dataclass(frozen=True)
class MediaFile:
    """A probed source media file."""
    path: str
    duration: float
    format_name: Optional[str] = None
    audio_codec: Optional[str] = None
    content_type: str = "application/octet-stream"
    size_bytes: int = 0


@dataclass
class Segment:
    """A contiguous time-slice of the source media, processed independently."""
    index: int
    start: float
    end: float
    source_path: str
    path: Optional[str] = None # Extracted (or passed-through) audio file
    payload: Optional[bytes] = None # In-memory audio, used instead of path when set
    filename: Optional[str] = None
    content_type: str = "application/octet-stream"

    @property
    def duration(self) -> float:
        return self.end - self.start

    def read_payload(self) -> bytes:
        """Returns the segment's audio bytes, reading them from disk if needed."""
        if self.payload is not None:
            return self.payload
        if self.path is None:
            raise ValueError(f"Segment {self.index} has no payload; extract it first.")
        with open(self.path, 'rb') as f:
            return f.read()


class SegmentStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class SegmentResult:
    """Outcome of transcribing one segment."""
    index: int
    status: SegmentStatus
    text: str = ""
    error: Optional[Exception] = None
    attempts: int = 1

    @property
    def succeeded(self) -> bool:
        return self.status is SegmentStatus.SUCCESS

    @property
    def error_kind(self) -> Optional[str]:
        return type(self.error).__name__ if self.error is not None else None

    @property
    def retryable(self) -> bool:
        return self.error is not None and bool(getattr(self.error, 'retryable', False))

    @classmethod
    def success(cls, index: int, text: str, attempts: int = 1) -> "SegmentResult":
        return cls(index=index, status=SegmentStatus.SUCCESS, text=text, attempts=attempts)

    @classmethod
    def failure(cls, index: int, error: Exception, attempts: int = 1) -> "SegmentResult":
        return cls(index=index, status=SegmentStatus.FAILED, error=error, attempts=attempts)


@dataclass
class Transcript:
    """The assembled transcript of a whole media file."""
    chunks: List[str] = field(default_factory=list)
    failures: Dict[int, str] = field(default_factory=dict) # segment index -> error description
    source_path: Optional[str] = None

    @property
    def text(self) -> str:
        return " ".join(chunk for chunk in self.chunks if chunk)

    @property
    def segment_count(self) -> int:
        return len(self.chunks)

    @property
    def failed_indices(self) -> List[int]:
        return sorted(self.failures)

    @property
    def succeeded_count(self) -> int:
        return self.segment_count - len(self.failures)

    @property
    def is_partial(self) -> bool:
        return bool(self.failures)
