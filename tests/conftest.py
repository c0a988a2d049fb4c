"""Shared pytest fixtures and configuration."""

import logging
import threading
from typing import Dict, List, Optional

import pytest

from whispert.models import Segment
from whispert.transcriber import Transcriber


class FakeTranscriber(Transcriber):
    """
    Scripted transcriber for tests.

    `texts` maps segment filename to the recognized text. `errors` maps a
    filename to a list of exceptions raised on consecutive calls before
    the text is returned.
    """

    def __init__(self, texts: Optional[Dict[str, str]] = None, errors: Optional[Dict[str, List[Exception]]] = None,
                 default_text: str = "hello world"):
        self.texts = dict(texts or {})
        self.errors = {name: list(errs) for name, errs in (errors or {}).items()}
        self.default_text = default_text
        self.calls: List[str] = []
        self._lock = threading.Lock()

    @property
    def call_count(self) -> int:
        with self._lock:
            return len(self.calls)

    def transcribe_bytes(self, data: bytes, filename: str, content_type: str) -> str:
        with self._lock:
            self.calls.append(filename)
            pending = self.errors.get(filename)
            error = pending.pop(0) if pending else None
        if error is not None:
            raise error
        return self.texts.get(filename, self.default_text)


def make_segments(count: int, length: float = 10.0, overlap: float = 0.0) -> List[Segment]:
    stride = length - overlap
    return [
        Segment(
            index=i,
            start=i * stride,
            end=i * stride + length,
            source_path="source.mp4",
            payload=f"audio-{i}".encode(),
            filename=f"seg{i}.wav",
            content_type="audio/wav",
        )
        for i in range(count)
    ]


@pytest.fixture
def fake_transcriber():
    """Provide a fake transcriber returning 'hello world' for every segment."""
    return FakeTranscriber()


@pytest.fixture
def probe_result():
    """A minimal ffprobe document for a 150 second mp4 with one audio stream."""
    def make(duration: Optional[str] = "150.0", with_audio: bool = True):
        streams = [{"codec_type": "video", "codec_name": "h264"}]
        if with_audio:
            streams.append({"codec_type": "audio", "codec_name": "aac", "duration": duration})
        fmt = {"format_name": "mov,mp4,m4a,3gp,3g2,mj2"}
        if duration is not None:
            fmt["duration"] = duration
        return {"streams": streams, "format": fmt}
    return make


@pytest.fixture
def segments_factory():
    """Provide make_segments for building in-memory segments."""
    return make_segments


@pytest.fixture(autouse=True)
def restore_root_logger():
    """setup_logging replaces root handlers; put the originals back after each test."""
    root = logging.getLogger()
    original_level = root.level
    original_handlers = list(root.handlers)
    yield
    root.handlers[:] = original_handlers
    root.setLevel(original_level)
