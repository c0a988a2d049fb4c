"""Reassembles per-segment results into one ordered transcript."""

import difflib
import logging
import re
import threading
from typing import Dict, List, Optional, Sequence, Tuple

from .exceptions import AssemblyError
from .models import SegmentResult, Transcript
from .utils import format_timestamp

logger = logging.getLogger(__name__)

DEFAULT_GAP_MARKER = "[segment {index} failed]"

_NON_WORD = re.compile(r"[^\w']+", re.UNICODE)


def _normalize(word: str) -> str:
    return _NON_WORD.sub("", word.lower())


def stitch(previous: str, current: str, window: int = 8) -> str:
    """
    Removes the words at the head of `current` that repeat the tail of `previous`.

    Aligns the last `window` words of `previous` with the first `window`
    words of `current` (ignoring case and punctuation) and trims `current`
    through the aligned block that reaches the end of `previous`. Small
    recognition differences inside the overlap, such as a filler word or a
    word cut at the segment boundary, do not prevent the match. When no
    block reaches the tail of `previous`, `current` is returned unchanged.
    """
    prev_words = previous.split()
    cur_words = current.split()
    if window <= 0 or not prev_words or not cur_words:
        return current

    prev_tail = [_normalize(w) for w in prev_words[-window:]]
    cur_head = [_normalize(w) for w in cur_words[:window]]
    matcher = difflib.SequenceMatcher(None, prev_tail, cur_head, autojunk=False)
    blocks = [b for b in matcher.get_matching_blocks() if b.size and any(prev_tail[b.a:b.a + b.size])]
    if not blocks:
        return current

    last = max(blocks, key=lambda b: b.a + b.size)
    end = last.b + last.size
    trailing = [w for w in prev_tail[last.a + last.size:] if w]
    if trailing:
        # Only a word cut at the boundary may follow the block, as a prefix of the next word.
        if len(trailing) > 1 or end >= len(cur_head) or not cur_head[end].startswith(trailing[0]):
            return current

    matched = sum(b.size for b in blocks if b.b + b.size <= end)
    if end - matched > matched:
        return current
    logger.debug(f"Stitched {end} overlapping word(s): {' '.join(cur_words[:end])!r}")
    return " ".join(cur_words[end:])


class TranscriptAssembler:
    """
    Collects SegmentResults in any order and builds the ordered Transcript.

    add() may be called concurrently from worker threads.
    """

    def __init__(
        self,
        expected_count: int,
        overlap_duration: float = 0.0,
        stitch_window: int = 8,
        gap_marker: str = DEFAULT_GAP_MARKER,
        boundaries: Optional[Sequence[Tuple[float, float]]] = None,
        source_path: Optional[str] = None,
    ):
        if expected_count <= 0:
            raise ValueError(f"expected_count must be positive, got {expected_count}")
        self.expected_count = expected_count
        self.overlap_duration = overlap_duration
        self.stitch_window = stitch_window
        self.gap_marker = gap_marker
        self.boundaries = list(boundaries) if boundaries is not None else None
        self.source_path = source_path
        self._results: Dict[int, SegmentResult] = {}
        self._lock = threading.Lock()

    def add(self, result: SegmentResult) -> None:
        """Records one terminal result. Each index may be added only once."""
        if not 0 <= result.index < self.expected_count:
            raise AssemblyError(f"Segment index {result.index} outside 0..{self.expected_count - 1}")
        with self._lock:
            if result.index in self._results:
                raise AssemblyError(f"Duplicate result for segment {result.index}")
            self._results[result.index] = result

    @property
    def results(self) -> Dict[int, SegmentResult]:
        with self._lock:
            return dict(self._results)

    @property
    def missing_indices(self) -> List[int]:
        with self._lock:
            return [i for i in range(self.expected_count) if i not in self._results]

    @property
    def is_complete(self) -> bool:
        return not self.missing_indices

    def _marker(self, index: int) -> str:
        start, end = ("", "")
        if self.boundaries is not None and index < len(self.boundaries):
            start, end = (format_timestamp(t) for t in self.boundaries[index])
        return self.gap_marker.format(index=index, start=start, end=end)

    def build(self) -> Transcript:
        """
        Produces the Transcript in segment order.

        Raises:
            AssemblyError: If any expected segment has no terminal result yet.
        """
        missing = self.missing_indices
        if missing:
            raise AssemblyError(f"Cannot assemble transcript; no result yet for segments {missing}")

        results = self.results
        chunks: List[str] = []
        failures: Dict[int, str] = {}
        previous: Optional[SegmentResult] = None
        for index in range(self.expected_count):
            result = results[index]
            if result.succeeded:
                text = result.text.strip()
                if self.overlap_duration > 0 and previous is not None and previous.succeeded:
                    text = stitch(previous.text, text, self.stitch_window)
                chunks.append(text)
            else:
                failures[index] = f"{result.error_kind}: {result.error}"
                chunks.append(self._marker(index))
            previous = result

        transcript = Transcript(chunks=chunks, failures=failures, source_path=self.source_path)
        if transcript.is_partial:
            logger.warning(
                f"Transcript is partial: {len(failures)}/{self.expected_count} segment(s) failed "
                f"({', '.join(str(i) for i in transcript.failed_indices)})"
            )
        else:
            logger.info(f"Assembled transcript from {self.expected_count} segment(s)")
        return transcript
