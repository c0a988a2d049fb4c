import math
import os
from unittest.mock import MagicMock, patch

import ffmpeg
import pytest

from whispert.exceptions import SegmentationError, UnreadableMediaError
from whispert.models import MediaFile, Segment
from whispert.segmenter import MediaSegmenter


@pytest.mark.parametrize(
    "duration, length, overlap",
    [
        (150.0, 60.0, 0.0),
        (150.0, 60.0, 2.0),
        (120.0, 60.0, 0.0),
        (3600.5, 60.0, 1.0),
        (59.0, 60.0, 2.0),
        (7.25, 2.0, 0.5),
        (20.0, 0.3337, 0.0),
        (10.0, 0.7777, 0.25),
    ],
)
def test_plan_covers_duration_contiguously(duration, length, overlap):
    segmenter = MediaSegmenter(segment_duration=length, overlap_duration=overlap)

    plan = segmenter.plan(duration)

    assert len(plan) == math.ceil(duration / (length - overlap))
    assert plan[0][0] == 0.0
    assert plan[-1][1] == duration
    for (start, end), (next_start, _) in zip(plan, plan[1:]):
        assert end >= next_start
        assert end - next_start <= overlap + 1e-9
    for start, end in plan:
        assert 0 <= start < end <= duration
        # Millisecond rounding of the start may stretch a segment by at most 1 ms.
        assert end - start <= length + 0.001 + 1e-9


def test_plan_single_segment_when_media_is_short():
    segmenter = MediaSegmenter(segment_duration=60.0, overlap_duration=0.0)

    assert segmenter.plan(42.0) == [(0.0, 42.0)]


@pytest.mark.parametrize("length, overlap", [(0, 0), (-5, 0), (10, 10), (10, 12), (10, -1)])
def test_invalid_durations_rejected(length, overlap):
    with pytest.raises(ValueError):
        MediaSegmenter(segment_duration=length, overlap_duration=overlap)


def test_open_reads_probe_metadata(tmp_path, probe_result):
    media_path = tmp_path / "talk.mp4"
    media_path.write_bytes(b"\x00" * 32)
    segmenter = MediaSegmenter()

    with patch("whispert.segmenter.ffmpeg.probe", return_value=probe_result("150.0")) as mock_probe:
        media = segmenter.open(str(media_path))

    mock_probe.assert_called_once_with(str(media_path), cmd="ffprobe")
    assert media.duration == pytest.approx(150.0)
    assert media.audio_codec == "aac"
    assert media.content_type == "video/mp4"
    assert media.size_bytes == 32


def test_open_falls_back_to_stream_duration(tmp_path, probe_result):
    media_path = tmp_path / "talk.mp3"
    media_path.write_bytes(b"\x00")
    probe = probe_result("12.5")
    del probe["format"]["duration"]

    with patch("whispert.segmenter.ffmpeg.probe", return_value=probe):
        media = MediaSegmenter().open(str(media_path))

    assert media.duration == pytest.approx(12.5)
    assert media.content_type == "audio/mpeg"


def test_open_missing_file(tmp_path):
    with pytest.raises(UnreadableMediaError):
        MediaSegmenter().open(str(tmp_path / "missing.mp4"))


def test_open_zero_duration(tmp_path, probe_result):
    media_path = tmp_path / "empty.wav"
    media_path.write_bytes(b"")

    with patch("whispert.segmenter.ffmpeg.probe", return_value=probe_result("0.0")):
        with pytest.raises(UnreadableMediaError):
            MediaSegmenter().open(str(media_path))


def test_open_without_audio_stream(tmp_path, probe_result):
    media_path = tmp_path / "silent.mp4"
    media_path.write_bytes(b"\x00")

    with patch("whispert.segmenter.ffmpeg.probe", return_value=probe_result(with_audio=False)):
        with pytest.raises(UnreadableMediaError):
            MediaSegmenter().open(str(media_path))


def test_open_probe_failure(tmp_path):
    media_path = tmp_path / "garbage.mp4"
    media_path.write_bytes(b"not media")
    error = ffmpeg.Error("ffprobe", b"", b"Invalid data found when processing input")

    with patch("whispert.segmenter.ffmpeg.probe", side_effect=error):
        with pytest.raises(UnreadableMediaError, match="Invalid data"):
            MediaSegmenter().open(str(media_path))


def test_iter_segments_passes_short_media_through():
    media = MediaFile(path="/media/clip.m4a", duration=30.0, content_type="audio/mp4")

    segments = list(MediaSegmenter(segment_duration=60.0).iter_segments(media))

    assert len(segments) == 1
    assert segments[0].path == "/media/clip.m4a"
    assert segments[0].filename == "clip.m4a"
    assert segments[0].content_type == "audio/mp4"


def test_iter_segments_is_lazy_and_restartable():
    media = MediaFile(path="/media/lecture.mp4", duration=150.0)
    segmenter = MediaSegmenter(segment_duration=60.0, overlap_duration=0.0)

    first = [(s.index, s.start, s.end) for s in segmenter.iter_segments(media)]
    second = [(s.index, s.start, s.end) for s in segmenter.iter_segments(media)]

    assert first == second == [(0, 0.0, 60.0), (1, 60.0, 120.0), (2, 120.0, 150.0)]
    assert all(s.path is None for s in segmenter.iter_segments(media))
    assert [s.filename for s in segmenter.iter_segments(media)][0] == "lecture_segment_000.wav"


def _chain():
    chain = MagicMock()
    chain.output.return_value = chain
    chain.overwrite_output.return_value = chain
    return chain


def test_extract_runs_ffmpeg_with_seek(tmp_path):
    segment = Segment(index=1, start=59.0, end=119.0, source_path="in.mp4", filename="in_segment_001.wav")
    chain = _chain()

    with patch("whispert.segmenter.ffmpeg.input", return_value=chain) as mock_input:
        extracted = MediaSegmenter(sample_rate=16000, channels=1).extract(segment, str(tmp_path))

    mock_input.assert_called_once_with("in.mp4", ss=59.0, t=60.0)
    output_args = chain.output.call_args
    assert output_args.args[0] == os.path.join(str(tmp_path), "in_segment_001.wav")
    assert output_args.kwargs == {"acodec": "pcm_s16le", "ar": 16000, "ac": 1}
    chain.run.assert_called_once()
    assert extracted.path == os.path.join(str(tmp_path), "in_segment_001.wav")


def test_extract_failure_raises_segmentation_error(tmp_path):
    segment = Segment(index=4, start=0.0, end=10.0, source_path="in.mp4", filename="x.wav")
    chain = _chain()
    chain.run.side_effect = ffmpeg.Error("ffmpeg", b"", b"boom")

    with patch("whispert.segmenter.ffmpeg.input", return_value=chain):
        with pytest.raises(SegmentationError) as excinfo:
            MediaSegmenter().extract(segment, str(tmp_path))

    assert excinfo.value.index == 4
    assert not os.path.exists(os.path.join(str(tmp_path), "x.wav"))


def test_extracted_removes_temporary_file(tmp_path):
    segment = Segment(index=0, start=0.0, end=10.0, source_path="in.mp4", filename="seg.wav")
    chain = _chain()
    target = tmp_path / "seg.wav"
    chain.run.side_effect = lambda **kwargs: target.write_bytes(b"RIFF")

    with patch("whispert.segmenter.ffmpeg.input", return_value=chain):
        with MediaSegmenter().extracted(segment, str(tmp_path)) as ready:
            assert ready.read_payload() == b"RIFF"

    assert not target.exists()
    assert segment.path is None


def test_extracted_leaves_pass_through_source_alone(tmp_path):
    source = tmp_path / "short.wav"
    source.write_bytes(b"RIFF")
    segment = Segment(index=0, start=0.0, end=5.0, source_path=str(source), path=str(source))

    with MediaSegmenter().extracted(segment, str(tmp_path)) as ready:
        assert ready.path == str(source)

    assert source.exists()
