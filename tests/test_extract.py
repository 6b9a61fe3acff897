"""Tests for plainsub.extract.audio module."""

from __future__ import annotations

import io
import shutil
from pathlib import Path
from unittest.mock import patch

import pytest

from plainsub.cancellation import CancellationToken
from plainsub.exceptions import ExtractionError, PipelineCancelled
from plainsub.extract.audio import (
    DURATION_RE,
    ENHANCE_FILTER,
    TIME_RE,
    FfmpegProgress,
    build_ffmpeg_command,
    extract_audio,
    parse_ffmpeg_time,
    temp_audio_path,
)

STDERR = [
    "Input #0, mov,mp4,m4a,3gp,3g2,mj2, from 'talk.mp4':\n",
    "  Duration: 00:00:10.00, start: 0.000000, bitrate: 128 kb/s\n",
    "size=     128kB time=00:00:02.50 bitrate= 419.4kbits/s speed=50x\n",
    "size=     256kB time=00:00:05.00 bitrate= 419.4kbits/s speed=50x\n",
    "size=     512kB time=00:00:10.00 bitrate= 419.4kbits/s speed=50x\n",
]


class FakeProcess:
    def __init__(self, lines: list[str], returncode: int = 0, output: Path | None = None) -> None:
        self.stderr = io.StringIO("".join(lines))
        self.returncode = returncode
        self.output = output
        self.terminated = False
        self.finished = False

    def poll(self):
        return self.returncode if self.finished else None

    def wait(self, timeout=None):
        self.finished = True
        if self.output is not None:
            self.output.write_bytes(b"RIFF")
        return self.returncode

    def terminate(self) -> None:
        self.terminated = True
        self.finished = True

    def kill(self) -> None:
        self.finished = True


@pytest.fixture
def source(tmp_path: Path) -> Path:
    path = tmp_path / "talk.mp4"
    path.write_bytes(b"\x00")
    return path


class TestBuildFfmpegCommand:
    def test_enhanced(self) -> None:
        cmd = build_ffmpeg_command(Path("in.mp4"), Path("out.wav"))
        assert cmd == [
            "ffmpeg", "-hide_banner", "-y", "-i", "in.mp4", "-vn",
            "-af", ENHANCE_FILTER,
            "-ar", "16000", "-ac", "1", "-c:a", "pcm_s16le", "out.wav",
        ]  # fmt: skip

    def test_plain(self) -> None:
        cmd = build_ffmpeg_command(Path("in.mp4"), Path("out.wav"), sample_rate=8000, enhance=False)
        assert "-af" not in cmd
        assert cmd[cmd.index("-ar") + 1] == "8000"


class TestParseFfmpegTime:
    def test_duration(self) -> None:
        assert parse_ffmpeg_time(STDERR[1], DURATION_RE) == 10.0

    def test_time(self) -> None:
        assert parse_ffmpeg_time("time=01:02:03.45", TIME_RE) == pytest.approx(3723.45)

    def test_no_match(self) -> None:
        assert parse_ffmpeg_time("Stream mapping:", TIME_RE) is None


class TestFfmpegProgress:
    def test_fractions(self) -> None:
        seen: list[float] = []
        tracker = FfmpegProgress(seen.append)
        for line in STDERR:
            tracker.feed(line)

        assert tracker.total_seconds == 10.0
        assert seen == [0.25, 0.5, 1.0]

    def test_time_before_duration_ignored(self) -> None:
        tracker = FfmpegProgress()
        assert tracker.feed(STDERR[2]) is None
        assert tracker.fraction == 0.0


class TestTempAudioPath:
    def test_unique(self) -> None:
        first, second = temp_audio_path(), temp_audio_path()
        assert first != second
        assert first.suffix == ".wav"
        assert first.name.startswith("plainsub_")


class TestExtractAudio:
    @pytest.mark.slow
    @pytest.mark.skipif(shutil.which("ffmpeg") is None, reason="FFmpeg not installed")
    def test_extract_real_file(self, tmp_path: Path) -> None:
        pytest.skip("Requires a media file - run manually")

    def test_missing_source_raises(self, tmp_path: Path) -> None:
        with pytest.raises(ExtractionError, match="not found"):
            extract_audio(tmp_path / "missing.mp4", tmp_path / "out.wav")

    def test_success_reports_progress(self, source: Path, tmp_path: Path) -> None:
        output = tmp_path / "out.wav"
        seen: list[float] = []
        proc = FakeProcess(STDERR, output=output)

        with patch("plainsub.extract.audio.subprocess.Popen", return_value=proc) as popen:
            result = extract_audio(source, output, progress=seen.append)

        assert popen.call_args.args[0][0] == "ffmpeg"
        assert seen == [0.25, 0.5, 1.0, 1.0]
        assert result["duration_seconds"] == 10.0
        assert result["sample_rate"] == 16000

    def test_failure_includes_stderr_tail(self, source: Path, tmp_path: Path) -> None:
        output = tmp_path / "out.wav"
        proc = FakeProcess(STDERR[:2] + ["talk.mp4: Invalid data found\n"], returncode=1)

        with patch("plainsub.extract.audio.subprocess.Popen", return_value=proc):
            with pytest.raises(ExtractionError, match="Invalid data found") as excinfo:
                extract_audio(source, output)

        assert "exit 1" in str(excinfo.value)
        assert not output.exists()

    def test_cancel_stops_ffmpeg(self, source: Path, tmp_path: Path) -> None:
        output = tmp_path / "out.wav"
        output.write_bytes(b"partial")
        token = CancellationToken()
        token.cancel()
        proc = FakeProcess(STDERR)

        with patch("plainsub.extract.audio.subprocess.Popen", return_value=proc):
            with pytest.raises(PipelineCancelled):
                extract_audio(source, output, cancel=token)

        assert proc.terminated
        assert not output.exists()

    def test_ffmpeg_not_startable(self, source: Path, tmp_path: Path) -> None:
        with patch(
            "plainsub.extract.audio.subprocess.Popen", side_effect=FileNotFoundError("ffmpeg")
        ):
            with pytest.raises(ExtractionError):
                extract_audio(source, tmp_path / "out.wav")
