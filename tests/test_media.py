"""Tests for media normalization (ffmpeg/ffprobe subprocess calls patched)."""

from __future__ import annotations

import json
import subprocess
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest

from lecturechat.errors import UnsupportedMediaError
from lecturechat.ingestion.media import MediaNormalizer

PROBE_VIDEO = {
    "format": {"duration": "125.5", "bit_rate": "128000", "size": "2048"},
    "streams": [
        {"codec_type": "video", "codec_name": "h264"},
        {"codec_type": "audio", "codec_name": "aac", "channels": 2, "sample_rate": "44100"},
    ],
}
PROBE_AUDIO = {
    "format": {"duration": "60.0", "bit_rate": "64000"},
    "streams": [{"codec_type": "audio", "codec_name": "mp3", "channels": 1, "sample_rate": "16000"}],
}
PROBE_SILENT = {"format": {"duration": "10.0"}, "streams": [{"codec_type": "video", "codec_name": "h264"}]}


def _fake_run(probe: dict[str, Any], write_output: bytes | None = b"RIFF....WAVE"):
    """Stand-in for subprocess.run: answers ffprobe with *probe*, fakes ffmpeg output."""

    def run(cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
        if cmd[0] == "ffprobe":
            return subprocess.CompletedProcess(cmd, 0, stdout=json.dumps(probe), stderr="")
        if write_output is not None:
            Path(cmd[-1]).write_bytes(write_output)
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    return run


@pytest.fixture
def media_file(tmp_path: Path) -> Path:
    path = tmp_path / "lecture.mp4"
    path.write_bytes(b"\x00" * 64)
    return path


class TestProbe:
    def test_video_file(self, media_file: Path, tmp_path: Path) -> None:
        with patch("lecturechat.ingestion.media.subprocess.run", side_effect=_fake_run(PROBE_VIDEO)):
            info = MediaNormalizer(tmp_path / "temp").probe(media_file)
        assert info.duration == 125.5
        assert info.channels == 2
        assert info.codec == "aac"
        assert info.sample_rate == 44100
        assert info.has_video

    def test_no_audio_stream(self, media_file: Path, tmp_path: Path) -> None:
        with patch("lecturechat.ingestion.media.subprocess.run", side_effect=_fake_run(PROBE_SILENT)):
            with pytest.raises(UnsupportedMediaError):
                MediaNormalizer(tmp_path / "temp").probe(media_file)

    def test_undecodable_file(self, media_file: Path, tmp_path: Path) -> None:
        error = subprocess.CalledProcessError(1, ["ffprobe"])
        with patch("lecturechat.ingestion.media.subprocess.run", side_effect=error):
            with pytest.raises(UnsupportedMediaError):
                MediaNormalizer(tmp_path / "temp").probe(media_file)

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            MediaNormalizer(tmp_path / "temp").probe(tmp_path / "nope.mp4")

    def test_has_video_stream(self, media_file: Path, tmp_path: Path) -> None:
        normalizer = MediaNormalizer(tmp_path / "temp")
        with patch("lecturechat.ingestion.media.subprocess.run", side_effect=_fake_run(PROBE_AUDIO)):
            assert normalizer.has_video_stream(media_file) is False
        with patch("lecturechat.ingestion.media.subprocess.run", side_effect=_fake_run(PROBE_VIDEO)):
            assert normalizer.has_video_stream(media_file) is True


class TestNormalize:
    def test_writes_mono_16k_wav(self, media_file: Path, tmp_path: Path) -> None:
        with patch(
            "lecturechat.ingestion.media.subprocess.run", side_effect=_fake_run(PROBE_VIDEO)
        ) as run:
            out = MediaNormalizer(tmp_path / "temp").normalize(media_file, "rec1")

        assert out == tmp_path / "temp" / "rec1_audio.wav"
        assert out.exists()
        ffmpeg_cmd = run.call_args_list[-1].args[0]
        assert ffmpeg_cmd[0] == "ffmpeg"
        assert ffmpeg_cmd[ffmpeg_cmd.index("-ac") + 1] == "1"
        assert ffmpeg_cmd[ffmpeg_cmd.index("-ar") + 1] == "16000"
        assert ffmpeg_cmd[ffmpeg_cmd.index("-acodec") + 1] == "pcm_s16le"
        assert "-vn" in ffmpeg_cmd
        assert media_file.read_bytes() == b"\x00" * 64

    def test_empty_output_raises(self, media_file: Path, tmp_path: Path) -> None:
        with patch(
            "lecturechat.ingestion.media.subprocess.run", side_effect=_fake_run(PROBE_AUDIO, b"")
        ):
            with pytest.raises(OSError):
                MediaNormalizer(tmp_path / "temp").normalize(media_file, "rec1")
        assert not (tmp_path / "temp" / "rec1_audio.wav").exists()

    def test_missing_output_raises(self, media_file: Path, tmp_path: Path) -> None:
        with patch(
            "lecturechat.ingestion.media.subprocess.run", side_effect=_fake_run(PROBE_AUDIO, None)
        ):
            with pytest.raises(OSError):
                MediaNormalizer(tmp_path / "temp").normalize(media_file, "rec1")

    def test_ffmpeg_failure_is_unsupported_media(self, media_file: Path, tmp_path: Path) -> None:
        def run(cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
            if cmd[0] == "ffprobe":
                return subprocess.CompletedProcess(cmd, 0, stdout=json.dumps(PROBE_AUDIO), stderr="")
            return subprocess.CompletedProcess(cmd, 1, stdout="", stderr="Invalid data found")

        with patch("lecturechat.ingestion.media.subprocess.run", side_effect=run):
            with pytest.raises(UnsupportedMediaError):
                MediaNormalizer(tmp_path / "temp").normalize(media_file, "rec1")


class TestCleanup:
    def test_cleanup_recording_files(self, tmp_path: Path) -> None:
        temp = tmp_path / "temp"
        temp.mkdir()
        (temp / "rec1_audio.wav").write_bytes(b"x")
        (temp / "rec2_audio.wav").write_bytes(b"x")

        removed = MediaNormalizer(temp).cleanup_recording_files("rec1")

        assert removed == 1
        assert not (temp / "rec1_audio.wav").exists()
        assert (temp / "rec2_audio.wav").exists()

    def test_cleanup_missing_is_noop(self, tmp_path: Path) -> None:
        MediaNormalizer(tmp_path).cleanup(tmp_path / "gone.wav")
        MediaNormalizer(tmp_path).cleanup(None)
