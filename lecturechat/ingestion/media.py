"""Media normalization: extract a 16 kHz mono PCM track with ffmpeg/ffprobe."""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
import uuid
from pathlib import Path
from typing import Any

from lecturechat.errors import UnsupportedMediaError
from lecturechat.ingestion.models import MediaInfo

logger = logging.getLogger(__name__)


class FFmpegError(Exception):
    """Raised when an ffmpeg command fails."""

    def __init__(self, cmd: list[str], returncode: int, stderr: str):
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"ffmpeg failed (rc={returncode}): {stderr[:500]}")


def run_ffmpeg(args: list[str], *, check: bool = True) -> subprocess.CompletedProcess[str]:
    """Run an ffmpeg command with standard options."""
    cmd = ["ffmpeg", "-y", "-hide_banner", "-loglevel", "error"] + args
    logger.debug("ffmpeg command: %s", " ".join(cmd))
    result = subprocess.run(cmd, capture_output=True, text=True)
    if check and result.returncode != 0:
        raise FFmpegError(cmd, result.returncode, result.stderr)
    return result


def _ffprobe(path: Path) -> dict[str, Any]:
    """Return ffprobe's JSON description of *path* (format + streams)."""
    if not path.exists():
        raise FileNotFoundError(f"Input file not found: {path}")
    try:
        result = subprocess.run(
            [
                "ffprobe",
                "-v", "quiet",
                "-print_format", "json",
                "-show_format",
                "-show_streams",
                str(path),
            ],
            capture_output=True,
            text=True,
            check=True,
        )
    except subprocess.CalledProcessError as exc:
        raise UnsupportedMediaError(f"Cannot decode media file: {path.name}") from exc
    return json.loads(result.stdout or "{}")


def _streams(data: dict[str, Any], codec_type: str) -> list[dict[str, Any]]:
    return [s for s in data.get("streams", []) if s.get("codec_type") == codec_type]


def _as_int(value: object) -> int:
    try:
        return int(float(str(value)))
    except (TypeError, ValueError):
        return 0


class MediaNormalizer:
    """Converts arbitrary audio/video input into transcription-ready audio.

    Output is single-channel ``pcm_s16le`` WAV at ``sample_rate`` Hz written to
    ``temp_dir``. The input file is never modified.
    """

    def __init__(self, temp_dir: Path | str = "temp", sample_rate: int = 16000, channels: int = 1):
        self.temp_dir = Path(temp_dir)
        self.sample_rate = sample_rate
        self.channels = channels

    def probe(self, path: Path | str) -> MediaInfo:
        """Probe a media file and describe its audio stream.

        Raises:
            FileNotFoundError: If *path* does not exist.
            UnsupportedMediaError: If ffprobe cannot read it or no audio stream exists.
        """
        path = Path(path)
        data = _ffprobe(path)

        audio_streams = _streams(data, "audio")
        if not audio_streams:
            raise UnsupportedMediaError(f"No audio stream found in: {path.name}")
        audio = audio_streams[0]
        fmt = data.get("format", {})

        return MediaInfo(
            path=str(path),
            duration=float(fmt.get("duration") or audio.get("duration") or 0),
            channels=_as_int(audio.get("channels")),
            bitrate=_as_int(fmt.get("bit_rate") or audio.get("bit_rate")),
            codec=audio.get("codec_name") or "unknown",
            sample_rate=_as_int(audio.get("sample_rate")),
            size=_as_int(fmt.get("size")),
            has_video=bool(_streams(data, "video")),
        )

    def has_video_stream(self, path: Path | str) -> bool:
        """Return True if the file contains at least one video stream."""
        return bool(_streams(_ffprobe(Path(path)), "video"))

    def normalize(self, input_path: Path | str, recording_id: str | None = None) -> Path:
        """Extract (video) or convert (audio) into a mono 16 kHz WAV file.

        Args:
            input_path: Uploaded media file.
            recording_id: Used to name the temp file so it can be cleaned up later.

        Returns:
            Path of the newly written temp audio file.

        Raises:
            FileNotFoundError: Input missing.
            UnsupportedMediaError: No decodable audio stream.
            OSError: ffmpeg produced no output or an empty file.
        """
        input_path = Path(input_path)
        info = self.probe(input_path)
        kind = "video" if info.has_video else "audio"
        logger.info(
            "Normalizing %s file %s (%.1fs, %s, %d ch)",
            kind, input_path.name, info.duration, info.codec, info.channels,
        )

        self.temp_dir.mkdir(parents=True, exist_ok=True)
        prefix = recording_id or uuid.uuid4().hex
        output_path = self.temp_dir / f"{prefix}_audio.wav"

        try:
            run_ffmpeg([
                "-i", str(input_path),
                "-vn",
                "-acodec", "pcm_s16le",
                "-ac", str(self.channels),
                "-ar", str(self.sample_rate),
                "-f", "wav",
                str(output_path),
            ])
        except FFmpegError as exc:
            self.cleanup(output_path)
            raise UnsupportedMediaError(f"Audio extraction failed: {exc.stderr[:200]}") from exc

        if not output_path.exists():
            raise OSError("Audio extraction failed - output file not created")
        size = output_path.stat().st_size
        if size == 0:
            self.cleanup(output_path)
            raise OSError("Audio extraction produced empty file")

        logger.info("Audio written to %s (%.2f MB)", output_path, size / 1024 / 1024)
        return output_path

    def cleanup(self, path: Path | str | None) -> None:
        """Remove a temp file if it exists."""
        if path is None:
            return
        path = Path(path)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Could not remove temp file %s: %s", path, exc)

    def cleanup_recording_files(self, recording_id: str) -> int:
        """Remove every temp file belonging to *recording_id*; return how many."""
        if not self.temp_dir.exists():
            return 0
        removed = 0
        for path in self.temp_dir.glob(f"{recording_id}*"):
            self.cleanup(path)
            removed += 1
        return removed

    @staticmethod
    def ffmpeg_available() -> bool:
        return shutil.which("ffmpeg") is not None and shutil.which("ffprobe") is not None
