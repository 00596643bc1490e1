"""Audio metadata probing.

Builds an AudioReference for a file on disk. WAV headers are read
directly; other containers are probed with ffprobe.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import subprocess
import wave
from dataclasses import replace

from vox_engine.models import AudioReference
from vox_engine.utils.errors import AudioProbeError

logger = logging.getLogger(__name__)

FFPROBE_TIMEOUT_SECONDS = 10


def _read_wav(path: str) -> AudioReference:
    with wave.open(path, "rb") as wf:
        frames = wf.getnframes()
        rate = wf.getframerate()
        return AudioReference(
            path=path,
            duration_seconds=frames / rate if rate else 0.0,
            sample_rate=rate,
            channels=wf.getnchannels(),
            codec="wav",
            size_bytes=os.path.getsize(path),
        )


def _run_ffprobe(path: str) -> dict:
    ffprobe_path = shutil.which("ffprobe")
    if ffprobe_path is None:
        raise AudioProbeError("ffprobe binary not found on PATH", path=path)

    cmd = [
        ffprobe_path,
        "-v", "error",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        "-select_streams", "a:0",
        path,
    ]

    try:
        completed = subprocess.run(
            cmd,
            check=True,
            capture_output=True,
            text=True,
            timeout=FFPROBE_TIMEOUT_SECONDS,
        )
    except subprocess.CalledProcessError as exc:
        stderr = exc.stderr.strip() if exc.stderr else "unknown error"
        raise AudioProbeError(
            f"Audio file is corrupt or unreadable (ffprobe): {stderr}", path=path
        ) from exc
    except subprocess.TimeoutExpired as exc:
        raise AudioProbeError(
            f"ffprobe timed out after {FFPROBE_TIMEOUT_SECONDS}s", path=path
        ) from exc

    try:
        return json.loads(completed.stdout)
    except json.JSONDecodeError as exc:
        raise AudioProbeError(f"ffprobe returned invalid JSON: {exc}", path=path) from exc


def probe_audio(path: str, temporary: bool = False) -> AudioReference:
    """Read duration and format metadata for an audio file.

    Args:
        path: Path to the audio file.
        temporary: Mark the file as a scratch copy owned by the run.

    Returns:
        AudioReference describing the file.

    Raises:
        AudioProbeError: If the file is missing or cannot be probed.
    """
    if not os.path.exists(path):
        raise AudioProbeError(f"Audio file does not exist: {path}", path=path)

    if path.lower().endswith(".wav"):
        try:
            reference = _read_wav(path)
        except (wave.Error, EOFError) as exc:
            raise AudioProbeError(f"Invalid WAV header: {exc}", path=path) from exc
    else:
        info = _run_ffprobe(path)
        streams = info.get("streams") or []
        if not streams:
            raise AudioProbeError("No audio stream found", path=path)
        stream = streams[0]
        fmt = info.get("format", {})
        reference = AudioReference(
            path=path,
            duration_seconds=float(stream.get("duration") or fmt.get("duration") or 0.0),
            sample_rate=int(stream.get("sample_rate") or 0),
            channels=int(stream.get("channels") or 0),
            codec=stream.get("codec_name", "unknown"),
            size_bytes=os.path.getsize(path),
        )

    logger.debug(
        "Probed %s: %.1fs, %d Hz, %d channel(s)",
        path,
        reference.duration_seconds,
        reference.sample_rate,
        reference.channels,
    )
    if temporary:
        return replace(reference, temporary_path=path)
    return reference
