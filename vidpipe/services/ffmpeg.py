from __future__ import annotations

import json
import logging
import os
import subprocess
import tempfile
import threading
import time

from .. import config
from ..errors import MediaToolError
from ..models.states import AUDIO_BITRATE, QUALITY_PROFILES, quality_profile

logger = logging.getLogger("vidpipe.ffmpeg")

_ffmpeg_sema = threading.BoundedSemaphore(config.FFMPEG_MAX_CONCURRENCY)
_ffprobe_sema = threading.BoundedSemaphore(config.FFMPEG_MAX_CONCURRENCY * 2)

OUTPUT_TAIL_CHARS = 4000


def _tail(text: str) -> str:
    text = (text or "").strip()
    if len(text) > OUTPUT_TAIL_CHARS:
        return text[-OUTPUT_TAIL_CHARS:]
    return text


def _parse_float(value) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _parse_int(value) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _require_file(path: str) -> None:
    if not path or not os.path.isfile(path):
        raise MediaToolError(f"Input file not found: {path}", reason="not_found")


def _ffprobe_cmd(src_path: str) -> list[str]:
    return [
        config.FFPROBE_BIN,
        "-v",
        "quiet",
        "-print_format",
        "json",
        "-show_format",
        "-show_streams",
        src_path,
    ]


def _ffmpeg_transcode_cmd(*, src_path: str, dst_path: str, profile: dict) -> list[str]:
    return [
        config.FFMPEG_BIN,
        "-hide_banner",
        "-nostdin",
        "-loglevel",
        "error",
        "-i",
        src_path,
        "-vf",
        f"scale={profile['width']}:{profile['height']}",
        "-c:v",
        "libx264",
        "-b:v",
        profile["bitrate"],
        "-c:a",
        "aac",
        "-b:a",
        AUDIO_BITRATE,
        "-movflags",
        "+faststart",
        "-progress",
        "pipe:1",
        "-nostats",
        "-f",
        "mp4",
        "-y",
        dst_path,
    ]


def _ffmpeg_thumbnail_cmd(
    *,
    src_path: str,
    dst_path: str,
    at_seconds: float,
    max_width: int | None = None,
) -> list[str]:
    cmd = [
        config.FFMPEG_BIN,
        "-hide_banner",
        "-nostdin",
        "-loglevel",
        "error",
        "-ss",
        f"{at_seconds:g}",
        "-i",
        src_path,
        "-vframes",
        "1",
    ]
    if max_width and max_width > 0:
        cmd += ["-vf", f"scale='min({int(max_width)},iw)':-2"]
    cmd += ["-q:v", "2", "-c:v", "mjpeg", "-f", "image2", "-y", dst_path]
    return cmd


def _extract_probe_meta(payload: dict) -> dict:
    if not isinstance(payload, dict):
        payload = {}

    streams = payload.get("streams")
    if not isinstance(streams, list):
        streams = []
    fmt = payload.get("format") if isinstance(payload.get("format"), dict) else {}

    video_stream = next(
        (s for s in streams if isinstance(s, dict) and s.get("codec_type") == "video"), None
    )
    if video_stream is None:
        raise MediaToolError("No video stream found", reason="no_video_stream")

    duration = _parse_float(fmt.get("duration"))
    if duration is None or duration < 0:
        duration = 0.0

    width = _parse_int(video_stream.get("width")) or 0
    height = _parse_int(video_stream.get("height")) or 0

    return {
        "duration_seconds": duration,
        "resolution": f"{width}x{height}",
        "codec": video_stream.get("codec_name") or "unknown",
        "format": fmt.get("format_name") or "unknown",
    }


def extract_metadata(path: str) -> dict:
    """
    Probe a local media file and return
    ``{duration_seconds, resolution, codec, format}``.
    """
    _require_file(path)

    cmd = _ffprobe_cmd(path)
    try:
        with _ffprobe_sema:
            result = subprocess.run(
                cmd,
                check=False,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=config.FFPROBE_TIMEOUT_SECONDS,
            )
    except subprocess.TimeoutExpired as exc:
        raise MediaToolError("ffprobe timed out", reason="timeout") from exc
    except FileNotFoundError as exc:
        raise MediaToolError(f"{config.FFPROBE_BIN} is not installed", reason="tool_failed") from exc

    stdout = result.stdout.decode(errors="replace")
    stderr = result.stderr.decode(errors="replace")
    if result.returncode != 0:
        raise MediaToolError(
            "ffprobe failed", reason="tool_failed", output=_tail(stderr or stdout)
        )

    try:
        payload = json.loads(stdout) if stdout.strip() else {}
    except json.JSONDecodeError as exc:
        raise MediaToolError(
            "ffprobe returned invalid JSON", reason="bad_output", output=_tail(stdout)
        ) from exc
    return _extract_probe_meta(payload)


def _parse_progress_seconds(key: str, value: str) -> float | None:
    # ffmpeg reports out_time_ms in microseconds as well.
    if key in {"out_time_us", "out_time_ms"}:
        micros = _parse_int(value)
        if micros is None or micros < 0:
            return None
        return micros / 1_000_000
    if key == "out_time":
        parts = value.strip().split(":")
        if len(parts) != 3:
            return None
        hours = _parse_float(parts[0])
        minutes = _parse_float(parts[1])
        seconds = _parse_float(parts[2])
        if hours is None or minutes is None or seconds is None:
            return None
        return hours * 3600 + minutes * 60 + seconds
    return None


def _progress_percent(seconds: float, duration: float | None) -> int | None:
    if not duration or duration <= 0:
        return None
    return max(0, min(100, int(seconds * 100 / duration)))


def _run_with_progress(
    cmd: list[str],
    *,
    duration: float | None,
    on_progress,
    timeout: float,
) -> tuple[int, str, bool]:
    timed_out = threading.Event()
    last_reported = -1

    def report(percent: int) -> None:
        nonlocal last_reported
        if on_progress is None or percent <= last_reported:
            return
        last_reported = percent
        try:
            on_progress(percent)
        except Exception as exc:
            logger.warning("Progress callback failed: %s", exc)

    with tempfile.TemporaryFile() as stderr_file:
        proc = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=stderr_file,
        )

        def kill() -> None:
            timed_out.set()
            proc.kill()

        timer = threading.Timer(timeout, kill)
        timer.daemon = True
        timer.start()
        try:
            for raw in proc.stdout:
                line = raw.decode(errors="replace").strip()
                if "=" not in line:
                    continue
                key, value = line.split("=", 1)
                if key == "progress" and value == "end":
                    report(100)
                    continue
                seconds = _parse_progress_seconds(key, value)
                if seconds is None:
                    continue
                percent = _progress_percent(seconds, duration)
                if percent is not None:
                    report(min(percent, 99))
            returncode = proc.wait()
        finally:
            timer.cancel()
            if proc.poll() is None:
                proc.kill()
                proc.wait()
            proc.stdout.close()

        stderr_file.seek(0)
        stderr = stderr_file.read().decode(errors="replace")
    return returncode, stderr, timed_out.is_set()


def _remove_quietly(path: str) -> None:
    try:
        os.remove(path)
    except OSError:
        pass


def transcode_video(
    input_path: str,
    output_path: str,
    quality: str,
    on_progress=None,
    duration: float | None = None,
) -> str:
    """
    Encode ``input_path`` to the named quality profile at ``output_path``.

    ``on_progress`` receives integer percentages, each larger than the last,
    parsed from ffmpeg's machine-readable progress stream. The output is
    written to a temporary file and renamed into place on success.
    """
    profile = quality_profile(quality)
    if profile is None:
        raise MediaToolError(
            f"Unknown quality {quality!r}; expected one of {sorted(QUALITY_PROFILES)}",
            reason="invalid_quality",
        )
    _require_file(input_path)

    os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
    tmp_path = output_path + ".tmp"
    _remove_quietly(tmp_path)

    cmd = _ffmpeg_transcode_cmd(src_path=input_path, dst_path=tmp_path, profile=profile)
    start_time = time.perf_counter()
    try:
        with _ffmpeg_sema:
            returncode, stderr, timed_out = _run_with_progress(
                cmd,
                duration=duration,
                on_progress=on_progress,
                timeout=config.TRANSCODE_TIMEOUT_SECONDS,
            )
    except FileNotFoundError as exc:
        raise MediaToolError(f"{config.FFMPEG_BIN} is not installed", reason="tool_failed") from exc

    if timed_out:
        _remove_quietly(tmp_path)
        raise MediaToolError(
            f"ffmpeg timed out transcoding {quality}", reason="timeout", output=_tail(stderr)
        )
    if returncode != 0:
        _remove_quietly(tmp_path)
        logger.error("ffmpeg %s transcode failed for %s: %s", quality, input_path, _tail(stderr))
        raise MediaToolError(
            f"ffmpeg failed transcoding {quality}", reason="tool_failed", output=_tail(stderr)
        )

    os.replace(tmp_path, output_path)
    logger.info(
        "Transcoded %s to %s in %.1fs", input_path, quality, time.perf_counter() - start_time
    )
    return output_path


def generate_thumbnail(input_path: str, output_path: str, at_seconds: float) -> str:
    _require_file(input_path)

    os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
    tmp_path = output_path + ".tmp"
    _remove_quietly(tmp_path)

    cmd = _ffmpeg_thumbnail_cmd(
        src_path=input_path,
        dst_path=tmp_path,
        at_seconds=at_seconds,
        max_width=config.THUMB_MAX_WIDTH,
    )
    try:
        with _ffmpeg_sema:
            result = subprocess.run(
                cmd,
                check=False,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=config.THUMB_TIMEOUT_SECONDS,
            )
    except subprocess.TimeoutExpired as exc:
        _remove_quietly(tmp_path)
        raise MediaToolError("ffmpeg timed out capturing thumbnail", reason="timeout") from exc
    except FileNotFoundError as exc:
        raise MediaToolError(f"{config.FFMPEG_BIN} is not installed", reason="tool_failed") from exc

    if result.returncode != 0 or not os.path.isfile(tmp_path):
        _remove_quietly(tmp_path)
        raise MediaToolError(
            "ffmpeg failed capturing thumbnail",
            reason="tool_failed",
            output=_tail(result.stderr.decode(errors="replace")),
        )

    os.replace(tmp_path, output_path)
    return output_path
