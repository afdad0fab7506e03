"""FFmpeg and ffprobe utilities."""
import asyncio
import json
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from app.config import settings


@dataclass
class VideoInfo:
    """Video metadata container."""
    duration: float
    width: int
    height: int
    fps: float
    video_codec: str
    audio_codec: Optional[str]

    @property
    def has_audio(self) -> bool:
        return self.audio_codec is not None


class FFmpegError(Exception):
    """FFmpeg related error."""
    pass


def check_ffmpeg_available() -> bool:
    """Check if ffmpeg is available."""
    return shutil.which(settings.ffmpeg_path) is not None


def check_ffprobe_available() -> bool:
    """Check if ffprobe is available."""
    return shutil.which(settings.ffprobe_path) is not None


async def _run(cmd: List[str], error_label: str) -> bytes:
    """Run a subprocess and return stdout, raising FFmpegError on failure."""
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE
        )
    except OSError as e:
        raise FFmpegError(f"{error_label}: could not start {cmd[0]}: {e}")

    try:
        stdout, stderr = await proc.communicate()
    except asyncio.CancelledError:
        # Don't leave ffmpeg writing into a work dir that is being removed
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        raise

    if proc.returncode != 0:
        raise FFmpegError(f"{error_label}: {stderr.decode(errors='ignore').strip()[-2000:]}")

    return stdout


def _discard(path: Path):
    """Remove a partially written output file."""
    try:
        path.unlink()
    except FileNotFoundError:
        pass


def _parse_fps(rate: str) -> float:
    if "/" in rate:
        num, den = rate.split("/")
        return float(num) / float(den) if float(den) > 0 else 30.0
    return float(rate)


async def get_video_info(video_path: str | Path) -> VideoInfo:
    """
    Get video metadata using ffprobe.

    Args:
        video_path: Path to video file

    Returns:
        VideoInfo with video metadata

    Raises:
        FFmpegError: If ffprobe fails or the file has no video stream
    """
    video_path = Path(video_path)
    if not video_path.exists():
        raise FFmpegError(f"Video file not found: {video_path}")

    stdout = await _run(
        [
            settings.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            str(video_path)
        ],
        "ffprobe failed"
    )

    try:
        data = json.loads(stdout.decode())
    except json.JSONDecodeError as e:
        raise FFmpegError(f"Failed to parse ffprobe output: {e}")

    video_stream = None
    audio_stream = None
    for stream in data.get("streams", []):
        if stream.get("codec_type") == "video" and video_stream is None:
            video_stream = stream
        elif stream.get("codec_type") == "audio" and audio_stream is None:
            audio_stream = stream

    if not video_stream:
        raise FFmpegError("No video stream found")

    try:
        duration = float(data.get("format", {}).get("duration", 0) or 0)
        if duration == 0:
            duration = float(video_stream.get("duration", 0) or 0)

        return VideoInfo(
            duration=duration,
            width=int(video_stream.get("width", 0)),
            height=int(video_stream.get("height", 0)),
            fps=_parse_fps(video_stream.get("r_frame_rate", "30/1")),
            video_codec=video_stream.get("codec_name", "unknown"),
            audio_codec=audio_stream.get("codec_name") if audio_stream else None,
        )
    except (ValueError, TypeError, ZeroDivisionError) as e:
        raise FFmpegError(f"Unreadable ffprobe metadata for {video_path.name}: {e}")


async def probe_duration(video_path: str | Path) -> Optional[float]:
    """Get a video's duration in seconds, or None if ffprobe cannot read it."""
    try:
        info = await get_video_info(video_path)
    except FFmpegError:
        return None
    return info.duration if info.duration > 0 else None


def build_canvas_filter(width: int, height: int, fps: int) -> str:
    """
    Build a filtergraph that fills a fixed canvas.

    The source is scaled to cover the canvas, center-cropped, and forced to
    a constant frame rate and pixel format so normalized clips can be
    concatenated without re-encoding.
    """
    return (
        f"scale={width}:{height}:force_original_aspect_ratio=increase,"
        f"crop={width}:{height},"
        f"setsar=1,"
        f"fps={fps},"
        f"format=yuv420p"
    )


def build_normalize_command(
    source_path: Path,
    output_path: Path,
    start_sec: float,
    end_sec: float,
    has_audio: bool = True,
) -> List[str]:
    """Build the ffmpeg command that trims and reformats one clip to MPEG-TS."""
    duration = end_sec - start_sec
    cmd = [
        settings.ffmpeg_path,
        "-y",
        "-ss", f"{start_sec:.3f}",
        "-t", f"{duration:.3f}",
        "-i", str(source_path),
    ]
    if not has_audio:
        # Silent track keeps every segment's stream layout identical
        cmd += ["-f", "lavfi", "-i", "anullsrc=channel_layout=stereo:sample_rate=44100"]

    cmd += [
        "-vf", build_canvas_filter(settings.output_width, settings.output_height, settings.output_fps),
        "-map", "0:v:0",
        "-map", "0:a:0" if has_audio else "1:a:0",
        "-c:v", settings.export_video_codec,
        "-preset", settings.export_video_preset,
        "-crf", str(settings.export_video_crf),
        "-c:a", settings.export_audio_codec,
        "-b:a", settings.export_audio_bitrate,
        "-ar", "44100",
        "-ac", "2",
    ]
    if not has_audio:
        cmd += ["-shortest"]

    cmd += ["-f", "mpegts", str(output_path)]
    return cmd


async def normalize_clip(
    source_path: str | Path,
    output_path: str | Path,
    start_sec: float,
    end_sec: float,
) -> Path:
    """
    Trim a clip and reformat it to the montage canvas.

    Args:
        source_path: Path to the original video
        output_path: Path for the MPEG-TS output
        start_sec: Segment start in seconds
        end_sec: Segment end in seconds

    Returns:
        Path to the normalized clip
    """
    source_path = Path(source_path)
    output_path = Path(output_path)

    if end_sec <= start_sec:
        raise FFmpegError(f"Invalid segment {start_sec}-{end_sec} for {source_path.name}")

    output_path.parent.mkdir(parents=True, exist_ok=True)

    info = await get_video_info(source_path)
    cmd = build_normalize_command(source_path, output_path, start_sec, end_sec, info.has_audio)

    try:
        await _run(cmd, f"Normalize failed for {source_path.name}")
    except FFmpegError:
        _discard(output_path)
        raise

    return output_path


def write_concat_list(input_paths: Sequence[Path], list_path: Path) -> Path:
    """Write an ffmpeg concat-demuxer list file."""
    lines = []
    for path in input_paths:
        escaped = str(Path(path).resolve()).replace("'", "'\\''")
        lines.append(f"file '{escaped}'")
    list_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return list_path


async def concatenate_clips(
    input_paths: Sequence[str | Path],
    output_path: str | Path,
) -> Path:
    """
    Concatenate normalized clips into one MP4 without re-encoding.

    Args:
        input_paths: Normalized clips, in playback order
        output_path: Path for the assembled MP4

    Returns:
        Path to the assembled video
    """
    if not input_paths:
        raise FFmpegError("Nothing to concatenate")

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    list_path = write_concat_list(
        [Path(p) for p in input_paths],
        output_path.with_name(output_path.name + ".list.txt"),
    )

    cmd = [
        settings.ffmpeg_path,
        "-y",
        "-f", "concat",
        "-safe", "0",
        "-i", str(list_path),
        "-c", "copy",
        "-bsf:a", "aac_adtstoasc",
        "-movflags", "+faststart",
        str(output_path)
    ]

    try:
        await _run(cmd, "Concatenation failed")
    except FFmpegError:
        _discard(output_path)
        raise
    finally:
        _discard(list_path)

    return output_path


async def generate_thumbnail(
    video_path: str | Path,
    output_path: str | Path,
    timestamp: Optional[float] = None,
    width: int = None,
    height: int = None
) -> Path:
    """
    Generate a thumbnail from a video.

    Args:
        video_path: Path to video file
        output_path: Path to save thumbnail
        timestamp: Time in seconds to capture (clamped to the video length)
        width: Optional thumbnail width
        height: Optional thumbnail height

    Returns:
        Path to generated thumbnail
    """
    video_path = Path(video_path)
    output_path = Path(output_path)

    width = width or settings.thumbnail_width
    height = height or settings.thumbnail_height
    if timestamp is None:
        timestamp = settings.thumbnail_offset_sec

    duration = await probe_duration(video_path)
    if duration is not None and timestamp >= duration:
        timestamp = duration / 2

    output_path.parent.mkdir(parents=True, exist_ok=True)

    cmd = [
        settings.ffmpeg_path,
        "-y",
        "-ss", f"{timestamp:.3f}",
        "-i", str(video_path),
        "-vframes", "1",
        "-vf", f"scale={width}:{height}:force_original_aspect_ratio=decrease,pad={width}:{height}:(ow-iw)/2:(oh-ih)/2",
        "-q:v", "2",
        str(output_path)
    ]

    try:
        await _run(cmd, "Thumbnail generation failed")
    except FFmpegError:
        _discard(output_path)
        raise

    return output_path


async def compress_video(
    source_path: str | Path,
    output_path: str | Path,
    height: int = None,
) -> Path:
    """Re-encode a video at a lower resolution for analysis."""
    source_path = Path(source_path)
    output_path = Path(output_path)
    height = height or settings.compress_height

    output_path.parent.mkdir(parents=True, exist_ok=True)

    cmd = [
        settings.ffmpeg_path,
        "-y",
        "-i", str(source_path),
        "-vf", f"scale=-2:{height}",
        "-c:v", settings.export_video_codec,
        "-preset", settings.export_video_preset,
        "-crf", str(settings.compress_crf),
        "-c:a", settings.export_audio_codec,
        "-b:a", settings.export_audio_bitrate,
        "-movflags", "+faststart",
        str(output_path)
    ]

    try:
        await _run(cmd, "Compression failed")
    except FFmpegError:
        _discard(output_path)
        raise

    return output_path


class FFmpegTranscoder:
    """Transcoder adapter backed by the ffmpeg command line tools."""

    async def normalize(self, source_path: Path, output_path: Path, start_sec: float, end_sec: float) -> Path:
        return await normalize_clip(source_path, output_path, start_sec, end_sec)

    async def concatenate(self, input_paths: Sequence[Path], output_path: Path) -> Path:
        return await concatenate_clips(input_paths, output_path)

    async def thumbnail(self, video_path: Path, output_path: Path) -> Path:
        return await generate_thumbnail(video_path, output_path)

    async def compress(self, source_path: Path, output_path: Path) -> Path:
        return await compress_video(source_path, output_path)

    async def probe_duration(self, video_path: Path) -> Optional[float]:
        return await probe_duration(video_path)
