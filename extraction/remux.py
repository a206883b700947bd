"""Download a chosen video/audio pair and remux it into one MP4 with ffmpeg."""

import asyncio
import functools
import logging
import threading
import urllib.request
from pathlib import Path

from django.conf import settings

from .disk_storage import remove_quietly, unique_temp_path
from .exceptions import DownloadFailed, RemuxFailed

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


def remux_args(video_path: Path, audio_path: Path, out_path: Path) -> list[str]:
    # Copy video as-is, transcode audio to AAC for container compatibility.
    return [
        settings.FFMPEG_BIN,
        "-y",
        "-i",
        str(video_path),
        "-i",
        str(audio_path),
        "-map",
        "0:v:0",
        "-map",
        "1:a:0",
        "-c:v",
        "copy",
        "-c:a",
        "aac",
        "-b:a",
        "160k",
        "-movflags",
        "+faststart",
        str(out_path),
    ]


def _fetch_to_file(url: str, dst: Path, cancelled: threading.Event | None = None) -> int:
    cap = settings.MAX_DOWNLOAD_BYTES
    req = urllib.request.Request(
        url,
        headers={
            "User-Agent": settings.DOWNLOAD_USER_AGENT,
            "Range": "bytes=0-",
            "Accept": "*/*",
        },
    )
    size = 0
    with urllib.request.urlopen(req, timeout=settings.DOWNLOAD_TIMEOUT_SECONDS) as resp:
        status = getattr(resp, "status", 200)
        if status not in (200, 206):
            raise DownloadFailed(f"Unexpected HTTP status {status}")

        cl = resp.headers.get("Content-Length")
        if cl and cl.isdigit() and int(cl) > cap:
            raise DownloadFailed("Stream too large")

        with open(dst, "wb") as out:
            while True:
                if cancelled is not None and cancelled.is_set():
                    raise DownloadFailed("Download cancelled")
                chunk = resp.read(CHUNK_SIZE)
                if not chunk:
                    break
                size += len(chunk)
                if size > cap:
                    raise DownloadFailed("Stream too large")
                out.write(chunk)

    if size == 0:
        raise DownloadFailed("Stream was empty")
    return size


def _discard_partial(dst: Path, worker: asyncio.Future) -> None:
    if not worker.cancelled():
        worker.exception()  # retrieved so it is not reported as unhandled
    remove_quietly(dst)


async def download_file(url: str, dst: Path) -> int:
    """Fetch url into dst in a worker thread. Partial files are removed on failure.

    On cancellation the thread is told to stop at the next chunk, and dst is
    removed again once the thread has exited.
    """
    cancelled = threading.Event()
    worker = asyncio.ensure_future(asyncio.to_thread(_fetch_to_file, url, dst, cancelled))
    try:
        size = await asyncio.shield(worker)
    except DownloadFailed:
        remove_quietly(dst)
        raise
    except Exception as e:
        remove_quietly(dst)
        raise DownloadFailed(f"Failed to download stream: {e}") from e
    except BaseException:
        cancelled.set()
        worker.add_done_callback(functools.partial(_discard_partial, dst))
        remove_quietly(dst)
        raise
    logger.info("downloaded %d bytes to %s", size, dst.name)
    return size


async def _terminate(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    try:
        process.kill()
    except ProcessLookupError:
        return
    await process.wait()


async def run_ffmpeg(cmd: list[str], timeout_seconds: float) -> tuple[int, str]:
    """Run ffmpeg, returning (returncode, stderr tail)."""
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise RemuxFailed(f"ffmpeg not found (FFMPEG_BIN={cmd[0]})") from e

    try:
        _stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout_seconds)
    except asyncio.TimeoutError as e:
        await _terminate(process)
        raise RemuxFailed(f"ffmpeg timed out after {timeout_seconds:.0f}s") from e
    except asyncio.CancelledError:
        await _terminate(process)
        raise

    return process.returncode, (stderr or b"").decode("utf-8", errors="ignore")[-2000:]


async def remux(video_path: Path, audio_path: Path, out_path: Path) -> Path:
    rc, err = await run_ffmpeg(remux_args(video_path, audio_path, out_path), settings.REMUX_TIMEOUT_SECONDS)
    if rc != 0:
        raise RemuxFailed(f"ffmpeg_failed rc={rc}: {err.strip()[-300:]}")
    if not out_path.exists() or out_path.stat().st_size == 0:
        raise RemuxFailed("ffmpeg produced no output")
    return out_path


async def merge_streams(video_url: str, audio_url: str) -> Path:
    """Download both streams and remux them. Returns the merged file path.

    The two downloaded inputs are deleted on every exit path; a partial output
    is deleted when remuxing fails. Raises DownloadFailed or RemuxFailed.
    """
    v = unique_temp_path("v")
    a = unique_temp_path("a", ".m4a")
    o = unique_temp_path("merged")
    try:
        await download_file(video_url, v)
        await download_file(audio_url, a)
        try:
            await remux(v, a, o)
        except BaseException:
            remove_quietly(o)
            raise
    finally:
        remove_quietly(v, a)

    logger.info("merged streams into %s", o.name)
    return o
