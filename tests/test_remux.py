import asyncio
import threading
from pathlib import Path

import pytest

from extraction import remux
from extraction.exceptions import DownloadFailed, RemuxFailed


def _temp_files(settings):
    return sorted(p.name for p in Path(settings.TEMP_DIR).iterdir())


def _fake_download(payload=b"data"):
    async def fake(url, dst):
        dst.write_bytes(payload)
        return len(payload)

    return fake


def test_remux_args_copy_video_and_encode_aac(settings):
    settings.FFMPEG_BIN = "ffmpeg"
    args = remux.remux_args(Path("v.mp4"), Path("a.m4a"), Path("out.mp4"))
    assert args[0] == "ffmpeg"
    assert args[args.index("-c:v") + 1] == "copy"
    assert args[args.index("-c:a") + 1] == "aac"
    assert args[-1] == "out.mp4"
    assert args.count("-i") == 2


def test_merge_success_leaves_only_output(monkeypatch, settings):
    monkeypatch.setattr(remux, "download_file", _fake_download())

    async def fake_ffmpeg(cmd, timeout_seconds):
        Path(cmd[-1]).write_bytes(b"merged")
        return 0, ""

    monkeypatch.setattr(remux, "run_ffmpeg", fake_ffmpeg)

    out = asyncio.run(remux.merge_streams("https://cdn.example/v.mp4", "https://cdn.example/a.mp4"))
    assert out.name.startswith("merged_")
    assert out.read_bytes() == b"merged"
    assert _temp_files(settings) == [out.name]


def test_merge_failure_leaves_nothing_behind(monkeypatch, settings):
    monkeypatch.setattr(remux, "download_file", _fake_download())

    async def failing_ffmpeg(cmd, timeout_seconds):
        Path(cmd[-1]).write_bytes(b"half")
        return 1, "Invalid data found when processing input"

    monkeypatch.setattr(remux, "run_ffmpeg", failing_ffmpeg)

    with pytest.raises(RemuxFailed) as exc:
        asyncio.run(remux.merge_streams("https://cdn.example/v.mp4", "https://cdn.example/a.mp4"))
    assert "Invalid data" in exc.value.message
    assert _temp_files(settings) == []


def test_empty_ffmpeg_output_is_a_failure(monkeypatch, settings):
    monkeypatch.setattr(remux, "download_file", _fake_download())

    async def silent_ffmpeg(cmd, timeout_seconds):
        return 0, ""

    monkeypatch.setattr(remux, "run_ffmpeg", silent_ffmpeg)

    with pytest.raises(RemuxFailed):
        asyncio.run(remux.merge_streams("https://cdn.example/v.mp4", "https://cdn.example/a.mp4"))
    assert _temp_files(settings) == []


def test_audio_download_failure_removes_video_file(monkeypatch, settings):
    async def flaky(url, dst):
        if "a.mp4" in url:
            raise DownloadFailed("Unexpected HTTP status 403")
        dst.write_bytes(b"video")
        return 5

    monkeypatch.setattr(remux, "download_file", flaky)

    with pytest.raises(DownloadFailed):
        asyncio.run(remux.merge_streams("https://cdn.example/v.mp4", "https://cdn.example/a.mp4"))
    assert _temp_files(settings) == []


def test_partial_download_is_removed(monkeypatch, tmp_path):
    dst = tmp_path / "v_partial.mp4"

    def broken_fetch(url, path, cancelled=None):
        path.write_bytes(b"partial")
        raise ConnectionResetError("peer went away")

    monkeypatch.setattr(remux, "_fetch_to_file", broken_fetch)

    with pytest.raises(DownloadFailed) as exc:
        asyncio.run(remux.download_file("https://cdn.example/v.mp4", dst))
    assert "peer went away" in exc.value.message
    assert not dst.exists()


def test_missing_ffmpeg_binary_is_a_remux_failure(tmp_path):
    missing = str(tmp_path / "no-such-ffmpeg")
    with pytest.raises(RemuxFailed):
        asyncio.run(remux.run_ffmpeg([missing, "-version"], timeout_seconds=5))


def test_cancelled_download_stops_thread_and_leaves_no_file(monkeypatch, tmp_path):
    dst = tmp_path / "v_cancelled.mp4"
    started = threading.Event()
    finished = threading.Event()
    saw_cancel = []

    def slow_fetch(url, path, cancelled):
        path.write_bytes(b"part")
        started.set()
        saw_cancel.append(cancelled.wait(timeout=5))
        path.write_bytes(b"late chunk")  # lands after the caller already cleaned up
        finished.set()
        raise DownloadFailed("Download cancelled")

    monkeypatch.setattr(remux, "_fetch_to_file", slow_fetch)

    async def body():
        task = asyncio.create_task(remux.download_file("https://cdn.example/v.mp4", dst))
        while not started.is_set():
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        for _ in range(500):
            if finished.is_set() and not dst.exists():
                break
            await asyncio.sleep(0.01)

    asyncio.run(body())
    assert saw_cancel == [True]
    assert not dst.exists()
