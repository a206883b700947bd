import logging
import os
import time
import uuid
from pathlib import Path

from django.conf import settings

logger = logging.getLogger(__name__)


def temp_dir() -> Path:
    p = Path(settings.TEMP_DIR)
    p.mkdir(parents=True, exist_ok=True)
    return p


def unique_temp_path(prefix: str, ext: str = ".mp4") -> Path:
    # ms timestamp + random suffix, so concurrent requests never collide
    name = f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}{ext}"
    return temp_dir() / name


def resolve_temp_file(name: str) -> Path | None:
    """Map a public file name back to a file inside the temp dir, or None."""
    if not name or name != os.path.basename(name) or name.startswith("."):
        return None
    p = temp_dir() / name
    return p if p.is_file() else None


def remove_quietly(*paths) -> None:
    for p in paths:
        if p is None:
            continue
        try:
            Path(p).unlink(missing_ok=True)
        except OSError as e:
            logger.warning("could not delete temp file %s: %s", p, e)


def purge_stale_files(max_age_minutes: int | None = None) -> int:
    """Delete temp files older than max_age_minutes. Returns how many were removed."""
    minutes = settings.TEMP_MAX_AGE_MINUTES if max_age_minutes is None else max_age_minutes
    cutoff = time.time() - minutes * 60
    removed = 0
    for p in temp_dir().iterdir():
        try:
            if p.is_file() and p.stat().st_mtime < cutoff:
                p.unlink()
                removed += 1
        except FileNotFoundError:
            # Another request cleaned it up first.
            continue
    if removed:
        logger.info("purged %d stale temp files", removed)
    return removed
