import asyncio
import json
import logging

from django.http import FileResponse, JsonResponse
from django.urls import reverse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from .disk_storage import purge_stale_files, resolve_temp_file
from .exceptions import DownloadFailed, ExtractionError, RemuxFailed
from .pipeline import extract_video
from .remux import merge_streams
from .serializers import DownloadVideoSerializer, FetchVideoDataSerializer

logger = logging.getLogger(__name__)


def _json_body(request) -> dict:
    try:
        body = json.loads(request.body.decode("utf-8") or "{}")
    except (json.JSONDecodeError, UnicodeDecodeError):
        return {}
    return body if isinstance(body, dict) else {}


def _error(message: str, status: int) -> JsonResponse:
    return JsonResponse({"status": "error", "message": message}, status=status)


def _success(data: dict) -> JsonResponse:
    return JsonResponse({"status": "success", "data": data})


def healthz(request):
    return JsonResponse({"ok": True})


@csrf_exempt
@require_http_methods(["POST"])
async def fetch_video_data(request):
    """Find the downloadable streams behind a post/reel/video page URL.

    Best effort: the response always says how confident the selection is.
    """
    s = FetchVideoDataSerializer(data=_json_body(request))
    if not s.is_valid():
        return _error("Please provide a valid video URL", status=400)
    url = s.validated_data["url"]

    try:
        data = await extract_video(url)
    except ExtractionError as e:
        logger.info("extraction failed for %s: %s", url, e.message)
        return _error(e.message, status=e.status_code)
    except Exception as e:
        logger.exception("unexpected extraction error for %s", url)
        return _error(str(e) or "Unexpected error", status=500)

    return _success(data)


@csrf_exempt
@require_http_methods(["POST"])
async def download_video(request):
    """Hand back a download URL, merging separate video+audio when asked."""
    s = DownloadVideoSerializer(data=_json_body(request))
    if not s.is_valid():
        return _error("Provide a valid videoUrl or audioUrl", status=400)

    video_url = s.validated_data["videoUrl"]
    audio_url = s.validated_data["audioUrl"]
    quality = s.validated_data.get("quality")

    if s.validated_data["mergeAudio"] and video_url and audio_url:
        await asyncio.to_thread(purge_stale_files)
        try:
            merged = await merge_streams(video_url, audio_url)
        except RemuxFailed as e:
            # Still usable: give the client both streams separately.
            logger.warning("remux failed, returning unmerged streams: %s", e.message)
            return _success(
                {
                    "downloadUrl": video_url,
                    "audioUrl": audio_url,
                    "quality": quality,
                    "type": "video_only",
                    "mergeError": e.message,
                }
            )
        except DownloadFailed as e:
            logger.warning("stream download failed: %s", e.message)
            return _error(e.message, status=e.status_code)
        except Exception as e:
            logger.exception("unexpected merge error")
            return _error(str(e) or "Unexpected error", status=500)

        return _success(
            {
                "downloadUrl": request.build_absolute_uri(reverse("serve_temp", args=[merged.name])),
                "quality": quality,
                "type": "merged",
            }
        )

    data = {
        "downloadUrl": video_url or audio_url,
        "quality": quality,
        "type": "audio_only" if audio_url and not video_url else "video_only",
    }
    if video_url and audio_url:
        data["audioUrl"] = audio_url
    return _success(data)


@require_http_methods(["GET"])
def serve_temp(request, name):
    fp = resolve_temp_file(name)
    if fp is None:
        return _error("Not found", status=404)
    return FileResponse(open(fp, "rb"), as_attachment=True, filename=fp.name, content_type="video/mp4")
