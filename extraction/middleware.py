import base64
import binascii

from asgiref.sync import iscoroutinefunction, markcoroutinefunction
from django.conf import settings
from django.http import HttpResponse

OPEN_PATHS = ("/healthz", "/temp/")


class BasicAuthMiddleware:
    """Simple private gate.

    Enabled when BASIC_AUTH_USER and BASIC_AUTH_PASS are set. Works in both
    sync and async stacks so async views keep running on the event loop.
    """

    sync_capable = True
    async_capable = True

    def __init__(self, get_response):
        self.get_response = get_response
        if iscoroutinefunction(self.get_response):
            markcoroutinefunction(self)

    def __call__(self, request):
        if iscoroutinefunction(self):
            return self.__acall__(request)
        denied = self.check(request)
        if denied is not None:
            return denied
        return self.get_response(request)

    async def __acall__(self, request):
        denied = self.check(request)
        if denied is not None:
            return denied
        return await self.get_response(request)

    def check(self, request):
        user = getattr(settings, "BASIC_AUTH_USER", None)
        pw = getattr(settings, "BASIC_AUTH_PASS", None)
        if not user or not pw:
            return None

        # Healthchecks and merged-file links stay reachable.
        if request.path.startswith(OPEN_PATHS):
            return None

        auth = request.META.get("HTTP_AUTHORIZATION") or ""
        if auth.startswith("Basic "):
            try:
                raw = base64.b64decode(auth.split(" ", 1)[1].strip()).decode("utf-8")
                u, p = raw.split(":", 1)
                if u == user and p == pw:
                    return None
            except (binascii.Error, UnicodeDecodeError, ValueError):
                pass

        resp = HttpResponse("Authentication required", status=401)
        resp["WWW-Authenticate"] = 'Basic realm="streamsnag"'
        return resp
