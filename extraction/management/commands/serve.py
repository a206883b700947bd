import asyncio
import shutil

import uvicorn
from django.conf import settings
from django.core.management.base import BaseCommand

from extraction.browser_session import browser_pool


class Command(BaseCommand):
    help = "Serve the API with uvicorn. The shared browser lives until this process exits."

    def add_arguments(self, parser):
        parser.add_argument("--host", default=settings.HOST)
        parser.add_argument("--port", type=int, default=settings.PORT)

    def handle(self, *args, **opts):
        if shutil.which(settings.FFMPEG_BIN) is None:
            self.stderr.write(self.style.ERROR(f"ffmpeg not found (FFMPEG_BIN={settings.FFMPEG_BIN})"))
            self.stderr.write("Merging will fail and fall back to separate video/audio URLs.")

        self.stdout.write(self.style.SUCCESS(f"Serving on http://{opts['host']}:{opts['port']}"))
        asyncio.run(self.serve(opts["host"], opts["port"]))

    async def serve(self, host: str, port: int):
        config = uvicorn.Config(
            "streamsnag.asgi:application",
            host=host,
            port=port,
            lifespan="off",
            log_level="info",
        )
        server = uvicorn.Server(config)
        try:
            await server.serve()
        finally:
            await browser_pool.shutdown()
