from django.conf import settings
from django.core.management.base import BaseCommand

from extraction.disk_storage import purge_stale_files


class Command(BaseCommand):
    help = "Delete downloaded and merged temp files older than N minutes."

    def add_arguments(self, parser):
        parser.add_argument(
            "--minutes",
            type=int,
            default=settings.TEMP_MAX_AGE_MINUTES,
            help="Delete files older than N minutes",
        )

    def handle(self, *args, **opts):
        minutes = int(opts["minutes"])
        n = purge_stale_files(minutes)
        self.stdout.write(self.style.SUCCESS(f"Deleted {n} temp files older than {minutes} minutes"))
