"""
Management command to clear expired device tokens.

Run periodically via cron or scheduled task. Only the token columns are
cleared; the device association itself is kept for the known-devices list.
Example: ./manage.py cleanup_device_tokens --days 7
"""

from datetime import timedelta

from django.core.management.base import BaseCommand
from django.utils import timezone

from apps.devices.models import DeviceAssociation


class Command(BaseCommand):
    help = "Clear device tokens that expired more than the specified number of days ago"

    def add_arguments(self, parser):
        parser.add_argument(
            "--days",
            type=int,
            default=0,
            help="Only clear tokens expired at least this many days ago (default: 0)",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would be cleared without actually clearing",
        )

    def handle(self, *args, **options):
        days = options["days"]
        dry_run = options["dry_run"]
        now = timezone.now()
        cutoff = now - timedelta(days=days)

        expired = DeviceAssociation.objects.exclude(device_token_hash="").filter(
            device_token_expires_at__lt=cutoff,
        )

        count = expired.count()

        if dry_run:
            self.stdout.write(self.style.WARNING(f"[DRY RUN] Would clear {count} device tokens"))
        else:
            cleared = expired.update(
                device_token_hash="",
                device_token_expires_at=None,
                updated_at=now,
            )
            self.stdout.write(self.style.SUCCESS(f"Successfully cleared {cleared} device tokens"))
