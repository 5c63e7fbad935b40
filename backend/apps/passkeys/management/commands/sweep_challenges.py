"""
Management command to delete expired ceremony challenges.

Challenges are deleted when consumed, so only abandoned ceremonies are left
behind. Run periodically via cron or scheduled task.
Example: ./manage.py sweep_challenges
"""

from django.conf import settings
from django.core.management.base import BaseCommand
from django.utils import timezone

from apps.passkeys.challenges import get_challenge_store
from apps.passkeys.models import Challenge


class Command(BaseCommand):
    help = "Delete expired WebAuthn challenges"

    def add_arguments(self, parser):
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would be deleted without actually deleting",
        )

    def handle(self, *args, **options):
        if settings.PASSKEY_CHALLENGE_STORE == "cache":
            self.stdout.write("Challenges are stored in the cache and expire on their own")
            return

        if options["dry_run"]:
            count = Challenge.objects.filter(expires_at__lte=timezone.now()).count()
            self.stdout.write(self.style.WARNING(f"[DRY RUN] Would delete {count} expired challenges"))
            return

        deleted = get_challenge_store().sweep()
        self.stdout.write(self.style.SUCCESS(f"Successfully deleted {deleted} expired challenges"))
