"""
Delete webhook attempts whose retention period has passed.

Usage:
    python manage.py purge_webhook_attempts
    python manage.py purge_webhook_attempts --dry-run
"""

from django.core.management.base import BaseCommand

from order_webhooks.models import WebhookAttempt
from order_webhooks.services.ledger import purge_expired_attempts


class Command(BaseCommand):
    help = "Delete expired webhook attempts from the ledger"

    def add_arguments(self, parser):
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Only report how many attempts would be deleted.",
        )
        parser.add_argument(
            "--batch-size",
            type=int,
            default=1000,
            help="Rows deleted per query.",
        )

    def handle(self, *args, **options):
        if options["dry_run"]:
            count = WebhookAttempt.all_objects.expired().count()
            print(f"{count} expired webhook attempt(s) would be deleted")
            return
        removed = purge_expired_attempts(batch_size=options["batch_size"])
        print(f"Deleted {removed} expired webhook attempt(s)")
